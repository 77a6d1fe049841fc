# jobs.py
from __future__ import annotations

import os
import signal as _signal
import threading
from typing import Dict, List, Optional, Union

from .errors import JobNotFound, SignalDeliveryFailed
from .model import Job, JobStatus
from .ui.console import Console, get_console

SignalSpec = Union[str, int, _signal.Signals]


def parse_signal(sig: SignalSpec) -> _signal.Signals:
    """
    Accept "KILL", "SIGKILL", "kill", signal.SIGKILL or 9.

    Raises ValueError for anything else.
    """
    if isinstance(sig, _signal.Signals):
        return sig
    if isinstance(sig, int):
        return _signal.Signals(sig)
    name = str(sig).strip().upper()
    if name.isdigit():
        return _signal.Signals(int(name))
    if not name.startswith("SIG"):
        name = "SIG" + name
    try:
        return _signal.Signals[name]
    except KeyError:
        raise ValueError(f"unknown signal: {sig}") from None


class JobTable:
    """
    Registry of spawned jobs, keyed by job id, in registration order.

    The lock only guards the mapping; it is never held while waiting on or
    signaling a process.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or get_console()
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job: Job) -> bool:
        with self._lock:
            return self._jobs.get(job.id) is job

    def register(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = job
        self.console.notify(f"job {job.id} started: pid {job.pid} {job.describe()}")

    def unregister(self, job: Job) -> None:
        with self._lock:
            if self._jobs.get(job.id) is not job:
                raise JobNotFound(f"job not registered: {job.id}", details={"pid": job.pid})
            del self._jobs[job.id]

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(f"no such job: {job_id}")
        return job

    def all(self) -> List[Job]:
        """Snapshot, in registration order."""
        with self._lock:
            return list(self._jobs.values())

    def active(self) -> List[Job]:
        return [j for j in self.all() if not j.poll().terminal]

    def prune(self) -> List[Job]:
        """Drop finished jobs; returns what was dropped."""
        finished = [j for j in self.all() if j.poll().terminal]
        with self._lock:
            for job in finished:
                if self._jobs.get(job.id) is job:
                    del self._jobs[job.id]
        return finished

    def signal(self, job: Job, sig: SignalSpec = "TERM") -> None:
        """
        Send `sig` to the job's process.

        JobNotFound if the job is not registered here; SignalDeliveryFailed
        if the process is already gone or the OS refuses.
        """
        if job not in self:
            raise JobNotFound(f"job not registered: {job.id}", details={"pid": job.pid})
        try:
            signum = parse_signal(sig)
        except ValueError as e:
            raise SignalDeliveryFailed(str(e), details={"job": job.id}) from e

        # Popen.send_signal() quietly ignores reaped processes; use kill(2) so a
        # pid reaped by another thread surfaces as ProcessLookupError
        if job.poll().terminal:
            raise SignalDeliveryFailed(
                f"job {job.id} already finished",
                details={"pid": job.pid, "status": str(job.status), "signal": signum.name},
            )
        try:
            os.kill(job.pid, signum)
        except (ProcessLookupError, PermissionError) as e:
            raise SignalDeliveryFailed(
                f"could not signal job {job.id}: {e}",
                details={"pid": job.pid, "signal": signum.name},
            ) from e
        after = job.poll()
        if after.terminal and after != JobStatus.signaled(signum):
            raise SignalDeliveryFailed(
                f"job {job.id} finished before {signum.name} arrived",
                details={"pid": job.pid, "status": str(after), "signal": signum.name},
            )
        self.console.notify(f"sent {signum.name} to job {job.id} (pid {job.pid})")
