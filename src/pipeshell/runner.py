# runner.py
from __future__ import annotations

import os
import subprocess
from concurrent.futures import ThreadPoolExecutor
from typing import IO, Any, Dict, List, Mapping, Optional, Sequence

from .config import get_settings
from .dirs import DirectoryContext
from .errors import (
    CommandNotFound,
    InputFileMissing,
    OutputOpenError,
    PipelineSpawnError,
)
from .jobs import JobTable, SignalSpec
from .model import Filter, Job, JobStatus, OutputBuffer
from .registry import CommandRegistry, ResolvedCommand
from .ui.console import Console, get_console

CHUNK_SIZE = 64 * 1024


# ----------------------------------------------------------------------
# Stream pumps (run on the pipeline's executor)
# ----------------------------------------------------------------------

def _feed(stream: IO[bytes], data: bytes, label: str, console: Console) -> None:
    """Write `data` to a process's stdin, then close it so the process sees EOF."""
    try:
        view = memoryview(data)
        for offset in range(0, len(view), CHUNK_SIZE):
            stream.write(view[offset:offset + CHUNK_SIZE])
        stream.close()
    except BrokenPipeError:
        # the process stopped reading; same outcome as a shell here-string
        console.notify(f"{label}: stdin closed by process before all input was written")
        try:
            stream.close()
        except BrokenPipeError:
            pass


def _drain(stream: IO[bytes], buffer: OutputBuffer) -> None:
    """Collect a process's stdout until EOF."""
    try:
        for chunk in iter(lambda: stream.read1(CHUNK_SIZE), b""):
            buffer.write(chunk)
    finally:
        stream.close()
        buffer.close()


def _close_quietly(handle: Any) -> None:
    if handle is None or handle == subprocess.PIPE:
        return
    if isinstance(handle, int):
        os.close(handle)
    else:
        handle.close()


# ----------------------------------------------------------------------
# Process controller
# ----------------------------------------------------------------------

class ProcessController:
    """
    Turns a Filter chain into running processes.

    One os.pipe() per adjacent pair of stages, one process per stage, one
    pump task per in-memory endpoint. Jobs go into `jobs` in pipeline order.
    """

    def __init__(
        self,
        registry: Optional[CommandRegistry] = None,
        dirs: Optional[DirectoryContext] = None,
        jobs: Optional[JobTable] = None,
        console: Optional[Console] = None,
        umask: Optional[int] = None,
        env: Optional[Mapping[str, str]] = None,
    ):
        self.console = console or get_console()
        self.registry = registry or CommandRegistry(console=self.console)
        self.dirs = dirs or DirectoryContext(console=self.console)
        self.jobs = jobs or JobTable(console=self.console)
        self.umask = get_settings().umask if umask is None else umask
        self.env = dict(env) if env is not None else None

    # ---- resolution / endpoints ----

    def _resolve(self, stage: Filter, idx: int, cwd: str) -> ResolvedCommand:
        if callable(stage.command):
            produced = [str(a) for a in stage.command(*stage.args)]
            if not produced:
                raise CommandNotFound(
                    f"{stage.name} produced no command", stage=idx, command=stage.name
                )
            name, args = produced[0], produced[1:]
        else:
            name, args = stage.command, list(stage.args)
        try:
            return self.registry.resolve(name, args, cwd=cwd)
        except CommandNotFound as e:
            e.stage = idx
            raise

    @staticmethod
    def _path_in(cwd: str, path) -> str:
        return os.path.normpath(os.path.join(cwd, os.path.expanduser(os.fspath(path))))

    def _open_stdin(self, stage: Filter, idx: int, cwd: str):
        src = stage.stdin
        if src.kind == "string":
            return subprocess.PIPE
        if src.kind != "file":
            return None
        path = self._path_in(cwd, src.path)
        try:
            return open(path, "rb")
        except FileNotFoundError as e:
            raise InputFileMissing(
                f"input file not found: {path}", stage=idx, command=stage.name
            ) from e
        except OSError as e:
            raise PipelineSpawnError(
                f"cannot open input {path}: {e.strerror}", stage=idx, command=stage.name
            ) from e

    def _open_stdout(self, stage: Filter, idx: int, cwd: str):
        sink = stage.stdout
        if sink.kind == "buffer":
            # truncate or append, like a file sink
            sink.buffer.reset(keep=sink.append)
            return subprocess.PIPE
        if sink.kind != "file":
            return None
        path = self._path_in(cwd, sink.path)
        try:
            return open(path, "ab" if sink.append else "wb")
        except OSError as e:
            raise OutputOpenError(
                f"cannot open output {path}: {e.strerror}", stage=idx, command=stage.name
            ) from e

    def _spawn(self, resolved: ResolvedCommand, stage: Filter, idx: int, cwd: str, stdin, stdout) -> subprocess.Popen:
        self.console.notify(f"spawn [{idx}] {' '.join(resolved.argv)} (cwd {cwd})")
        try:
            return subprocess.Popen(
                resolved.argv,
                cwd=cwd,
                stdin=stdin,
                stdout=stdout,
                env=self.env,
                umask=-1 if self.umask is None else self.umask,
            )
        except OSError as e:
            raise PipelineSpawnError(
                f"failed to start {resolved.executable}: {e.strerror or e}",
                stage=idx,
                command=stage.name,
                details={"errno": e.errno},
            ) from e

    # ---- execution ----

    def execute(self, chain: Filter) -> List[Job]:
        """
        Spawn every stage of `chain` and return their Jobs (source to sink).

        Does not wait. If stage k fails, stages before it keep running and
        see a broken pipe; the raised PipelineSpawnError lists them in `jobs`.
        """
        stages = chain.stages()
        cwd = self.dirs.current

        pump_count = sum(1 for s in stages if s.stdin.kind == "string")
        pump_count += 1 if stages[-1].stdout.kind == "buffer" else 0
        pool = (
            ThreadPoolExecutor(max_workers=pump_count, thread_name_prefix="pipeshell-pump")
            if pump_count
            else None
        )

        started: List[Job] = []
        pending_read: Optional[int] = None   # read end feeding the next stage
        try:
            for idx, stage in enumerate(stages):
                last = idx == len(stages) - 1
                parent_ends: List[Any] = []
                next_read: Optional[int] = None
                try:
                    resolved = self._resolve(stage, idx, cwd)

                    if pending_read is not None:
                        stdin = pending_read
                        pending_read = None
                    else:
                        stdin = self._open_stdin(stage, idx, cwd)
                    parent_ends.append(stdin)

                    if last:
                        stdout = self._open_stdout(stage, idx, cwd)
                    else:
                        # allocated before either side is spawned
                        next_read, stdout = os.pipe()
                    parent_ends.append(stdout)

                    proc = self._spawn(resolved, stage, idx, cwd, stdin, stdout)
                except BaseException:
                    _close_quietly(next_read)
                    raise
                finally:
                    # the child holds its own copies now
                    for end in parent_ends:
                        _close_quietly(end)

                pending_read = next_read
                job = Job(proc, stage, idx, resolved.argv, cwd)
                self._start_pumps(pool, job, stage)
                self.jobs.register(job)
                started.append(job)
        except PipelineSpawnError as e:
            e.jobs = list(started)
            sink = stages[-1].stdout
            if sink.kind == "buffer" and len(started) < len(stages):
                # no drain will ever run; let readers of the buffer return
                sink.buffer.close()
            self.console.notify(f"pipeline stopped at stage {e.stage}: {e.message}")
            raise
        finally:
            _close_quietly(pending_read)
            if pool is not None:
                # running pumps finish on their own
                pool.shutdown(wait=False)

        return started

    def _start_pumps(self, pool: Optional[ThreadPoolExecutor], job: Job, stage: Filter) -> None:
        if stage.stdin.kind == "string":
            job.pumps.append(
                pool.submit(_feed, job.process.stdin, stage.stdin.data or b"", f"job {job.id}", self.console)
            )
        if stage.stdout.kind == "buffer":
            job.pumps.append(pool.submit(_drain, job.process.stdout, stage.stdout.buffer))

    # ---- status ----

    def poll(self, job: Job) -> JobStatus:
        return job.poll()

    def wait(self, job: Job, timeout: Optional[float] = None) -> JobStatus:
        """Block on this job's own pid only."""
        status = job.wait(timeout=timeout)
        self.console.notify(f"job {job.id} {status}")
        return status

    def wait_all(self, jobs: Sequence[Job], timeout: Optional[float] = None) -> List[JobStatus]:
        return [self.wait(j, timeout=timeout) for j in jobs]

    def run(self, chain: Filter) -> List[JobStatus]:
        """execute() then wait_all()."""
        return self.wait_all(self.execute(chain))

    def kill(self, job: Job, sig: SignalSpec = "TERM") -> None:
        self.jobs.signal(job, sig)


def summarize(jobs: Sequence[Job]) -> Dict[str, str]:
    """Stage label -> status string, for display."""
    return {f"[{j.stage}] {j.describe()}": str(j.status) for j in jobs}
