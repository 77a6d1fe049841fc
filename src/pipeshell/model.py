# model.py
from __future__ import annotations

import itertools
import os
import signal
import subprocess
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple, Union

from .config import get_settings

PathType = Union[str, "os.PathLike[str]"]
CommandType = Union[str, Callable[..., Sequence[str]]]


# ---------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------

class OutputBuffer:
    """
    In-memory sink for a stage's stdout.

    Filled by a drain task while the process runs; complete once the
    process has closed its stdout (see `done`).
    """

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        self._chunks: List[bytes] = []
        self._lock = threading.Lock()
        self._done = threading.Event()

    def __repr__(self) -> str:
        return f"OutputBuffer({len(self.getvalue())} bytes)"

    def write(self, data: bytes) -> None:
        with self._lock:
            self._chunks.append(data)

    def reset(self, keep: bool = False) -> None:
        """Ready the buffer for another run; old contents are dropped unless `keep`."""
        with self._lock:
            if not keep:
                self._chunks = []
            self._done.clear()

    def close(self) -> None:
        self._done.set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def getvalue(self) -> bytes:
        with self._lock:
            return b"".join(self._chunks)

    @property
    def text(self) -> str:
        return self.getvalue().decode(self.encoding)

    def lines(self, separator: Optional[str] = None) -> List[str]:
        """
        Split the text into records.

        `separator` defaults to the configured record separator; with none
        configured any line ending splits. A trailing separator does not
        start an empty record.
        """
        if separator is None:
            separator = get_settings().record_separator
        if separator is None:
            return self.text.splitlines()
        records = self.text.split(separator)
        if records[-1] == "":
            records.pop()
        return records


@dataclass(frozen=True)
class Source:
    """Where a stage reads stdin from: inherited, a file, or a string."""
    kind: str = "inherit"          # "inherit" | "file" | "string"
    path: Optional[PathType] = None
    data: Optional[bytes] = None

    @property
    def bound(self) -> bool:
        return self.kind != "inherit"

    def describe(self) -> str:
        if self.kind == "file":
            return f"< {self.path}"
        if self.kind == "string":
            return f"< <{len(self.data or b'')} bytes>"
        return ""


@dataclass(frozen=True)
class Sink:
    """Where a stage writes stdout to: inherited, a file, or a buffer."""
    kind: str = "inherit"          # "inherit" | "file" | "buffer"
    path: Optional[PathType] = None
    append: bool = False
    buffer: Optional[OutputBuffer] = field(default=None, compare=False)

    @property
    def bound(self) -> bool:
        return self.kind != "inherit"

    def describe(self) -> str:
        if self.kind == "file":
            return f"{'>>' if self.append else '>'} {self.path}"
        if self.kind == "buffer":
            return "> <buffer>"
        return ""


INHERIT_SOURCE = Source()
INHERIT_SINK = Sink()


# ---------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Filter:
    """
    One pipeline stage: command + args + stdin/stdout endpoints.

    `upstream` links to the stage whose stdout feeds this one; a chain is
    referenced by its last (sink-side) stage.
    """
    command: CommandType
    args: Tuple[str, ...] = ()
    stdin: Source = INHERIT_SOURCE
    stdout: Sink = INHERIT_SINK
    upstream: Optional["Filter"] = None

    @property
    def name(self) -> str:
        if callable(self.command):
            return getattr(self.command, "__name__", repr(self.command))
        return self.command

    def stages(self) -> List["Filter"]:
        """Stages of the chain ending here, source to sink."""
        out: List[Filter] = []
        node: Optional[Filter] = self
        while node is not None:
            out.append(node)
            node = node.upstream
        out.reverse()
        return out

    @property
    def head(self) -> "Filter":
        return self.stages()[0]

    def describe(self) -> str:
        """Single stage rendered like a shell command (display only)."""
        parts = [self.name, *self.args]
        for redir in (self.stdin.describe(), self.stdout.describe()):
            if redir:
                parts.append(redir)
        return " ".join(str(p) for p in parts)

    def __str__(self) -> str:
        return " | ".join(s.describe() for s in self.stages())


# ---------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class JobStatus:
    state: str                      # "running" | "exited" | "signaled" | "unknown"
    code: Optional[int] = None      # exit code or signal number

    @classmethod
    def running(cls) -> "JobStatus":
        return cls("running")

    @classmethod
    def exited(cls, code: int) -> "JobStatus":
        return cls("exited", code)

    @classmethod
    def signaled(cls, signum: int) -> "JobStatus":
        return cls("signaled", signum)

    @classmethod
    def unknown(cls) -> "JobStatus":
        return cls("unknown")

    @classmethod
    def from_returncode(cls, rc: Optional[int]) -> "JobStatus":
        if rc is None:
            return cls.running()
        if rc < 0:
            return cls.signaled(-rc)
        return cls.exited(rc)

    @property
    def terminal(self) -> bool:
        return self.state in ("exited", "signaled")

    @property
    def ok(self) -> bool:
        return self.state == "exited" and self.code == 0

    def __str__(self) -> str:
        if self.state == "exited":
            return f"exited({self.code})"
        if self.state == "signaled":
            try:
                return f"signaled({signal.Signals(self.code).name})"
            except ValueError:
                return f"signaled({self.code})"
        return self.state


_job_ids = itertools.count(1)


class Job:
    """
    Tracked handle to one spawned process.

    Status moves running -> exited|signaled once and then stays put.
    """

    def __init__(
        self,
        process: subprocess.Popen,
        filter: Filter,
        stage: int,
        argv: Sequence[str],
        cwd: str,
    ):
        self.id = f"%{next(_job_ids)}"
        self.process = process
        self.pid: int = process.pid
        self.filter = filter
        self.stage = stage
        self.argv = list(argv)
        self.cwd = cwd
        self.pumps: List[Future] = []
        self._status = JobStatus.running()
        self._status_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"Job({self.id}, pid={self.pid}, {self.status}, {self.describe()!r})"

    def describe(self) -> str:
        return self.filter.describe()

    @property
    def status(self) -> JobStatus:
        return self._status

    @property
    def terminal(self) -> bool:
        return self._status.terminal

    def _settle(self, status: JobStatus) -> JobStatus:
        with self._status_lock:
            if not self._status.terminal:
                self._status = status
            return self._status

    def poll(self) -> JobStatus:
        """Non-blocking status check."""
        if self._status.terminal:
            return self._status
        try:
            rc = self.process.poll()
        except ChildProcessError:
            return self._settle(JobStatus.unknown())
        return self._settle(JobStatus.from_returncode(rc))

    def wait(self, timeout: Optional[float] = None) -> JobStatus:
        """
        Block until this job's own process exits, then until its stream
        pumps have finished.
        """
        rc = self.process.wait(timeout=timeout)
        for fut in self.pumps:
            fut.result(timeout=timeout)
        return self._settle(JobStatus.from_returncode(rc))
