# shell.py
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence

from . import dsl
from .config import get_settings
from .dirs import DirectoryContext
from .jobs import JobTable, SignalSpec
from .model import CommandType, Filter, Job, JobStatus, PathType
from .registry import CommandRegistry
from .runner import ProcessController
from .ui.console import Console, get_console


class Shell:
    """
    One working directory, one command registry, one job table.

        sh = Shell("/tmp")
        chain = dsl.pipe(sh.command("cat", "/etc/hosts"), sh.command("tee", "out1"))
        jobs = sh.execute(dsl.redirect_append(chain, "out2"))
        sh.wait_all(jobs)
    """

    def __init__(
        self,
        cwd: Optional[PathType] = None,
        umask: Optional[int] = None,
        registry: Optional[CommandRegistry] = None,
        jobs: Optional[JobTable] = None,
        console: Optional[Console] = None,
        record_separator: Optional[str] = None,
    ):
        self.console = console or get_console()
        self.record_separator = (
            get_settings().record_separator if record_separator is None else record_separator
        )
        self.dirs = DirectoryContext(cwd, console=self.console)
        self.registry = registry or CommandRegistry(console=self.console)
        self.job_table = jobs or JobTable(console=self.console)
        self.controller = ProcessController(
            registry=self.registry,
            dirs=self.dirs,
            jobs=self.job_table,
            console=self.console,
            umask=umask,
        )

    @classmethod
    def at(cls, path: PathType, **kwargs) -> "Shell":
        """A new Shell whose current directory is `path`."""
        return cls(path, **kwargs)

    def __repr__(self) -> str:
        return f"Shell({self.cwd!r})"

    # ---- directories ----

    @property
    def cwd(self) -> str:
        return self.dirs.current

    pwd = cwd

    @property
    def dir_stack(self) -> List[str]:
        return self.dirs.stack

    @property
    def umask(self) -> Optional[int]:
        return self.controller.umask

    @umask.setter
    def umask(self, value: Optional[int]) -> None:
        self.controller.umask = value

    def expand_path(self, path: PathType) -> str:
        return self.dirs.expand(path)

    def cd(self, path: Optional[PathType] = None) -> str:
        return self.dirs.change(path)

    def pushd(self, path: Optional[PathType] = None) -> str:
        return self.dirs.push(path)

    def popd(self) -> str:
        return self.dirs.pop()

    @contextmanager
    def chdir(self, path: Optional[PathType] = None) -> Iterator["Shell"]:
        """Scoped cd: with sh.chdir("build"): ..."""
        with self.dirs.changed(path):
            yield self

    @contextmanager
    def pushdir(self, path: Optional[PathType] = None) -> Iterator["Shell"]:
        """Scoped pushd: pops back on exit."""
        with self.dirs.pushed(path):
            yield self

    # ---- commands ----

    @property
    def system_path(self) -> List[str]:
        return self.registry.system_path

    @system_path.setter
    def system_path(self, path: Sequence[str]) -> None:
        self.registry.system_path = path

    def command(self, cmd: CommandType, *args) -> Filter:
        return dsl.command(cmd, *args)

    def which(self, name: str) -> str:
        return self.registry.resolve(name, cwd=self.cwd).executable

    # ---- execution ----

    def execute(self, chain: Filter) -> List[Job]:
        return self.controller.execute(chain)

    def wait(self, job: Job, timeout: Optional[float] = None) -> JobStatus:
        return self.controller.wait(job, timeout=timeout)

    def wait_all(self, jobs: Sequence[Job], timeout: Optional[float] = None) -> List[JobStatus]:
        return self.controller.wait_all(jobs, timeout=timeout)

    def run(self, chain: Filter) -> List[JobStatus]:
        return self.controller.run(chain)

    def capture(self, chain: Filter) -> str:
        """Run `chain` to completion and return its stdout as text."""
        buf = dsl.capture()
        self.run(dsl.redirect_output(chain, buf))
        return buf.text

    def capture_lines(self, chain: Filter) -> List[str]:
        """Like capture(), split on this shell's record separator."""
        buf = dsl.capture()
        self.run(dsl.redirect_output(chain, buf))
        return buf.lines(self.record_separator)

    # ---- jobs ----

    def jobs(self) -> List[Job]:
        return self.job_table.all()

    def kill(self, sig: SignalSpec, job: Job) -> None:
        self.job_table.signal(job, sig)
