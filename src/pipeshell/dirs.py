# dirs.py
from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from .errors import DirectoryStackEmpty
from .model import PathType
from .ui.console import Console, get_console


class DirectoryContext:
    """
    Tracked working directory plus a pushd/popd stack.

    Never calls os.chdir(); the process controller reads `current` to set
    each spawned process's working directory. Not safe for concurrent
    mutation; give each task its own instance.
    """

    def __init__(self, cwd: Optional[PathType] = None, console: Optional[Console] = None):
        self.console = console or get_console()
        start = os.getcwd() if cwd is None else os.path.expanduser(os.fspath(cwd))
        self._cwd = os.path.abspath(start)
        self._stack: List[str] = []

    def __repr__(self) -> str:
        return f"DirectoryContext({self._cwd!r}, stack={self._stack!r})"

    @property
    def current(self) -> str:
        return self._cwd

    @property
    def stack(self) -> List[str]:
        """Snapshot of the stack, most recently pushed last."""
        return list(self._stack)

    def expand(self, path: PathType) -> str:
        """Resolve `path` (with ~ expansion) against the current directory."""
        p = os.path.expanduser(os.fspath(path))
        return os.path.normpath(os.path.join(self._cwd, p))

    def _set(self, path: Optional[PathType]) -> str:
        target = self.expand("~" if path is None else path)
        if not Path(target).exists():
            raise FileNotFoundError(f"No such directory: {target}")
        if not Path(target).is_dir():
            raise NotADirectoryError(f"Not a directory: {target}")
        self._cwd = target
        return target

    # ---- plain forms ----

    def change(self, path: Optional[PathType] = None) -> str:
        """cd: relative to the current directory; None or "~" means home."""
        self.console.notify(f"chdir {path if path is not None else '~'}")
        cwd = self._set(path)
        self.console.notify(f"current dir: {cwd}")
        return cwd

    def push(self, path: Optional[PathType] = None) -> str:
        """
        pushd: save current on the stack and change to `path`.

        With no path, swap the current directory with the top of the stack.
        """
        if path is None:
            self.console.notify("pushdir")
            if not self._stack:
                raise DirectoryStackEmpty("directory stack empty")
            top = self._stack[-1]
            previous = self._cwd
            self._set(top)
            self._stack[-1] = previous
        else:
            self.console.notify(f"pushdir {path}")
            previous = self._cwd
            self._set(path)
            self._stack.append(previous)
        self.console.notify(f"dir stack: [{', '.join(self._stack)}]")
        return self._cwd

    def pop(self) -> str:
        """popd: restore the most recently pushed directory."""
        self.console.notify("popdir")
        if not self._stack:
            raise DirectoryStackEmpty("directory stack empty")
        target = self._stack[-1]
        self._set(target)
        self._stack.pop()
        self.console.notify(f"dir stack: [{', '.join(self._stack)}]")
        return self._cwd

    # ---- scoped forms ----

    @contextmanager
    def changed(self, path: Optional[PathType] = None) -> Iterator[str]:
        """with ctx.changed("sub"): ...  restores the prior directory on exit."""
        self.console.notify(f"chdir(with block) {path}")
        previous = self._cwd
        self._set(path)
        try:
            yield self._cwd
        finally:
            self._cwd = previous

    @contextmanager
    def pushed(self, path: Optional[PathType] = None) -> Iterator[str]:
        """with ctx.pushed("sub"): ...  pops back on exit."""
        self.console.notify(f"pushdir(with block) {path}")
        previous, saved_stack = self._cwd, list(self._stack)
        self.push(path)
        try:
            yield self._cwd
        finally:
            # restore exactly, even if the block pushed without popping
            self._cwd, self._stack = previous, saved_stack
