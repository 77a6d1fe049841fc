# registry.py
from __future__ import annotations

import os
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import get_settings
from .errors import CommandNotFound
from .ui.console import Console, get_console

Handler = Callable[..., Sequence[str]]


@dataclass(frozen=True)
class CommandSpec:
    """
    A registered name.

    path:    explicit executable (None -> search the system path for `target`)
    target:  for aliases, the name this one expands to
    args:    fixed arguments placed before the caller's arguments
    handler: optional hook turning the caller's arguments into the final ones
    """
    name: str
    path: Optional[str] = None
    target: Optional[str] = None
    args: Tuple[str, ...] = ()
    handler: Optional[Handler] = field(default=None, compare=False)

    @property
    def is_alias(self) -> bool:
        return self.target is not None


@dataclass(frozen=True)
class ResolvedCommand:
    name: str
    executable: str
    args: Tuple[str, ...] = ()

    @property
    def argv(self) -> List[str]:
        return [self.executable, *self.args]


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


class CommandRegistry:
    """
    Maps command names to executables.

    Lookup order: defined commands, aliases (recursively), then the system
    path. System path hits are cached until rehash().
    """

    MAX_ALIAS_DEPTH = 32

    def __init__(self, system_path: Optional[Sequence[str]] = None, console: Optional[Console] = None):
        self.console = console or get_console()
        if system_path is None:
            system_path = get_settings().system_path or os.environ.get("PATH", "").split(os.pathsep)
        self._system_path: List[str] = [p for p in system_path if p]
        self._commands: Dict[str, CommandSpec] = {}
        self._cache: Dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    # ---- system path ----

    @property
    def system_path(self) -> List[str]:
        return list(self._system_path)

    @system_path.setter
    def system_path(self, path: Sequence[str]) -> None:
        self._system_path = [p for p in path if p]
        self.rehash()

    def rehash(self) -> None:
        """Forget cached system-path lookups."""
        with self._lock:
            self._cache.clear()

    def find_system_command(self, name: str) -> Optional[str]:
        """Locate `name` on the system path (cached)."""
        with self._lock:
            if name in self._cache:
                return self._cache[name]
        found = shutil.which(name, path=os.pathsep.join(self._system_path))
        with self._lock:
            self._cache[name] = found
        if found:
            self.console.notify(f"found command {name}: {found}", verbose=self.console.debug)
        return found

    # ---- definitions ----

    def define(self, name: str, path: Optional[str] = None) -> CommandSpec:
        """Register `name`; `path` defaults to looking `name` up on the system path."""
        if path is not None:
            path = os.path.expanduser(path)
        spec = CommandSpec(name=name, path=path)
        self._commands[name] = spec
        self.console.notify(f"define command {name} -> {path or name}", verbose=self.console.debug)
        return spec

    def undefine(self, name: str) -> None:
        spec = self._commands.get(name)
        if spec is None or spec.is_alias:
            raise CommandNotFound(f"command not defined: {name}", command=name)
        del self._commands[name]

    def alias(self, new_name: str, target: str, *args: str, handler: Optional[Handler] = None) -> CommandSpec:
        """
        Register `new_name` as `target` with fixed leading arguments.

            registry.alias("date_utc", "date", "-u")
        """
        if new_name == target:
            raise ValueError(f"alias {new_name!r} would refer to itself")
        spec = CommandSpec(
            name=new_name,
            target=target,
            args=tuple(str(a) for a in args),
            handler=handler,
        )
        self._commands[new_name] = spec
        self.console.notify(f"alias {new_name} -> {target} {' '.join(spec.args)}".rstrip(), verbose=self.console.debug)
        return spec

    def unalias(self, name: str) -> None:
        spec = self._commands.get(name)
        if spec is None or not spec.is_alias:
            raise CommandNotFound(f"alias not defined: {name}", command=name)
        del self._commands[name]

    def unregister(self, name: str) -> None:
        """Remove a command or alias, whichever `name` is."""
        if name not in self._commands:
            raise CommandNotFound(f"not registered: {name}", command=name)
        del self._commands[name]

    def install_system_commands(self, prefix: str = "sys_") -> List[str]:
        """
        Define `prefix + name` for every executable on the system path.

        Earlier path entries win, like a shell's PATH search.
        """
        installed: List[str] = []
        for directory in self._system_path:
            d = Path(os.path.expanduser(directory))
            if not d.is_dir():
                continue
            for entry in sorted(d.iterdir()):
                name = prefix + entry.name
                if name in self._commands or not _is_executable(entry):
                    continue
                self._commands[name] = CommandSpec(name=name, path=str(entry))
                installed.append(name)
        self.console.notify(f"installed {len(installed)} system commands", verbose=self.console.debug)
        return installed

    def names(self) -> List[str]:
        return sorted(self._commands)

    def get(self, name: str) -> Optional[CommandSpec]:
        return self._commands.get(name)

    # ---- resolution ----

    def _resolve_plain(self, name: str, cwd: Optional[str] = None) -> Optional[str]:
        if os.sep in name:
            # relative names are run from the pipeline's directory, not ours
            p = Path(cwd or os.getcwd(), os.path.expanduser(name))
            return str(p) if _is_executable(p) else None
        return self.find_system_command(name)

    def resolve(self, name: str, args: Sequence[str] = (), cwd: Optional[str] = None) -> ResolvedCommand:
        """
        Turn `name` plus call arguments into an executable and argv tail.

        Names containing a path separator are taken relative to `cwd`
        (default: the process's own directory).

        Raises CommandNotFound when nothing matches.
        """
        args = tuple(str(a) for a in args)
        current = name
        seen = set()
        for _ in range(self.MAX_ALIAS_DEPTH):
            spec = self._commands.get(current)
            if spec is None:
                exe = self._resolve_plain(current, cwd)
                break
            if spec.handler is not None:
                args = tuple(str(a) for a in spec.handler(*args))
            args = spec.args + args
            if not spec.is_alias:
                exe = spec.path or self._resolve_plain(spec.name, cwd)
                if spec.path is not None and not _is_executable(Path(spec.path)):
                    exe = None
                break
            if current in seen:
                raise CommandNotFound(f"alias loop at {current}", command=name)
            seen.add(current)
            current = spec.target
        else:
            raise CommandNotFound(f"alias chain too deep for {name}", command=name)

        if exe is None:
            raise CommandNotFound(f"command not found: {name}", command=name)
        return ResolvedCommand(name=name, executable=exe, args=args)
