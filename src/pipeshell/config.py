# config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import List, Optional


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_path(name: str) -> List[str]:
    raw = os.environ.get(name) or os.environ.get("PATH", "")
    return [p for p in raw.split(os.pathsep) if p]


@dataclass(frozen=True)
class Settings:
    """
    Process-wide knobs.

    debug:          show tracebacks and detailed output
    verbose:        report directory changes and spawns through Console.notify
    system_path:    directories searched for commands not explicitly defined
    show_thread_id: prefix notify() lines with the calling thread
    show_pid:       also prefix notify() lines with the process id
    record_separator: splits captured output into records (None: any line ending)
    """
    debug: bool = False
    verbose: bool = False
    system_path: List[str] = field(default_factory=list)
    show_thread_id: bool = True
    show_pid: bool = False
    umask: Optional[int] = None
    record_separator: Optional[str] = None


def load_settings() -> Settings:
    debug = _env_flag("PIPESHELL_DEBUG", False)
    return Settings(
        debug=debug,
        # debug implies verbose
        verbose=debug or _env_flag("PIPESHELL_VERBOSE", False),
        system_path=_env_path("PIPESHELL_PATH"),
        show_thread_id=_env_flag("PIPESHELL_SHOW_THREAD", True),
        show_pid=_env_flag("PIPESHELL_SHOW_PID", False),
        record_separator=os.environ.get("PIPESHELL_RECORD_SEPARATOR") or None,
    )


# Global settings instance (initialized lazily or by configure())
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def configure(**overrides) -> Settings:
    """
    Initialize the global settings at startup.

    Starts from the environment and applies keyword overrides, e.g.
    configure(debug=True, system_path=["/usr/bin", "/bin"]).
    """
    global _settings
    settings = replace(load_settings(), **overrides)
    if settings.debug and not settings.verbose:
        settings = replace(settings, verbose=True)
    _settings = settings
    return settings
