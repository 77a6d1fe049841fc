# src/pipeshell/dsl.py
from __future__ import annotations

import os
from dataclasses import replace
from functools import reduce
from typing import Optional, Union

from .errors import CompositionError
from .model import CommandType, Filter, OutputBuffer, PathType, Sink, Source


# ---------------------------------------------------------------------
# Stage helpers
# ---------------------------------------------------------------------

def command(cmd: CommandType, *args) -> Filter:
    """Create a single-stage filter: command("grep", "-v", "#")."""
    if not callable(cmd) and not cmd:
        raise CompositionError("command name must not be empty")
    return Filter(command=cmd, args=tuple(str(a) for a in args))


def from_string(data: Union[str, bytes], encoding: str = "utf-8") -> Source:
    """A stdin source fed from memory."""
    if isinstance(data, str):
        data = data.encode(encoding)
    return Source(kind="string", data=bytes(data))


def capture(encoding: str = "utf-8") -> OutputBuffer:
    """A fresh buffer to collect a stage's stdout."""
    return OutputBuffer(encoding=encoding)


def _as_path(target) -> Optional[PathType]:
    if isinstance(target, (str, os.PathLike)):
        return target
    return None


# ---------------------------------------------------------------------
# Chain rewriting
# ---------------------------------------------------------------------
# Filters are immutable, so binding the head of a chain means rebuilding
# every stage between the head and the tail with a new upstream link.

def _replace_head(chain: Filter, new_head: Filter) -> Filter:
    stages = chain.stages()
    node = new_head
    for stage in stages[1:]:
        node = replace(stage, upstream=node)
    return node


# ---------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------

def pipe(upstream: Filter, downstream: Filter) -> Filter:
    """
    Connect upstream's stdout to the stdin of downstream's first stage.

    Returns the new chain (referenced by downstream's last stage).
    """
    if upstream.stdout.bound:
        raise CompositionError(
            "upstream output is already redirected",
            details={"stage": upstream.describe(), "output": upstream.stdout.describe()},
        )
    head = downstream.head
    if head.stdin.bound:
        raise CompositionError(
            "downstream input is already redirected",
            details={"stage": head.describe(), "input": head.stdin.describe()},
        )
    return _replace_head(downstream, replace(head, upstream=upstream))


def pipeline(first: Filter, *rest: Filter) -> Filter:
    """pipeline(a, b, c) == pipe(pipe(a, b), c)."""
    return reduce(pipe, rest, first)


def redirect_input(chain: Filter, source: Union[PathType, Source]) -> Filter:
    """Bind the first stage's stdin to a file path or from_string(...)."""
    if not isinstance(source, Source):
        path = _as_path(source)
        if path is None:
            raise CompositionError(f"cannot read input from {type(source).__name__}")
        source = Source(kind="file", path=path)
    head = chain.head
    if head.stdin.bound:
        raise CompositionError(
            "input is already redirected",
            details={"stage": head.describe()},
        )
    return _replace_head(chain, replace(head, stdin=source))


def _redirect_output(chain: Filter, target, append: bool) -> Filter:
    if chain.stdout.bound:
        raise CompositionError(
            "output is already redirected",
            details={"stage": chain.describe()},
        )
    if isinstance(target, OutputBuffer):
        return replace(chain, stdout=Sink(kind="buffer", buffer=target, append=append))
    path = _as_path(target)
    if path is None:
        raise CompositionError(f"cannot write output to {type(target).__name__}")
    return replace(chain, stdout=Sink(kind="file", path=path, append=append))


def redirect_output(chain: Filter, target: Union[PathType, OutputBuffer]) -> Filter:
    """Bind the last stage's stdout to a file (truncated) or a buffer."""
    return _redirect_output(chain, target, append=False)


def redirect_append(chain: Filter, target: Union[PathType, OutputBuffer]) -> Filter:
    """Bind the last stage's stdout to a file opened for append, or a buffer that keeps earlier runs."""
    return _redirect_output(chain, target, append=True)
