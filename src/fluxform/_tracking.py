"""Dependency tracking — the explicit execution context of one run.

Every Computation body is called with a RunContext. Reads made through the
context register dependency edges for that run; nothing is recorded through
ambient global state. When the body returns, the Scheduler hands the
collected reads to DependencyGraph.record_run(), which replaces the previous
edge set wholesale.

Waiting: a body that cannot produce a value yet returns PENDING (or calls
req()). Its previous output is kept and nothing downstream is dirtied.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fluxform._anchor import Key
    from fluxform.guard import PropagationFrame
    from fluxform.scheduler import Scheduler


class _Pending:
    __slots__ = ()

    def __repr__(self) -> str:
        return "PENDING"

    def __bool__(self) -> bool:
        return False


PENDING = _Pending()


class NotReady(Exception):
    """Raised by req() to abandon a run quietly; treated as returning PENDING."""


def _is_missing(value) -> bool:
    if value is None or value is False or value is PENDING:
        return True
    if isinstance(value, (str, bytes, list, tuple, dict, set, frozenset)):
        return len(value) == 0
    return False


def req(*values):
    """Abandon the current run unless every value is available.

    None, False, PENDING and empty strings/containers count as missing.
    Zero does not. Returns the first value so it can be used inline:

        n = req(ctx.read("n"))
    """
    for value in values:
        if _is_missing(value):
            raise NotReady()
    return values[0] if values else None


class RunContext:
    """Execution context threaded through one run of one Computation."""

    __slots__ = ("key", "frame", "reads", "_scheduler", "_untracked_depth")

    def __init__(self, scheduler: Scheduler, key: Key, frame: PropagationFrame) -> None:
        self.key = key
        self.frame = frame
        # node key -> value seen on first tracked read
        self.reads: dict[Key, object] = {}
        self._scheduler = scheduler
        self._untracked_depth = 0

    @property
    def scope(self) -> str:
        return self.key[0]

    @property
    def tracking(self) -> bool:
        return self._untracked_depth == 0

    def read(self, ref):
        """Read a Cell or Computation output and depend on it for this run."""
        key = self._scheduler.graph.resolve(ref, self.scope)
        value = self._scheduler.read_node(key, self)
        if self.tracking and key not in self.reads:
            self.reads[key] = value
        return value

    def peek(self, ref):
        """Read without creating a dependency edge."""
        key = self._scheduler.graph.resolve(ref, self.scope)
        return self._scheduler.read_node(key, self)

    @contextmanager
    def untracked(self):
        """Reads inside this block do not create dependency edges."""
        self._untracked_depth += 1
        try:
            yield self
        finally:
            self._untracked_depth -= 1

    def write(self, ref, value) -> None:
        """Programmatic write from inside the run, gated by the Cycle Guard."""
        key = self._scheduler.graph.resolve(ref, self.scope)
        self._scheduler.write(key, value, origin=self)

    def update_constraints(self, ref, **constraints) -> None:
        """Change a Cell's constraint metadata without touching its value."""
        key = self._scheduler.graph.resolve(ref, self.scope)
        self._scheduler.update_constraints(key, constraints)

    def __repr__(self) -> str:
        return f"RunContext({self.key[0]}:{self.key[1]}, frame={self.frame.frame_id})"
