"""Computations — derived values and UI generators.

A Computation wraps a body ``body(ctx) -> output``. The Scheduler runs it
with a RunContext, records which nodes it read, and caches the output.
When any of those nodes changes, the Computation is marked dirty and runs
again on the next flush. Other Computations may read its output through
their own context (chained derived values).

All state lives in the engine's Anchor — instances are thin handles holding
a key.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Generic, TypeVar

from fluxform.errors import UnknownId

if TYPE_CHECKING:
    from fluxform._anchor import Key
    from fluxform._tracking import RunContext
    from fluxform.engine import Engine

T = TypeVar("T")


class Computation(Generic[T]):
    """Handle to a derived value that re-runs when what it read changes."""

    __slots__ = ("_engine", "key", "uid")

    def __init__(self, engine: Engine, key: Key) -> None:
        self._engine = engine
        self.key = key
        self.uid = engine.anchor.uids[key]

    @property
    def scope(self) -> str:
        return self.key[0]

    @property
    def id(self) -> str:
        return self.key[1]

    @property
    def alive(self) -> bool:
        return self._engine.anchor.uids.get(self.key) == self.uid

    def _check(self) -> None:
        if not self.alive:
            raise UnknownId(*self.key, f"computation '{self.id}' in scope '{self.scope}' is gone")

    def read(self, ctx: RunContext | None = None) -> T:
        """Last output. Registers a dependency when given a run context."""
        if ctx is not None:
            return ctx.read(self)
        self._check()
        return self._engine.anchor.outputs[self.key]

    @property
    def dirty(self) -> bool:
        self._check()
        return self._engine.anchor.dirty_flags[self.key]

    @property
    def dependencies(self) -> set[Key]:
        """Nodes read on the most recent run."""
        self._check()
        return self._engine.graph.dependencies_of(self.key)

    def dispose(self) -> None:
        """Destroy this computation and its edges."""
        self._engine.destroy(self)

    def __repr__(self) -> str:
        if not self.alive:
            return f"Computation({self.scope}:{self.id}, destroyed)"
        anchor = self._engine.anchor
        state = "dirty" if anchor.dirty_flags[self.key] else f"output={anchor.outputs[self.key]!r}"
        return f"Computation({self.scope}:{self.id}, {state})"


def computation(engine: Engine, scope: str, node_id: str | None = None):
    """Decorator factory declaring the decorated body as a Computation.

    Usage:
        engine = Engine()
        n = engine.declare_cell("form", "n", 5)

        @computation(engine, "form")
        def doubled(ctx):
            return ctx.read(n) * 2

        engine.flush()
        doubled.read()  # 10
    """

    def decorator(body: Callable[[RunContext], T]) -> Computation[T]:
        return engine.declare_computation(scope, node_id or body.__name__, body)

    return decorator
