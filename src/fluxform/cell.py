"""Value Cells — observable mutable slots.

A Cell is read through a RunContext to become a dependency of the running
Computation; read without one, it is an untracked snapshot. write() only
schedules: subscribers are marked dirty and run on the next flush.

All state lives in the engine's Anchor — instances are thin handles holding
a key and the uid of the instance they were created for. A handle whose
Cell was destroyed (or destroyed and re-declared) raises UnknownId.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Generic, TypeVar

from fluxform.errors import UnknownId

if TYPE_CHECKING:
    from fluxform._anchor import Key
    from fluxform._tracking import RunContext
    from fluxform.engine import Engine

T = TypeVar("T")


class Cell(Generic[T]):
    """Handle to a single observable value."""

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
            raise UnknownId(*self.key)

    def read(self, ctx: RunContext | None = None) -> T:
        """Read the value. Registers a dependency when given a run context."""
        if ctx is not None:
            return ctx.read(self)
        self._check()
        return self._engine.anchor.values[self.key]

    def write(self, value: T) -> None:
        """Write a new value. Takes effect for readers on the next flush."""
        self._engine.write(self, value)

    @property
    def version(self) -> int:
        self._check()
        return self._engine.anchor.versions[self.key]

    @property
    def constraints(self) -> dict:
        self._check()
        return dict(self._engine.anchor.constraints[self.key])

    def update_constraints(self, **constraints) -> None:
        """Change metadata such as min/max/choices without touching the value."""
        self._engine.update_constraints(self, **constraints)

    def __repr__(self) -> str:
        if not self.alive:
            return f"Cell({self.scope}:{self.id}, destroyed)"
        return f"Cell({self.scope}:{self.id}={self._engine.anchor.values[self.key]!r})"
