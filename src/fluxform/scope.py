"""Scope — a named group of Cells and Computations with one lifecycle.

A Scope handle declares nodes under its name, reads and writes them by id,
and destroys them all at once. Child scopes are destroyed with their
parent.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fluxform.cell import Cell
    from fluxform.computation import Computation
    from fluxform.engine import Engine
    from fluxform.reconciler import Renderer


class Scope:
    """Handle to one scope of an Engine."""

    __slots__ = ("_engine", "name")

    def __init__(self, engine: Engine, name: str) -> None:
        self._engine = engine
        self.name = name

    def child(self, name: str) -> Scope:
        return Scope(self._engine, f"{self.name}/{name}")

    def cell(self, node_id: str, initial=None, constraints: dict | None = None) -> Cell:
        return self._engine.declare_cell(self.name, node_id, initial, constraints)

    def computation(self, node_id: str, body, effect=None) -> Computation:
        return self._engine.declare_computation(self.name, node_id, body, effect)

    def ui(self, node_id: str, body, renderer: Renderer) -> Computation:
        return self._engine.declare_ui(self.name, node_id, body, renderer)

    def get(self, node_id: str):
        return self._engine.read((self.name, node_id))

    def set(self, node_id: str, value) -> None:
        self._engine.write((self.name, node_id), value)

    def update(self, values: dict) -> None:
        """Write several cells as one batch."""
        with self._engine.transaction():
            for node_id, value in values.items():
                self.set(node_id, value)

    def keys(self) -> list[str]:
        """Ids declared directly in this scope, in declaration order."""
        return [
            node_id
            for scope, node_id in self._engine.graph.scope_keys(self.name)
            if scope == self.name
        ]

    def __contains__(self, node_id: str) -> bool:
        return self._engine.graph.contains((self.name, node_id))

    def destroy(self) -> None:
        self._engine.destroy_scope(self.name)

    def __repr__(self) -> str:
        return f"Scope({self.name!r})"
