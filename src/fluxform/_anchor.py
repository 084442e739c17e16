"""Data anchor — plain Python structures that hold all reactive state.

One Anchor belongs to one Engine. It stores the raw data for every Cell and
Computation; Cell and Computation objects are thin handles holding a key.
Separating data from behavior keeps the graph, scheduler and reconciler free
to mutate state without sharing object references.

Keys are ``(scope, id)`` tuples. Cells and Computations share one namespace
per scope.
"""

from __future__ import annotations

import itertools

Key = tuple[str, str]


class Anchor:
    """Raw storage for one engine's graph."""

    def __init__(self) -> None:
        # Cell state
        self.values: dict[Key, object] = {}
        self.versions: dict[Key, int] = {}
        self.constraints: dict[Key, dict] = {}

        # Computation state
        self.bodies: dict[Key, object] = {}  # comp key -> callable(ctx)
        self.outputs: dict[Key, object] = {}
        self.dirty_flags: dict[Key, bool] = {}
        self.effects: dict[Key, object] = {}  # comp key -> callable(value)

        # Edges. subscribers: node -> computations reading it.
        # dependencies: computation -> nodes it read on its latest run.
        self.subscribers: dict[Key, set[Key]] = {}
        self.dependencies: dict[Key, set[Key]] = {}

        # Identity of the live instance behind each key; also declaration order
        self.uids: dict[Key, int] = {}
        self.scopes: dict[str, set[Key]] = {}

        # Computation key -> Reconciler, for UI-producing computations
        self.reconcilers: dict[Key, object] = {}
        # Control cell key -> Reconciler that owns it
        self.controls: dict[Key, object] = {}

        self._id_counter = itertools.count(1)

    def new_id(self) -> int:
        return next(self._id_counter)

    def is_cell(self, key: Key) -> bool:
        return key in self.values

    def is_computation(self, key: Key) -> bool:
        return key in self.bodies

    def __contains__(self, key: Key) -> bool:
        return key in self.uids
