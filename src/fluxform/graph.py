"""Dependency graph — live Cells, Computations and the edges between them.

An edge (computation -> node) means the computation read the node on its
most recent run. Nodes are Cells or other Computations (chained derived
values). The edge set of a computation is replaced wholesale on every run,
so a node no longer read stops notifying the computation immediately.

Scopes are '/'-separated paths. Destroying a scope destroys every child
scope too, along with every edge pointing into or out of it.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from fluxform._anchor import Anchor, Key
from fluxform._tracking import PENDING
from fluxform.errors import DuplicateId, UnknownId

logger = logging.getLogger("fluxform.graph")


def _in_scope(scope: str, root: str) -> bool:
    return scope == root or scope.startswith(root + "/")


class DependencyGraph:
    """Per-engine registry of nodes and edges, stored in an Anchor."""

    def __init__(self, anchor: Anchor) -> None:
        self.anchor = anchor

    # ─── Declaration ─────────────────────────────────────────────────────

    def _register(self, scope: str, node_id: str) -> Key:
        key = (scope, node_id)
        if key in self.anchor:
            raise DuplicateId(scope, node_id)
        self.anchor.uids[key] = self.anchor.new_id()
        self.anchor.scopes.setdefault(scope, set()).add(key)
        self.anchor.subscribers[key] = set()
        return key

    def declare_cell(self, scope: str, node_id: str, value, constraints: dict | None = None) -> Key:
        key = self._register(scope, node_id)
        self.anchor.values[key] = value
        self.anchor.versions[key] = 0
        self.anchor.constraints[key] = dict(constraints) if constraints else {}
        logger.debug("declared cell %s:%s", scope, node_id)
        return key

    def declare_computation(
        self,
        scope: str,
        node_id: str,
        body: Callable,
        effect: Callable | None = None,
    ) -> Key:
        key = self._register(scope, node_id)
        self.anchor.bodies[key] = body
        self.anchor.outputs[key] = PENDING
        self.anchor.dirty_flags[key] = True
        self.anchor.dependencies[key] = set()
        if effect is not None:
            self.anchor.effects[key] = effect
        logger.debug("declared computation %s:%s", scope, node_id)
        return key

    # ─── Lookup ──────────────────────────────────────────────────────────

    def resolve(self, ref, default_scope: str = "") -> Key:
        """Turn a handle, a (scope, id) pair or a bare id into a live key."""
        key = getattr(ref, "key", None)
        if key is None:
            if isinstance(ref, tuple):
                key = ref
            else:
                key = (default_scope, ref)
        if key not in self.anchor:
            raise UnknownId(*key)
        uid = getattr(ref, "uid", None)
        if uid is not None and self.anchor.uids[key] != uid:
            raise UnknownId(*key, f"'{key[1]}' in scope '{key[0]}' was destroyed and re-declared")
        return key

    def contains(self, key: Key) -> bool:
        return key in self.anchor

    def scope_keys(self, scope: str) -> list[Key]:
        """Keys owned by scope and all of its child scopes, in declaration order."""
        keys = [
            key
            for name, members in self.anchor.scopes.items()
            if _in_scope(name, scope)
            for key in members
        ]
        return sorted(keys, key=self.anchor.uids.__getitem__)

    def subscribers_of(self, node: Key) -> list[Key]:
        """Computations that read node on their latest run, in declaration order."""
        subs = self.anchor.subscribers.get(node, ())
        return sorted(subs, key=self.anchor.uids.__getitem__)

    def dependencies_of(self, computation: Key) -> set[Key]:
        return set(self.anchor.dependencies.get(computation, ()))

    def upstream_of(self, computation: Key) -> set[Key]:
        """Every node computation transitively depends on."""
        seen: set[Key] = set()
        stack = list(self.anchor.dependencies.get(computation, ()))
        while stack:
            node = stack.pop()
            if node in seen:
                continue
            seen.add(node)
            stack.extend(self.anchor.dependencies.get(node, ()))
        return seen

    def downstream_of(self, nodes: Iterable[Key]) -> set[Key]:
        """Every computation that transitively depends on any of nodes."""
        seen: set[Key] = set()
        stack = [sub for node in nodes for sub in self.anchor.subscribers.get(node, ())]
        while stack:
            comp = stack.pop()
            if comp in seen:
                continue
            seen.add(comp)
            stack.extend(self.anchor.subscribers.get(comp, ()))
        return seen

    # ─── Edges ───────────────────────────────────────────────────────────

    def record_run(self, computation: Key, cells_read: Iterable[Key]) -> None:
        """Replace computation's edge set with exactly cells_read."""
        if computation not in self.anchor:
            return
        new = {node for node in cells_read if node in self.anchor}
        old = self.anchor.dependencies[computation]
        for node in old - new:
            subs = self.anchor.subscribers.get(node)
            if subs is not None:
                subs.discard(computation)
        for node in new - old:
            self.anchor.subscribers[node].add(computation)
        self.anchor.dependencies[computation] = new

    # ─── Teardown ────────────────────────────────────────────────────────

    def destroy_node(self, key: Key) -> set[Key]:
        """Remove one node and every edge touching it.

        Returns the computations that were subscribed to it.
        """
        anchor = self.anchor
        if key not in anchor:
            return set()

        reconciler = anchor.reconcilers.pop(key, None)
        if reconciler is not None:
            reconciler.detach()
        owner = anchor.controls.pop(key, None)

        former = anchor.subscribers.pop(key, set())
        for comp in former:
            deps = anchor.dependencies.get(comp)
            if deps is not None:
                deps.discard(key)
        for node in anchor.dependencies.pop(key, ()):
            subs = anchor.subscribers.get(node)
            if subs is not None:
                subs.discard(key)

        for table in (
            anchor.values,
            anchor.versions,
            anchor.constraints,
            anchor.bodies,
            anchor.outputs,
            anchor.dirty_flags,
            anchor.effects,
        ):
            table.pop(key, None)

        anchor.uids.pop(key)
        members = anchor.scopes.get(key[0])
        if members is not None:
            members.discard(key)
            if not members:
                del anchor.scopes[key[0]]
        logger.debug("destroyed %s:%s", *key)
        if owner is not None:
            owner.control_destroyed(key[1])
        return former - {key}

    def destroy_scope(self, scope_id: str) -> list[Key]:
        """Remove every node owned by scope_id or its child scopes.

        Returns the destroyed keys.
        """
        keys = self.scope_keys(scope_id)
        # UI computations first, so their reconcilers tear down controls
        # while the rest of the scope is still intact.
        keys.sort(key=lambda k: k not in self.anchor.reconcilers)
        destroyed = []
        for key in keys:
            if key in self.anchor:
                self.destroy_node(key)
                destroyed.append(key)
        if destroyed:
            logger.debug("destroyed scope %s (%d nodes)", scope_id, len(destroyed))
        return destroyed
