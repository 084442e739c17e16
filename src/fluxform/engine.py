"""Engine — the host-facing facade over graph, scheduler and reconcilers.

Usage:
    engine = Engine()
    form = engine.scope("form")
    lo = form.cell("min", 0)
    n = form.cell("n", 5)

    def clamp_watcher(ctx):
        ctx.update_constraints(n, min=ctx.read(lo))

    form.computation("n_bounds", clamp_watcher)
    engine.flush()

    lo.write(3)          # returns immediately
    engine.flush()       # clamp_watcher runs once; n keeps its value

Conditions (CycleDetected, ComputationFailure) never escape flush(); they
are logged, collected in FlushResult.conditions and Engine.conditions, and
passed to every handler registered with on_condition().
"""

from __future__ import annotations

import logging
from typing import Callable

from fluxform._anchor import Anchor
from fluxform.action import action, transaction
from fluxform.cell import Cell
from fluxform.computation import Computation
from fluxform.config import EngineConfig
from fluxform.errors import FluxError, UnknownId
from fluxform.graph import DependencyGraph
from fluxform.reconciler import Reconciler, Renderer
from fluxform.scheduler import FlushResult, Scheduler
from fluxform.scope import Scope

logger = logging.getLogger("fluxform.engine")


class Engine:
    """One reactive graph with its scheduler and condition channel."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()
        self.anchor = Anchor()
        self.graph = DependencyGraph(self.anchor)
        self.scheduler = Scheduler(self.graph, self.config, report=self._report)
        self.conditions: list[FluxError] = []
        self._handlers: list[Callable[[FluxError], None]] = []

    # ─── Declaration ─────────────────────────────────────────────────────

    def declare_cell(self, scope: str, node_id: str, initial=None, constraints: dict | None = None) -> Cell:
        key = self.graph.declare_cell(scope, node_id, initial, constraints)
        return Cell(self, key)

    def declare_computation(self, scope: str, node_id: str, body, effect=None) -> Computation:
        """Declare a Computation. It first runs on the next flush."""
        key = self.graph.declare_computation(scope, node_id, body, effect)
        self.scheduler.mark_dirty(key)
        return Computation(self, key)

    def declare_ui(self, scope: str, node_id: str, body, renderer: Renderer) -> Computation:
        """Declare a UI-producing Computation whose output is reconciled into controls."""
        comp = self.declare_computation(scope, node_id, body)
        self.anchor.reconcilers[comp.key] = Reconciler(self.scheduler, comp.key, renderer)
        return comp

    def scope(self, name: str) -> Scope:
        return Scope(self, name)

    # ─── Lookup ──────────────────────────────────────────────────────────

    def cell(self, scope: str, node_id: str) -> Cell:
        key = self.graph.resolve((scope, node_id))
        if not self.anchor.is_cell(key):
            raise UnknownId(scope, node_id, f"'{node_id}' in scope '{scope}' is not a cell")
        return Cell(self, key)

    def computation(self, scope: str, node_id: str) -> Computation:
        key = self.graph.resolve((scope, node_id))
        if not self.anchor.is_computation(key):
            raise UnknownId(scope, node_id, f"'{node_id}' in scope '{scope}' is not a computation")
        return Computation(self, key)

    def reconciler(self, ref) -> Reconciler:
        key = self.graph.resolve(ref)
        reconciler = self.anchor.reconcilers.get(key)
        if reconciler is None:
            raise UnknownId(*key, f"'{key[1]}' in scope '{key[0]}' does not produce UI")
        return reconciler

    # ─── Host read / write ───────────────────────────────────────────────

    def read(self, ref):
        """Untracked snapshot of a Cell value or Computation output."""
        return self.scheduler.read_node(self.graph.resolve(ref))

    def write(self, ref, value) -> None:
        """Write a Cell. Dependents run on the next flush."""
        self.scheduler.write(self.graph.resolve(ref), value)
        if self.config.auto_flush and not self.scheduler.batching:
            self.scheduler.flush()

    def update_constraints(self, ref, **constraints) -> None:
        self.scheduler.update_constraints(self.graph.resolve(ref), constraints)

    def flush(self) -> FlushResult:
        return self.scheduler.flush()

    # ─── Teardown ────────────────────────────────────────────────────────

    def destroy(self, ref) -> None:
        """Destroy one Cell or Computation."""
        key = self.graph.resolve(ref)
        self.graph.destroy_node(key)
        self.scheduler.discard([key])

    def destroy_scope(self, scope_id: str) -> None:
        """Destroy a scope, its child scopes and every edge into them."""
        destroyed = self.graph.destroy_scope(scope_id)
        self.scheduler.discard(destroyed)

    # ─── Batching ────────────────────────────────────────────────────────

    def transaction(self):
        """Batch writes; the outermost exit flushes."""
        return transaction(self)

    def action(self, fn):
        """Decorator: run fn as one transaction."""
        return action(self)(fn)

    # ─── Conditions ──────────────────────────────────────────────────────

    def on_condition(self, handler: Callable[[FluxError], None]) -> Callable[[], None]:
        """Register a condition handler. Returns a function that removes it."""
        self._handlers.append(handler)

        def _remove() -> None:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass  # already removed

        return _remove

    def _report(self, condition: FluxError) -> None:
        self.conditions.append(condition)
        for handler in list(self._handlers):
            try:
                handler(condition)
            except Exception:
                logger.exception("Condition handler failed for %r", condition)
