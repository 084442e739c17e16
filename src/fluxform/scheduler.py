"""Invalidation scheduler — the only place Computation bodies execute.

write() never runs anything; it marks subscribers dirty and adds them to the
pending set. flush() opens a propagation frame and drains the pending set:

1. Pick the pending computation with no pending (transitive) upstream,
   ties broken by declaration order.
2. Clear its dirty flag and run the body with a fresh RunContext.
3. Replace its edges with the reads of this run (record_run).
4. If the output changed, dirty its subscribers, extending the frame.

Reading a dirty computation's output from inside a body runs it first, so a
body never observes a stale upstream value even when the edges from the
previous run no longer describe the graph.

Batching: begin_batch()/end_batch() nest; the outermost end_batch() flushes.
Writes made while the frame is open re-enter the same frame. A write that
feeds back into its writer (the cell was read by it, or an earlier in-flush
write to the cell is what dirtied it) counts against the CycleGuard; writes
from independent computations do not.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from fluxform._anchor import Key
from fluxform._tracking import PENDING, NotReady, RunContext
from fluxform.config import EngineConfig
from fluxform.errors import ComputationFailure, CycleDetected, FluxError, UnknownId
from fluxform.graph import DependencyGraph
from fluxform.guard import CycleGuard, PropagationFrame

logger = logging.getLogger("fluxform.scheduler")


@dataclass
class FlushResult:
    """What one flush() did."""

    frame_id: int | None = None
    ran: list[Key] = field(default_factory=list)
    conditions: list[FluxError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.conditions


def _changed(old, new) -> bool:
    return old is not new and old != new


class Scheduler:
    """Single-threaded cooperative scheduler for one engine."""

    def __init__(
        self,
        graph: DependencyGraph,
        config: EngineConfig,
        report: Callable[[FluxError], None] | None = None,
    ) -> None:
        self.graph = graph
        self.anchor = graph.anchor
        self.config = config
        self.guard = CycleGuard(config)
        self._report = report
        self._pending: set[Key] = set()
        self._staged: set[Key] = set()  # host-written cells awaiting a frame
        self._frame: PropagationFrame | None = None
        self._running: list[Key] = []
        self._batch_depth = 0

    @property
    def frame(self) -> PropagationFrame | None:
        return self._frame

    @property
    def flushing(self) -> bool:
        return self._frame is not None

    @property
    def batching(self) -> bool:
        return self._batch_depth > 0

    def pending(self) -> list[Key]:
        """Live pending computations, in declaration order."""
        live = [key for key in self._pending if key in self.anchor]
        return sorted(live, key=self.anchor.uids.__getitem__)

    # ─── Batching ────────────────────────────────────────────────────────

    def begin_batch(self) -> None:
        """Enter a batching scope. Nested batches are supported."""
        self._batch_depth += 1

    def end_batch(self) -> FlushResult | None:
        """Exit a batching scope. The outermost exit flushes."""
        self._batch_depth -= 1
        if self._batch_depth == 0:
            return self.flush()
        return None

    # ─── Invalidation ────────────────────────────────────────────────────

    def mark_dirty(self, computation: Key) -> None:
        if not self.anchor.is_computation(computation):
            return
        self.anchor.dirty_flags[computation] = True
        self._pending.add(computation)

    def discard(self, keys) -> None:
        """Drop keys from the pending set without running them."""
        self._pending.difference_update(keys)

    def write(self, key: Key, value, origin: RunContext | None = None) -> None:
        """Set a cell's value and dirty its subscribers if it changed."""
        anchor = self.anchor
        if not anchor.is_cell(key):
            raise UnknownId(*key, f"'{key[1]}' in scope '{key[0]}' is not a cell")

        changed = _changed(anchor.values[key], value)
        frame = self._frame
        if frame is not None:
            if changed and origin is not None and self._feeds_back(frame, origin, key):
                self.guard.check_write(frame, key)
            frame.touched.add(key)
        else:
            self._staged.add(key)

        anchor.values[key] = value
        anchor.versions[key] += 1
        if not changed:
            return
        chain: set[Key] = set()
        if origin is not None and frame is not None:
            logger.debug("%s:%s wrote %s:%s", *origin.key, *key)
            chain = frame.causes.get(origin.key, set()) | {key}
        for sub in self.graph.subscribers_of(key):
            self.mark_dirty(sub)
            if chain:
                frame.causes.setdefault(sub, set()).update(chain)

    def _feeds_back(self, frame: PropagationFrame, origin: RunContext, cell: Key) -> bool:
        """Did cell, directly or through the writes that led here, feed the writer?"""
        if cell in origin.reads or cell in frame.causes.get(origin.key, ()):
            return True
        return any(
            cell in self.graph.upstream_of(node)
            for node in origin.reads
            if self.anchor.is_computation(node)
        )

    def update_constraints(self, key: Key, constraints: dict, replace: bool = False) -> None:
        """Merge constraint metadata into a cell. Schedules nothing.

        With replace=True the cell's constraints become exactly constraints,
        dropping keys not given.
        """
        anchor = self.anchor
        if not anchor.is_cell(key):
            raise UnknownId(*key, f"'{key[1]}' in scope '{key[0]}' is not a cell")
        current = anchor.constraints[key]
        if replace:
            if current == constraints:
                return
            current.clear()
            current.update(constraints)
        else:
            delta = {k: v for k, v in constraints.items() if k not in current or _changed(current[k], v)}
            if not delta:
                return
            current.update(delta)
        owner = anchor.controls.get(key)
        if owner is not None:
            owner.constraints_changed(key[1], dict(current))

    def read_node(self, key: Key, ctx: RunContext | None = None):
        """Current value of a cell, or output of a computation."""
        anchor = self.anchor
        if anchor.is_cell(key):
            return anchor.values[key]
        if key in self._running:
            frame_id = self._frame.frame_id if self._frame is not None else 0
            raise CycleDetected(frame_id, self._involved(key), f"'{key[1]}' read itself while running")
        if anchor.dirty_flags.get(key) and self._frame is not None:
            self._run(key)
        return anchor.outputs.get(key, PENDING)

    # ─── Flush ───────────────────────────────────────────────────────────

    def flush(self) -> FlushResult:
        """Drain the pending set. A no-op when nothing is pending."""
        if self._frame is not None:
            # Re-entrant flush request; the open frame drains everything.
            return FlushResult(frame_id=self._frame.frame_id)
        if not any(key in self.anchor for key in self._pending):
            self._pending.clear()
            return FlushResult()

        frame = self.guard.open_frame()
        frame.touched |= self._staged
        self._staged.clear()
        self._frame = frame
        logger.debug("frame %d opened, %d pending", frame.frame_id, len(self._pending))
        try:
            while True:
                key = self._next_ready()
                if key is None:
                    break
                self._run(key)
        finally:
            self._frame = None
        logger.debug(
            "frame %d settled: %d runs, %d conditions",
            frame.frame_id, len(frame.ran), len(frame.conditions),
        )
        return FlushResult(frame.frame_id, list(frame.ran), list(frame.conditions))

    def _next_ready(self) -> Key | None:
        anchor = self.anchor
        live = {key for key in self._pending if key in anchor}
        self._pending = live
        if not live:
            return None
        ready = [key for key in live if not (self.graph.upstream_of(key) & live)]
        # A pending loop has no ready member; fall back to declaration order
        # and let the guard bound it.
        return min(ready or live, key=anchor.uids.__getitem__)

    def _current(self, node: Key):
        if self.anchor.is_cell(node):
            return self.anchor.values[node]
        return self.anchor.outputs[node]

    def _involved(self, computation: Key) -> list[Key]:
        """Cells touched this frame that computation depends on."""
        frame = self._frame
        upstream = {key for key in self.graph.upstream_of(computation) if self.anchor.is_cell(key)}
        if frame is None:
            return sorted(upstream)
        touched = upstream & (frame.touched | set(frame.advances))
        return sorted(touched or upstream or frame.advances)

    def _run(self, key: Key) -> None:
        anchor = self.anchor
        frame = self._frame
        self._pending.discard(key)
        anchor.dirty_flags[key] = False

        try:
            self.guard.check_run(frame, key, self._involved(key))
        except CycleDetected as exc:
            self._abort_chain(key, exc)
            return

        frame.ran.append(key)
        ctx = RunContext(self, key, frame)
        failure: FluxError | None = None
        output = PENDING
        self._running.append(key)
        try:
            try:
                output = anchor.bodies[key](ctx)
            except NotReady:
                output = PENDING
            reconciler = anchor.reconcilers.get(key)
            if reconciler is not None and output is not PENDING and _changed(anchor.outputs[key], output):
                reconciler.reconcile(output)
        except CycleDetected as exc:
            failure = exc
        except Exception as exc:
            failure = ComputationFailure(key, exc)
            failure.__cause__ = exc
        finally:
            self._running.pop()

        if key not in anchor:
            # Destroyed while running.
            return

        # Edges are refreshed even for failed runs so nothing dangles.
        self.graph.record_run(key, ctx.reads)
        for node, seen in ctx.reads.items():
            if node in anchor and _changed(seen, self._current(node)):
                self.mark_dirty(key)
                break

        if isinstance(failure, CycleDetected):
            self._abort_chain(key, failure)
            return
        if failure is not None:
            self._fail(failure)
            return
        if output is PENDING or not _changed(anchor.outputs[key], output):
            return

        anchor.outputs[key] = output
        inherited = frame.causes.get(key)
        for sub in self.graph.subscribers_of(key):
            self.mark_dirty(sub)
            if inherited:
                frame.causes.setdefault(sub, set()).update(inherited)

        effect = anchor.effects.get(key)
        if effect is not None:
            try:
                effect(output)
            except Exception as exc:
                failure = ComputationFailure(key, exc)
                failure.__cause__ = exc
                self._fail(failure)

    # ─── Conditions ──────────────────────────────────────────────────────

    def _abort_chain(self, writer: Key, exc: CycleDetected) -> None:
        """Drop everything downstream of the cycle from the pending set."""
        chain = self.graph.downstream_of(exc.involved_cell_ids) | {writer}
        for comp in chain:
            self._pending.discard(comp)
            if comp in self.anchor.dirty_flags:
                self.anchor.dirty_flags[comp] = False
        logger.warning("%s (dropped %d pending computations)", exc, len(chain))
        self._emit(exc)

    def _fail(self, failure: ComputationFailure) -> None:
        logger.error("%s", failure, exc_info=failure.error)
        self._emit(failure)

    def _emit(self, condition: FluxError) -> None:
        if self._frame is not None:
            self._frame.conditions.append(condition)
        if self._report is not None:
            self._report(condition)
