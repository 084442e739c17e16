"""Dynamic UI reconciler — keeps generated controls in step with the graph.

A UI-producing Computation returns an ordered sequence of ControlSpecs. Each
time that sequence changes, the Reconciler diffs it by id against the
controls it rendered last time:

- same id, same kind: the Cell is kept, its value is not reset
- same id, new kind: remove + add, the new Cell seeded from the old Cell's
  value (carry-over, read without creating an edge)
- old id only: the Cell is destroyed and the renderer removes the control
- new id only: a Cell is declared from spec.value and the renderer adds it

and finally hands the whole sequence, with current values, to render().
Untouched controls get no add/remove calls.

Control Cells live in the child scope "<scope>/<id>" of the UI computation,
so destroying the computation's scope tears them down too. A control Cell
destroyed directly is reported back through control_destroyed(), which
removes the control from the renderer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Iterable, Protocol, Sequence

from fluxform.errors import DuplicateId

if TYPE_CHECKING:
    from fluxform._anchor import Key
    from fluxform.scheduler import Scheduler

logger = logging.getLogger("fluxform.reconciler")


@dataclass(frozen=True)
class ControlSpec:
    """Declarative description of one control."""

    id: str
    kind: str
    value: Any = None
    constraints: dict = field(default_factory=dict)
    label: str = ""


UIDescription = Sequence[ControlSpec]


class Renderer(Protocol):
    """Rendering sink. Implementations must be idempotent on unchanged ids."""

    def add_control(self, spec: ControlSpec) -> None: ...

    def remove_control(self, control_id: str) -> None: ...

    def update_control(self, control_id: str, constraints: dict) -> None: ...

    def render(self, description: tuple[ControlSpec, ...]) -> None: ...


class Reconciler:
    """Owns the controls generated by one UI-producing Computation."""

    def __init__(self, scheduler: Scheduler, computation: Key, renderer: Renderer) -> None:
        self._scheduler = scheduler
        self._graph = scheduler.graph
        self.computation = computation
        self.renderer = renderer
        self.control_scope = f"{computation[0]}/{computation[1]}"
        self._specs: dict[str, ControlSpec] = {}  # rendered, in order
        # values awaiting a re-add after a kind change
        self._carried: dict[str, Any] = {}

    @property
    def control_ids(self) -> list[str]:
        return list(self._specs)

    def cell_key(self, control_id: str) -> Key:
        return (self.control_scope, control_id)

    def current(self) -> tuple[ControlSpec, ...]:
        """Rendered specs with their Cells' current values and constraints."""
        anchor = self._graph.anchor
        specs = []
        for control_id, spec in self._specs.items():
            key = self.cell_key(control_id)
            if key in anchor:
                spec = replace(spec, value=anchor.values[key], constraints=dict(anchor.constraints[key]))
            specs.append(spec)
        return tuple(specs)

    def reconcile(self, description: Iterable[ControlSpec]) -> None:
        """Bring the rendered controls in line with description.

        _specs is updated as each control settles, so a renderer that raises
        partway leaves it matching the live Cells; the next changed
        description picks up where this one stopped.
        """
        new_specs: dict[str, ControlSpec] = {}
        for spec in description:
            if spec.id in new_specs:
                raise DuplicateId(self.control_scope, spec.id, f"control id '{spec.id}' appears twice")
            new_specs[spec.id] = spec

        old_specs = dict(self._specs)
        removed = [cid for cid in old_specs if cid not in new_specs]
        replaced = [
            cid for cid in old_specs
            if cid in new_specs and new_specs[cid].kind != old_specs[cid].kind
        ]

        for control_id in removed:
            self._destroy_control(control_id)

        for control_id in replaced:
            key = self.cell_key(control_id)
            if key in self._graph.anchor:
                self._carried[control_id] = self._scheduler.read_node(key)
            for comp in self._destroy_control(control_id):
                self._scheduler.mark_dirty(comp)

        kept = 0
        for control_id, spec in new_specs.items():
            if control_id in self._specs:
                kept += 1
                self._sync_constraints(spec)
                self._specs[control_id] = spec
                continue
            self._add_control(spec)

        self._specs = {cid: self._specs[cid] for cid in new_specs}
        logger.info(
            "Reconciled %s: %d kept, %d added, %d removed, %d replaced",
            self.control_scope, kept, len(new_specs) - kept - len(replaced),
            len(removed), len(replaced),
        )
        self.renderer.render(self.current())

    def constraints_changed(self, control_id: str, constraints: dict) -> None:
        """Forward a constraint update on one of our Cells to the renderer."""
        self.renderer.update_control(control_id, constraints)

    def control_destroyed(self, control_id: str) -> None:
        """One of our Cells is gone; drop the control and tell the renderer."""
        self._specs.pop(control_id, None)
        self.renderer.remove_control(control_id)

    def detach(self) -> None:
        """Tear down every control. Called when the UI computation is destroyed."""
        for control_id in list(self._specs):
            self._destroy_control(control_id)
        self._specs = {}
        self._carried = {}

    def _add_control(self, spec: ControlSpec) -> None:
        value = self._carried.get(spec.id, spec.value)
        key = self._graph.declare_cell(self.control_scope, spec.id, value, spec.constraints)
        try:
            self.renderer.add_control(replace(spec, value=value))
        except Exception:
            self._graph.destroy_node(key)
            raise
        self._graph.anchor.controls[key] = self
        self._specs[spec.id] = spec
        self._carried.pop(spec.id, None)

    def _sync_constraints(self, new: ControlSpec) -> None:
        if self._specs[new.id].constraints == new.constraints:
            return
        self._scheduler.update_constraints(self.cell_key(new.id), new.constraints, replace=True)

    def _destroy_control(self, control_id: str) -> set:
        key = self.cell_key(control_id)
        if key in self._graph.anchor:
            # destroy_node reports back through control_destroyed()
            return self._graph.destroy_node(key)
        self.control_destroyed(control_id)
        return set()
