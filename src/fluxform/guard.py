"""Cycle Guard — bounds re-entrant propagation inside one frame.

A Computation may write to Cells while it runs, including Cells it reads
itself. Those writes re-enter the Scheduler before the current flush is
done. The guard counts, per propagation frame:

- how often each Cell has been advanced by in-flush writes that feed back
  into the writer (cycle_bound)
- how often each Computation has executed (max_passes)

and raises CycleDetected once either count goes past its bound. It does not
try to prove convergence; it only turns non-convergence into an error the
host can see instead of a hang.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field

from fluxform._anchor import Key
from fluxform.config import EngineConfig
from fluxform.errors import CycleDetected


@dataclass
class PropagationFrame:
    """One in-flight invalidation batch."""

    frame_id: int
    # cell -> number of in-flush writes that changed it
    advances: dict[Key, int] = field(default_factory=dict)
    # computation -> number of executions
    runs: dict[Key, int] = field(default_factory=dict)
    # every cell written during the frame, host writes included
    touched: set[Key] = field(default_factory=set)
    # computation -> cells whose in-flush writes led to it being dirtied
    causes: dict[Key, set[Key]] = field(default_factory=dict)
    ran: list[Key] = field(default_factory=list)
    conditions: list = field(default_factory=list)

    @property
    def depth(self) -> int:
        """Deepest re-entrant advance of any single cell so far."""
        return max(self.advances.values(), default=0)


class CycleGuard:
    """Applies the configured bounds to propagation frames."""

    def __init__(self, config: EngineConfig) -> None:
        self.cycle_bound = config.cycle_bound
        self.max_passes = max(config.max_passes, config.cycle_bound + 1)
        self._generation = itertools.count(1)

    def open_frame(self) -> PropagationFrame:
        return PropagationFrame(frame_id=next(self._generation))

    def check_write(self, frame: PropagationFrame, cell: Key) -> None:
        """Account for an in-flush write that changes cell."""
        count = frame.advances.get(cell, 0) + 1
        if count > self.cycle_bound:
            raise CycleDetected(
                frame.frame_id,
                [cell],
                f"cell advanced {count} times (bound {self.cycle_bound})",
            )
        frame.advances[cell] = count

    def check_run(self, frame: PropagationFrame, computation: Key, involved) -> None:
        """Account for one execution of computation."""
        count = frame.runs.get(computation, 0) + 1
        if count > self.max_passes:
            raise CycleDetected(
                frame.frame_id,
                sorted(involved),
                f"'{computation[1]}' ran {count} times (limit {self.max_passes})",
            )
        frame.runs[computation] = count
