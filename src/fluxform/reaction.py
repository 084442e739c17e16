"""Reactions — side effects driven by the graph.

Two flavors, both plain Computations run by the Scheduler:
- autorun(engine, scope, id, fn): runs fn(ctx) on the next flush and again
  whenever anything it read changes.
- reaction(engine, scope, id, data_fn, effect_fn): tracks data_fn(ctx) and
  calls effect_fn with the new value only when that value changes.

Effects run inside the flush; an effect that raises is reported as a
ComputationFailure like any failing body.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, TypeVar

if TYPE_CHECKING:
    from fluxform._tracking import RunContext
    from fluxform.computation import Computation
    from fluxform.engine import Engine

T = TypeVar("T")


def autorun(engine: Engine, scope: str, node_id: str, fn: Callable[[RunContext], None]) -> Computation:
    """Run fn on the next flush, then whenever anything it read changes.

    Usage:
        log = []
        n = engine.declare_cell("form", "n", 0)
        autorun(engine, "form", "logger", lambda ctx: log.append(ctx.read(n)))
        engine.flush()   # log == [0]
        n.write(1)
        engine.flush()   # log == [0, 1]
    """

    def body(ctx):
        fn(ctx)

    return engine.declare_computation(scope, node_id, body)


def reaction(
    engine: Engine,
    scope: str,
    node_id: str,
    data_fn: Callable[[RunContext], T],
    effect_fn: Callable[[T], None],
    *,
    fire_immediately: bool = False,
) -> Computation:
    """Track data_fn; call effect_fn when its result changes.

    The first result only establishes the baseline unless fire_immediately
    is set.

    Usage:
        first = engine.declare_cell("form", "first", "Alice")
        effects = []
        reaction(engine, "form", "greeting",
                 lambda ctx: f"Hello {ctx.read(first)}",
                 effects.append)
        engine.flush()          # effects == []
        first.write("Bob")
        engine.flush()          # effects == ["Hello Bob"]
    """
    initialized = [fire_immediately]

    def effect(value: T) -> None:
        if not initialized[0]:
            initialized[0] = True
            return
        effect_fn(value)

    return engine.declare_computation(scope, node_id, data_fn, effect)
