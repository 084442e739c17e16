"""Actions and transactions — batched writes.

Wrapping writes in an action or ``with transaction(engine)`` defers the
flush until the outermost scope exits. Every Computation dirtied inside
runs once, after all the writes, so nothing observes a half-applied
update.
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from typing import TYPE_CHECKING, Callable, ParamSpec, TypeVar

if TYPE_CHECKING:
    from fluxform.engine import Engine

P = ParamSpec("P")
R = TypeVar("R")


def action(engine: Engine) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator factory: batch all writes made inside the decorated function.

    Usage:
        lo = engine.declare_cell("form", "min", 0)
        hi = engine.declare_cell("form", "max", 10)

        @action(engine)
        def widen():
            lo.write(lo.read() - 1)
            hi.write(hi.read() + 1)
            # dependents see both changes at once, after widen() returns
    """

    def decorator(fn: Callable[P, R]) -> Callable[P, R]:
        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            engine.scheduler.begin_batch()
            try:
                return fn(*args, **kwargs)
            finally:
                engine.scheduler.end_batch()

        return wrapper

    return decorator


@contextmanager
def transaction(engine: Engine):
    """Context manager for batching writes.

    Usage:
        with transaction(engine):
            lo.write(1)
            hi.write(2)
            # dependents run here, after both are set
    """
    engine.scheduler.begin_batch()
    try:
        yield engine
    finally:
        engine.scheduler.end_batch()
