"""Tests for write-back cycles and the cycle guard."""

import logging

import pytest

from fluxform import CycleDetected, CycleGuard, Engine, EngineConfig


def _bumper(engine, cell):
    def bump(ctx):
        ctx.write(cell, min(ctx.read(cell) + 1, 2))

    return engine.declare_computation("s", "bump", bump)


class TestConvergence:
    def test_converging_write_back_settles_within_bound(self):
        engine = Engine(EngineConfig(cycle_bound=2))
        v = engine.declare_cell("s", "v", 0)
        _bumper(engine, v)
        result = engine.flush()
        assert result.ok
        assert v.read() == 2

    def test_same_write_back_exceeds_bound_of_one(self):
        engine = Engine()
        v = engine.declare_cell("s", "v", 0)
        _bumper(engine, v)
        result = engine.flush()

        assert len(result.conditions) == 1
        cycle = result.conditions[0]
        assert isinstance(cycle, CycleDetected)
        assert cycle.involved_cell_ids == (v.key,)
        assert cycle.frame_id == result.frame_id
        # the rejected write is not applied
        assert v.read() == 1

    def test_temperature_round_trip(self):
        engine = Engine()
        celsius = engine.declare_cell("s", "celsius", 0)
        fahrenheit = engine.declare_cell("s", "fahrenheit", 32)

        def to_fahrenheit(ctx):
            ctx.write(fahrenheit, ctx.read(celsius) * 9 / 5 + 32)

        def to_celsius(ctx):
            ctx.write(celsius, (ctx.read(fahrenheit) - 32) * 5 / 9)

        engine.declare_computation("s", "to_fahrenheit", to_fahrenheit)
        engine.declare_computation("s", "to_celsius", to_celsius)
        assert engine.flush().ok

        celsius.write(100)
        result = engine.flush()
        assert result.ok
        assert fahrenheit.read() == 212
        assert celsius.read() == 100

    def test_host_writes_are_not_counted(self):
        engine = Engine()
        a = engine.declare_cell("s", "a", 0)
        out = engine.declare_computation("s", "out", lambda ctx: ctx.read(a))
        for i in range(5):
            a.write(i)
        assert engine.flush().ok
        assert out.read() == 4


class TestCycles:
    def test_toggle_is_rejected(self, caplog):
        engine = Engine(EngineConfig(cycle_bound=2))
        x = engine.declare_cell("s", "x", False)
        engine.declare_computation("s", "toggle", lambda ctx: ctx.write(x, not ctx.read(x)))

        with caplog.at_level(logging.WARNING, logger="fluxform.scheduler"):
            result = engine.flush()

        assert [type(c) for c in result.conditions] == [CycleDetected]
        assert x.read() is False
        assert "cycle detected" in caplog.text
        assert engine.conditions == result.conditions

    def test_unrelated_work_still_runs(self):
        engine = Engine()
        x = engine.declare_cell("s", "x", False)
        y = engine.declare_cell("s", "y", 1)
        engine.declare_computation("s", "toggle", lambda ctx: ctx.write(x, not ctx.read(x)))
        other = engine.declare_computation("s", "other", lambda ctx: ctx.read(y) * 10)

        result = engine.flush()
        assert len(result.conditions) == 1
        assert other.read() == 10

    def test_next_flush_starts_fresh(self):
        engine = Engine()
        x = engine.declare_cell("s", "x", False)
        engine.declare_computation("s", "toggle", lambda ctx: ctx.write(x, not ctx.read(x)))
        first = engine.flush()
        assert not first.ok

        x.write(False)
        second = engine.flush()
        assert second.frame_id > first.frame_id
        assert len(second.conditions) == 1

    def test_pull_cycle_between_computations(self):
        engine = Engine()
        engine.declare_computation("s", "a", lambda ctx: ctx.read("b"))
        engine.declare_computation("s", "b", lambda ctx: ctx.read("a"))
        result = engine.flush()
        assert any(isinstance(c, CycleDetected) for c in result.conditions)
        assert engine.scheduler.pending() == []

    def test_constraint_updates_never_cycle(self):
        engine = Engine()
        lo = engine.declare_cell("s", "min", 0)
        hi = engine.declare_cell("s", "max", 10)
        n = engine.declare_cell("s", "n", 5, constraints={"min": 0, "max": 10})
        runs = []

        def bounds(ctx):
            runs.append(1)
            ctx.update_constraints(n, min=ctx.read(lo), max=ctx.read(hi))

        watcher = engine.declare_computation("s", "bounds", bounds)
        engine.flush()
        runs.clear()

        lo.write(3)
        result = engine.flush()
        assert result.ok
        assert result.ran == [watcher.key]
        assert runs == [1]
        assert n.read() == 5
        assert n.constraints == {"min": 3, "max": 10}
        assert n.version == 0


class TestCycleGuard:
    def test_write_bound(self):
        guard = CycleGuard(EngineConfig(cycle_bound=1))
        frame = guard.open_frame()
        guard.check_write(frame, ("s", "x"))
        with pytest.raises(CycleDetected) as exc_info:
            guard.check_write(frame, ("s", "x"))
        assert exc_info.value.involved_cell_ids == (("s", "x"),)
        assert frame.advances == {("s", "x"): 1}
        assert frame.depth == 1

    def test_run_limit(self):
        guard = CycleGuard(EngineConfig(max_passes=2))
        frame = guard.open_frame()
        guard.check_run(frame, ("s", "c"), [])
        guard.check_run(frame, ("s", "c"), [])
        with pytest.raises(CycleDetected, match="ran 3 times"):
            guard.check_run(frame, ("s", "c"), [("s", "x")])
        assert frame.runs == {("s", "c"): 2}

    def test_run_limit_never_below_write_bound(self):
        guard = CycleGuard(EngineConfig(cycle_bound=5, max_passes=2))
        assert guard.max_passes == 6

    def test_frame_ids_increase(self):
        guard = CycleGuard(EngineConfig())
        assert guard.open_frame().frame_id < guard.open_frame().frame_id


class TestIndependentWriters:
    def test_two_writers_one_cell_in_one_transaction(self):
        engine = Engine()
        a = engine.declare_cell("s", "a", 0)
        b = engine.declare_cell("s", "b", 0)
        n = engine.declare_cell("s", "n", 0)
        engine.declare_computation("s", "from_a", lambda ctx: ctx.write(n, ctx.read(a)))
        engine.declare_computation("s", "from_b", lambda ctx: ctx.write(n, ctx.read(b) * 10))
        engine.flush()

        with engine.transaction():
            a.write(1)
            b.write(2)

        assert engine.conditions == []
        assert n.read() == 20

    def test_clamps_that_peek_do_not_cycle(self):
        engine = Engine()
        lo = engine.declare_cell("s", "min", 0)
        hi = engine.declare_cell("s", "max", 10)
        n = engine.declare_cell("s", "n", 5)

        def clamp_lo(ctx):
            low = ctx.read(lo)
            if ctx.peek(n) < low:
                ctx.write(n, low)

        def clamp_hi(ctx):
            high = ctx.read(hi)
            if ctx.peek(n) > high:
                ctx.write(n, high)

        engine.declare_computation("s", "clamp_lo", clamp_lo)
        engine.declare_computation("s", "clamp_hi", clamp_hi)
        engine.flush()

        lo.write(7)
        hi.write(6)
        result = engine.flush()
        assert result.ok
        assert n.read() == 6

    def test_clamps_reading_the_cell_with_crossed_bounds_cycle(self):
        """clamp_lo and clamp_hi both read n; min > max never settles."""
        engine = Engine()
        lo = engine.declare_cell("s", "min", 0)
        hi = engine.declare_cell("s", "max", 10)
        n = engine.declare_cell("s", "n", 5)

        def clamp_lo(ctx):
            if ctx.read(n) < ctx.read(lo):
                ctx.write(n, ctx.read(lo))

        def clamp_hi(ctx):
            if ctx.read(n) > ctx.read(hi):
                ctx.write(n, ctx.read(hi))

        engine.declare_computation("s", "clamp_lo", clamp_lo)
        engine.declare_computation("s", "clamp_hi", clamp_hi)
        engine.flush()

        lo.write(7)
        hi.write(6)
        result = engine.flush()
        assert [type(c) for c in result.conditions] == [CycleDetected]
        assert n.read() == 7

    def test_loop_through_two_computations_is_caught(self):
        engine = Engine()
        c = engine.declare_cell("s", "c", 0)
        f = engine.declare_cell("s", "f", 0)
        engine.declare_computation("s", "to_f", lambda ctx: ctx.write(f, ctx.read(c) + 1))
        engine.declare_computation("s", "to_c", lambda ctx: ctx.write(c, ctx.read(f) + 1))

        result = engine.flush()
        assert len(result.conditions) == 1
        cycle = result.conditions[0]
        assert isinstance(cycle, CycleDetected)
        assert cycle.involved_cell_ids == (c.key,)
        assert c.read() == 4
        assert engine.scheduler.pending() == []
