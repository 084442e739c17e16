"""Tests for fluxform.textual — Textual rendering sink."""

import asyncio
import threading

import pytest
from textual.app import App
from textual.css.query import NoMatches
from textual.widgets import Input, Label

from fluxform import ControlSpec, Engine
from fluxform import textual as ftx


class _MockApp:
    """Minimal mock matching the Textual App interface ftx needs."""

    def __init__(self, *, is_running=True):
        self.is_running = is_running
        self._call_from_thread_log = []

    def call_from_thread(self, fn, *args):
        self._call_from_thread_log.append((fn, args))
        fn(*args)


class _MockWidget:
    def __init__(self, spec):
        self.id = spec.id
        self.kind = spec.kind
        self.value = "" if spec.value is None else str(spec.value)
        self.border_subtitle = ""
        self.container = None

    def remove(self):
        self.container.widgets.pop(self.id)


class _MockContainer:
    def __init__(self):
        self.widgets = {}

    def mount(self, widget):
        widget.container = self
        self.widgets[widget.id] = widget

    def query_one(self, selector):
        try:
            return self.widgets[selector.lstrip("#")]
        except KeyError:
            raise NoMatches(f"No nodes match {selector!r}") from None


def _renderer(app=None):
    app = app or _MockApp()
    container = _MockContainer()
    return ftx.TextualRenderer(app, container, widget_factory=_MockWidget), container


class TestRenderer:
    def test_add_and_remove(self):
        renderer, container = _renderer()
        renderer.add_control(ControlSpec("n", "numeric", value=5, constraints={"min": 0, "max": 9}))
        assert container.widgets["n"].value == "5"
        assert container.widgets["n"].border_subtitle == "min 0 · max 9"

        renderer.remove_control("n")
        assert container.widgets == {}

    def test_remove_missing_is_swallowed(self):
        renderer, container = _renderer()
        renderer.remove_control("ghost")  # Should not raise

    def test_propagates_real_errors(self):
        """Non-NoMatches exceptions propagate normally."""

        def _factory(spec):
            raise ValueError("boom")

        renderer = ftx.TextualRenderer(_MockApp(), _MockContainer(), widget_factory=_factory)
        with pytest.raises(ValueError, match="boom"):
            renderer.add_control(ControlSpec("n", "numeric"))

    def test_render_updates_values(self):
        renderer, container = _renderer()
        renderer.add_control(ControlSpec("name", "text", value="Ada"))
        renderer.render((ControlSpec("name", "text", value="Grace"), ControlSpec("late", "text")))
        assert container.widgets["name"].value == "Grace"

    def test_update_control(self):
        renderer, container = _renderer()
        renderer.add_control(ControlSpec("n", "numeric", value=5))
        renderer.update_control("n", {"min": 3})
        assert container.widgets["n"].border_subtitle == "min 3"

    def test_skips_when_not_running(self):
        renderer, container = _renderer(_MockApp(is_running=False))
        renderer.add_control(ControlSpec("n", "numeric"))
        assert container.widgets == {}

    def test_skips_during_pause(self):
        app = _MockApp()
        renderer, container = _renderer(app)
        with ftx.pause(app):
            renderer.add_control(ControlSpec("n", "numeric"))
        assert container.widgets == {}

    def test_thread_marshal(self):
        """Calls from a background thread use call_from_thread."""
        app = _MockApp()
        renderer, container = _renderer(app)

        t = threading.Thread(target=lambda: renderer.add_control(ControlSpec("n", "numeric")))
        t.start()
        t.join()

        assert "n" in container.widgets
        assert len(app._call_from_thread_log) == 1


class TestEngineIntegration:
    def _form(self):
        engine = Engine()
        kind = engine.declare_cell("form", "kind", "slider")
        renderer, container = _renderer()
        panel = engine.declare_ui(
            "form",
            "panel",
            lambda ctx: [
                ControlSpec("label", "label", value="Amount"),
                ControlSpec("amount", ctx.read(kind), value=0),
            ],
            renderer,
        )
        engine.flush()
        return engine, kind, panel, container

    def test_controls_follow_graph(self):
        engine, kind, panel, container = self._form()
        assert list(container.widgets) == ["label", "amount"]

        amount = container.widgets["amount"]
        kind.write("numeric")
        engine.flush()
        assert container.widgets["amount"] is not amount
        assert container.widgets["amount"].kind == "numeric"

    def test_input_handler_writes_back(self):
        engine, kind, panel, container = self._form()
        on_change = ftx.input_handler(engine, panel)
        on_change("amount", "42")
        assert engine.read(("form/panel", "amount")) == "42"

        kind.write("numeric")
        engine.flush()
        assert container.widgets["amount"].value == "42"

    def test_destroy_scope_unmounts(self):
        engine, kind, panel, container = self._form()
        engine.destroy_scope("form")
        assert container.widgets == {}


def _build_in_app(spec):
    """Widgets with reactive values need an active app to be constructed."""

    async def _run():
        app = App()
        async with app.run_test():
            return ftx.default_widget(spec)

    return asyncio.run(_run())


class TestDefaultWidget:
    def test_numeric_is_number_input(self):
        widget = _build_in_app(ControlSpec("n", "numeric", value=5))
        assert isinstance(widget, Input)
        assert widget.id == "n"
        assert widget.type == "number"
        assert widget.value == "5"

    def test_unknown_kind_is_label(self):
        widget = _build_in_app(ControlSpec("x", "mystery", value=1))
        assert isinstance(widget, Label)

    def test_describe_constraints(self):
        assert ftx.describe_constraints({"max": 9, "min": 1, "choices": [1]}) == "min 1 · max 9"
        assert ftx.describe_constraints({}) == ""


class TestPause:
    def test_pause_restores_on_exception(self):
        app = _MockApp()
        assert ftx.is_safe(app)

        with pytest.raises(RuntimeError):
            with ftx.pause(app):
                assert not ftx.is_safe(app)
                raise RuntimeError("oops")

        # Restored despite exception
        assert ftx.is_safe(app)

    def test_pause_does_not_mutate_app(self):
        """Pause state lives in the module, not on the app."""
        app = _MockApp()
        attrs_before = set(vars(app))
        with ftx.pause(app):
            attrs_during = set(vars(app))
        attrs_after = set(vars(app))
        assert attrs_before == attrs_during, (
            f"pause() added attributes to app: {attrs_during - attrs_before}"
        )
        assert attrs_before == attrs_after

    def test_multiple_apps_independent(self):
        """Pausing one app does not affect another."""
        app_a = _MockApp()
        app_b = _MockApp()
        with ftx.pause(app_a):
            assert not ftx.is_safe(app_a)
            assert ftx.is_safe(app_b)
