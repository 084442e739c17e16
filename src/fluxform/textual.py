"""Textual rendering sink for fluxform. Opt-in — requires textual.

TextualRenderer implements the Renderer protocol on top of a Textual
container: add_control mounts a widget whose id is the control id,
remove_control removes it, update_control and render refresh what the
widget shows. Guard + NoMatches + thread-marshal are enforced here, not at
callsites, so the reconciler stays agnostic of Textual.

Pause state is owned by this module and keyed by id(app), so several apps
can coexist in tests.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Callable

from textual.css.query import NoMatches

if TYPE_CHECKING:
    from fluxform.engine import Engine
    from fluxform.reconciler import ControlSpec

logger = logging.getLogger("fluxform.textual")

_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend rendering during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def describe_constraints(constraints: dict) -> str:
    parts = []
    for name in ("min", "max", "step"):
        if name in constraints:
            parts.append(f"{name} {constraints[name]}")
    return " · ".join(parts)


def default_widget(spec: ControlSpec):
    """Build the Textual widget for a control spec."""
    from textual.widgets import Checkbox, Input, Label, Select, Switch

    value = spec.value
    if spec.kind in ("numeric", "slider"):
        return Input(value="" if value is None else str(value), type="number", id=spec.id)
    if spec.kind == "text":
        return Input(value="" if value is None else str(value), id=spec.id)
    if spec.kind == "checkbox":
        return Checkbox(spec.label, value=bool(value), id=spec.id)
    if spec.kind == "switch":
        return Switch(value=bool(value), id=spec.id)
    if spec.kind == "select":
        choices = list(spec.constraints.get("choices", ()))
        options = [(str(choice), choice) for choice in choices]
        if value in choices:
            return Select(options, value=value, id=spec.id)
        return Select(options, id=spec.id)
    return Label(f"{spec.label or spec.id}: {value}", id=spec.id)


def _show_value(widget, spec: ControlSpec) -> None:
    if spec.kind in ("numeric", "slider", "text"):
        text = "" if spec.value is None else str(spec.value)
        if widget.value != text:
            widget.value = text
    elif spec.kind in ("checkbox", "switch"):
        if widget.value != bool(spec.value):
            widget.value = bool(spec.value)
    elif spec.kind == "select":
        if spec.value in spec.constraints.get("choices", ()) and widget.value != spec.value:
            widget.value = spec.value
    elif hasattr(widget, "update"):
        widget.update(f"{spec.label or spec.id}: {spec.value}")


class TextualRenderer:
    """Renderer that mounts one Textual widget per control."""

    def __init__(self, app, container=None, widget_factory: Callable | None = None) -> None:
        self.app = app
        self.container = container if container is not None else app
        self.widget_factory = widget_factory or default_widget
        self._main = threading.get_ident()

    def _dispatch(self, fn: Callable[[], None]) -> None:
        if not is_safe(self.app):
            logger.debug("skipping render call, app not safe")
            return
        if threading.get_ident() != self._main:
            self.app.call_from_thread(self._safe, fn)
        else:
            self._safe(fn)

    def _safe(self, fn: Callable[[], None]) -> None:
        try:
            fn()
        except NoMatches:
            pass

    def _query(self, control_id: str):
        return self.container.query_one(f"#{control_id}")

    def add_control(self, spec: ControlSpec) -> None:
        def _add():
            widget = self.widget_factory(spec)
            subtitle = describe_constraints(spec.constraints)
            if subtitle:
                widget.border_subtitle = subtitle
            self.container.mount(widget)

        self._dispatch(_add)

    def remove_control(self, control_id: str) -> None:
        self._dispatch(lambda: self._query(control_id).remove())

    def update_control(self, control_id: str, constraints: dict) -> None:
        def _update():
            widget = self._query(control_id)
            widget.border_subtitle = describe_constraints(constraints)
            if "choices" in constraints and hasattr(widget, "set_options"):
                widget.set_options([(str(choice), choice) for choice in constraints["choices"]])

        self._dispatch(_update)

    def render(self, description) -> None:
        def _render():
            for spec in description:
                try:
                    _show_value(self._query(spec.id), spec)
                except NoMatches:
                    logger.debug("control %s not mounted yet", spec.id)

        self._dispatch(_render)


def input_handler(engine: Engine, ui) -> Callable[[str, object], None]:
    """Build a callback that writes a widget's new value back into its Cell.

    Call it from the app's message handlers, e.g. on Input.Changed:

        on_change = input_handler(engine, panel)

        def on_input_changed(self, event):
            on_change(event.input.id, event.value)
    """
    reconciler = engine.reconciler(ui)

    def _handle(control_id: str, value) -> None:
        engine.write(reconciler.cell_key(control_id), value)
        engine.flush()

    return _handle
