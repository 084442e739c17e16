"""fluxform error hierarchy.

All fluxform-specific errors inherit from FluxError for easy catching.
CycleDetected and ComputationFailure are also the condition objects
reported to the host through Engine.on_condition().
"""

from __future__ import annotations


class FluxError(Exception):
    """Base error for all fluxform operations."""


class ConfigError(FluxError):
    """Invalid engine configuration."""


class DuplicateId(FluxError):
    """A declaration collided with a live Cell or Computation in its scope."""

    def __init__(self, scope: str, node_id: str, message: str | None = None):
        self.scope = scope
        self.node_id = node_id
        super().__init__(message or f"'{node_id}' already exists in scope '{scope}'")


class UnknownId(FluxError):
    """A read or write targeted a Cell that does not exist."""

    def __init__(self, scope: str, node_id: str, message: str | None = None):
        self.scope = scope
        self.node_id = node_id
        super().__init__(message or f"no cell '{node_id}' in scope '{scope}'")


class CycleDetected(FluxError):
    """Propagation exceeded the configured re-entrant bound."""

    def __init__(self, frame_id: int, involved_cell_ids, reason: str = ""):
        self.frame_id = frame_id
        self.involved_cell_ids = tuple(involved_cell_ids)
        ids = ", ".join(f"{scope}:{node_id}" for scope, node_id in self.involved_cell_ids)
        msg = f"cycle detected in frame {frame_id} involving [{ids}]"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class ComputationFailure(FluxError):
    """A Computation body raised while executing."""

    def __init__(self, computation, error: BaseException):
        self.computation = computation
        self.error = error
        scope, node_id = computation
        super().__init__(f"computation '{node_id}' in scope '{scope}' failed: {error!r}")
