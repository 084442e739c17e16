"""fluxform: reactive dependency tracking and UI synchronization for Python."""

from importlib.metadata import version as _version

__version__ = _version("fluxform")

from fluxform._tracking import PENDING, RunContext, req
from fluxform.cell import Cell
from fluxform.computation import Computation, computation
from fluxform.config import EngineConfig
from fluxform.engine import Engine
from fluxform.errors import (
    ComputationFailure,
    ConfigError,
    CycleDetected,
    DuplicateId,
    FluxError,
    UnknownId,
)
from fluxform.graph import DependencyGraph
from fluxform.guard import CycleGuard, PropagationFrame
from fluxform.reaction import autorun, reaction
from fluxform.action import action, transaction
from fluxform.reconciler import ControlSpec, Reconciler, Renderer
from fluxform.scheduler import FlushResult, Scheduler
from fluxform.scope import Scope
# textual NOT auto-imported — opt-in only

__all__ = [
    "Engine",
    "EngineConfig",
    "Scope",
    "Cell",
    "Computation",
    "computation",
    "RunContext",
    "PENDING",
    "req",
    "DependencyGraph",
    "Scheduler",
    "FlushResult",
    "CycleGuard",
    "PropagationFrame",
    "ControlSpec",
    "Reconciler",
    "Renderer",
    "autorun",
    "reaction",
    "action",
    "transaction",
    "FluxError",
    "ConfigError",
    "DuplicateId",
    "UnknownId",
    "CycleDetected",
    "ComputationFailure",
]
