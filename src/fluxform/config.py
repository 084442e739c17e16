"""Engine configuration.

EngineConfig is frozen after creation; pass a new one to a new Engine to
change behavior.
"""

from dataclasses import dataclass

from fluxform.errors import ConfigError


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Configuration for an Engine.

    Attributes:
        cycle_bound: How many times one Cell may be advanced by writes issued
            from inside running Computations within a single propagation
            frame. 1 rejects the first write-back that would move a Cell a
            second time; raise it for convergent write-back patterns.
        max_passes: How many times one Computation may execute within a
            single propagation frame before the frame is declared cyclic.
            The effective limit is never lower than cycle_bound + 1.
        auto_flush: Flush immediately after a host write made outside a
            transaction, instead of waiting for an explicit flush().
    """

    cycle_bound: int = 1
    max_passes: int = 8
    auto_flush: bool = False

    def __post_init__(self) -> None:
        if self.cycle_bound < 1:
            raise ConfigError(f"cycle_bound must be >= 1, got {self.cycle_bound}")
        if self.max_passes < 1:
            raise ConfigError(f"max_passes must be >= 1, got {self.max_passes}")
