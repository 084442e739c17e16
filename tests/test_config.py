"""Tests for EngineConfig."""

import dataclasses

import pytest

from fluxform import ConfigError, Engine, EngineConfig


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig()
        assert config.cycle_bound == 1
        assert config.max_passes == 8
        assert config.auto_flush is False

    def test_engine_uses_default_config(self):
        assert Engine().config == EngineConfig()

    @pytest.mark.parametrize("field", ["cycle_bound", "max_passes"])
    def test_rejects_bound_below_one(self, field):
        with pytest.raises(ConfigError, match=field):
            EngineConfig(**{field: 0})

    def test_frozen(self):
        config = EngineConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.cycle_bound = 3
