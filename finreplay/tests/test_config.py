"""
Tests for environment configuration and engine wiring.
"""

import os
import tempfile

import pytest

from finreplay.config import EngineConfig
from finreplay.core.applicator import UpdatePolicy
from finreplay.core.errors import ConfigError
from finreplay.engine import build_engine
from finreplay.log.file_store import FileDeltaLog
from finreplay.log.memory_store import InMemoryDeltaLog
from finreplay.snapshot.store import FileSnapshotStore


def test_defaults():
    config = EngineConfig.from_env({})

    assert config.backend == "file"
    assert config.update_policy is UpdatePolicy.IGNORE
    assert config.replay_timeout_seconds is None
    assert config.compression_level == 6
    assert config.metrics_enabled is False


def test_values_parsed():
    config = EngineConfig.from_env(
        {
            "FINREPLAY_BACKEND": "memory",
            "FINREPLAY_UPDATE_POLICY": "STRICT",
            "FINREPLAY_REPLAY_TIMEOUT_SECONDS": "2.5",
            "FINREPLAY_COMPRESSION_LEVEL": "9",
            "FINREPLAY_METRICS_ENABLED": "true",
            "FINREPLAY_METRICS_PORT": "9200",
        }
    )

    assert config.backend == "memory"
    assert config.update_policy is UpdatePolicy.STRICT
    assert config.replay_timeout_seconds == 2.5
    assert config.compression_level == 9
    assert config.metrics_enabled is True
    assert config.metrics_port == 9200


@pytest.mark.parametrize(
    "env",
    [
        {"FINREPLAY_BACKEND": "postgres"},
        {"FINREPLAY_BACKEND": "s3"},
        {"FINREPLAY_UPDATE_POLICY": "maybe"},
        {"FINREPLAY_COMPRESSION_LEVEL": "11"},
        {"FINREPLAY_COMPRESSION_LEVEL": "fast"},
        {"FINREPLAY_REPLAY_TIMEOUT_SECONDS": "-1"},
        {"FINREPLAY_METRICS_ENABLED": "perhaps"},
    ],
)
def test_invalid_values_rejected(env):
    with pytest.raises(ConfigError):
        EngineConfig.from_env(env)


def test_build_engine_file_backend():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = build_engine(EngineConfig(data_dir=tmpdir))

        assert isinstance(engine.deltas, FileDeltaLog)
        assert isinstance(engine.snapshots, FileSnapshotStore)
        assert os.path.isdir(os.path.join(tmpdir, "deltas"))
        assert os.path.isdir(os.path.join(tmpdir, "snapshots"))


def test_build_engine_applies_policy_and_timeout():
    engine = build_engine(
        EngineConfig(backend="memory", update_policy=UpdatePolicy.UPSERT, replay_timeout_seconds=3)
    )

    assert isinstance(engine.deltas, InMemoryDeltaLog)
    assert engine.coordinator.applicator.policy is UpdatePolicy.UPSERT
    assert engine.coordinator.default_timeout == 3
