"""
Engine configuration from environment variables.

Environment Variables:
    FINREPLAY_BACKEND: Storage backend (file, s3, memory) - default: file
    FINREPLAY_DATA_DIR: Root for file-backed stores - default: ./finreplay-data
    FINREPLAY_S3_BUCKET: Bucket for the s3 delta log (required for s3)
    FINREPLAY_S3_PREFIX: Key prefix - default: finreplay
    FINREPLAY_S3_ENDPOINT_URL: Custom endpoint (MinIO, LocalStack)
    FINREPLAY_S3_REGION: AWS region - default: us-east-1
    FINREPLAY_REPLAY_TIMEOUT_SECONDS: Replay deadline - default: unset (none)
    FINREPLAY_UPDATE_POLICY: ignore, strict, upsert - default: ignore
    FINREPLAY_COMPRESSION_LEVEL: zlib level 1-9 - default: 6
    FINREPLAY_METRICS_ENABLED: Start /metrics server (1/true) - default: false
    FINREPLAY_METRICS_PORT: Metrics port - default: 9108
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .core.applicator import UpdatePolicy
from .core.errors import ConfigError

BACKENDS = ("file", "s3", "memory")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{name}: expected a boolean, got {raw!r}")


def _int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name}: expected an integer, got {raw!r}") from None


@dataclass
class EngineConfig:
    backend: str = "file"
    data_dir: str = "./finreplay-data"
    s3_bucket: Optional[str] = None
    s3_prefix: str = "finreplay"
    s3_endpoint_url: Optional[str] = None
    s3_region: str = "us-east-1"
    replay_timeout_seconds: Optional[float] = None
    update_policy: UpdatePolicy = UpdatePolicy.IGNORE
    compression_level: int = 6
    metrics_enabled: bool = False
    metrics_port: int = 9108

    def validate(self) -> "EngineConfig":
        if self.backend not in BACKENDS:
            raise ConfigError(f"FINREPLAY_BACKEND: must be one of {', '.join(BACKENDS)}")
        if self.backend == "s3" and not self.s3_bucket:
            raise ConfigError("FINREPLAY_S3_BUCKET is required for the s3 backend")
        if not 1 <= self.compression_level <= 9:
            raise ConfigError("FINREPLAY_COMPRESSION_LEVEL: must be between 1 and 9")
        if self.replay_timeout_seconds is not None and self.replay_timeout_seconds <= 0:
            raise ConfigError("FINREPLAY_REPLAY_TIMEOUT_SECONDS: must be positive")
        return self

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        env = os.environ if environ is None else environ

        timeout_raw = env.get("FINREPLAY_REPLAY_TIMEOUT_SECONDS")
        timeout = None
        if timeout_raw:
            try:
                timeout = float(timeout_raw)
            except ValueError:
                raise ConfigError(
                    f"FINREPLAY_REPLAY_TIMEOUT_SECONDS: expected a number, got {timeout_raw!r}"
                ) from None

        policy_raw = env.get("FINREPLAY_UPDATE_POLICY", "ignore").lower()
        try:
            policy = UpdatePolicy(policy_raw)
        except ValueError:
            raise ConfigError(f"FINREPLAY_UPDATE_POLICY: unknown policy {policy_raw!r}") from None

        config = EngineConfig(
            backend=env.get("FINREPLAY_BACKEND", "file").lower(),
            data_dir=env.get("FINREPLAY_DATA_DIR", "./finreplay-data"),
            s3_bucket=env.get("FINREPLAY_S3_BUCKET") or None,
            s3_prefix=env.get("FINREPLAY_S3_PREFIX", "finreplay"),
            s3_endpoint_url=env.get("FINREPLAY_S3_ENDPOINT_URL") or None,
            s3_region=env.get("FINREPLAY_S3_REGION", "us-east-1"),
            replay_timeout_seconds=timeout,
            update_policy=policy,
            compression_level=_int(
                "FINREPLAY_COMPRESSION_LEVEL", env.get("FINREPLAY_COMPRESSION_LEVEL", "6")
            ),
            metrics_enabled=_bool(
                "FINREPLAY_METRICS_ENABLED", env.get("FINREPLAY_METRICS_ENABLED", "false")
            ),
            metrics_port=_int("FINREPLAY_METRICS_PORT", env.get("FINREPLAY_METRICS_PORT", "9108")),
        )
        return config.validate()
