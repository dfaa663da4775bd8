"""
Configuration module: all settings from env vars with sensible defaults.
"""
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from . import crd
from .errors import ConfigError

TRUTHY = ("true", "1", "yes")


@dataclass(frozen=True)
class Settings:
    # Kubernetes
    kubeconfig: str = ""
    in_cluster: bool = False

    # Reconcile scheduling
    resync_interval: float = 60.0
    retry_delay: float = 30.0
    max_workers: int = 4
    watch_owned: bool = True

    # Service port health probe
    probe_timeout: float = 0.1

    finalizer: str = crd.FINALIZER
    log_level: str = "INFO"


def _number(environ, key, default, cast):
    raw = environ.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{key} must be positive, got {raw!r}")
    return value


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from the given mapping (defaults to ``os.environ``)."""
    if environ is None:
        environ = os.environ
    return Settings(
        kubeconfig=environ.get("KUBECONFIG", ""),
        in_cluster=environ.get("IN_CLUSTER", "false").lower() in TRUTHY,
        resync_interval=_number(environ, "UNIT_RESYNC_INTERVAL", 60.0, float),
        retry_delay=_number(environ, "UNIT_RETRY_DELAY", 30.0, float),
        max_workers=_number(environ, "UNIT_MAX_WORKERS", 4, int),
        watch_owned=environ.get("UNIT_WATCH_OWNED", "true").lower() in TRUTHY,
        probe_timeout=_number(environ, "UNIT_PROBE_TIMEOUT", 0.1, float),
        finalizer=environ.get("UNIT_FINALIZER") or crd.FINALIZER,
        log_level=environ.get("UNIT_LOG_LEVEL", "INFO").upper(),
    )


settings = load_settings()
