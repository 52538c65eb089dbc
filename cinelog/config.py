"""
cinelog.config — YAML Configuration Loader
===========================================

Tuning knobs for the feed aggregator and the evaluation worker, read from
``config.yaml``.  Secrets and connection strings stay in the
environment (``DATABASE_URL``, ``JWT_SECRET``) and are loaded through
``python-dotenv`` by the entry points.

Usage::

    from cinelog.config import load_config

    cfg = load_config()               # reads ./config.yaml by default
    print(cfg.feed.max_items)         # 30
    print(cfg.worker.batch_size)      # 50
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Typed settings objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class FeedConfig:
    """Bounds for the fan-out-on-read feed."""

    per_followee_limit: int = 5      # K entries fetched per followee
    max_items: int = 30              # global truncation after the merge
    query_timeout_seconds: float = 2.0  # per followee query, not per batch
    max_concurrency: int = 16        # simultaneous followee queries


@dataclass(frozen=True, slots=True)
class WorkerConfig:
    """Evaluation queue worker tuning."""

    poll_interval_seconds: float = 2.0
    batch_size: int = 50
    lease_seconds: int = 60
    max_attempts: int = 5
    retry_backoff_seconds: int = 30
    evaluation_delay_seconds: float = 2.0
    reconciliation_interval_hours: float = 168.0  # weekly


@dataclass(frozen=True, slots=True)
class CinelogConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    feed: FeedConfig = field(default_factory=FeedConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _section(raw: dict, name: str, cls: type) -> dict:
    """Pick the keys of *raw[name]* that *cls* knows about."""
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")
    known = set(cls.__dataclass_fields__)
    unknown = set(section) - known
    if unknown:
        logger.warning("Ignoring unknown %s config keys: %s", name, sorted(unknown))
    return {k: v for k, v in section.items() if k in known}


def _validate(cfg: CinelogConfig) -> None:
    positive = {
        "feed.per_followee_limit": cfg.feed.per_followee_limit,
        "feed.max_items": cfg.feed.max_items,
        "feed.query_timeout_seconds": cfg.feed.query_timeout_seconds,
        "feed.max_concurrency": cfg.feed.max_concurrency,
        "worker.poll_interval_seconds": cfg.worker.poll_interval_seconds,
        "worker.batch_size": cfg.worker.batch_size,
        "worker.lease_seconds": cfg.worker.lease_seconds,
        "worker.max_attempts": cfg.worker.max_attempts,
        "worker.reconciliation_interval_hours": cfg.worker.reconciliation_interval_hours,
    }
    for key, value in positive.items():
        if value <= 0:
            raise ValueError(f"{key} must be positive (got {value!r})")
    if cfg.worker.retry_backoff_seconds < 0 or cfg.worker.evaluation_delay_seconds < 0:
        raise ValueError("worker delays must not be negative")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path | None = None) -> CinelogConfig:
    """Read *path* and return a :class:`CinelogConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.  Defaults to the
        ``CINELOG_CONFIG`` environment variable, then ``config.yaml`` in
        the current working directory.  A missing file yields the defaults.

    Raises
    ------
    ValueError
        If a section is malformed or a limit is not positive.
    """
    config_path = Path(path or os.getenv("CINELOG_CONFIG", "config.yaml"))
    if not config_path.exists():
        logger.info("No config file at %s — using defaults", config_path.resolve())
        return CinelogConfig()

    with open(config_path, encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}

    cfg = CinelogConfig(
        feed=FeedConfig(**_section(raw, "feed", FeedConfig)),
        worker=WorkerConfig(**_section(raw, "worker", WorkerConfig)),
    )
    _validate(cfg)
    return cfg
