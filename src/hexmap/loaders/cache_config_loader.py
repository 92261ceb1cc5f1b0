"""Cache configuration — loads tunable constants from config/cache.yaml.

Provides a single ``CacheConfig`` dataclass that is loaded once when a map
is opened and then passed to the services that need it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from hexmap.util.constants import (
    DEFAULT_MAX_AGE_SECONDS,
    DEFAULT_MAX_DEPTH,
    DEFAULT_SYNC_INTERVAL_SECONDS,
)

log = logging.getLogger(__name__)

DEFAULT_CACHE_CONFIG_PATH = "config/cache.yaml"


@dataclass
class CacheConfig:
    """All tunable cache and interaction constants.

    Every field has a sensible default so a map can be opened even without
    the file.
    """

    # -- Freshness ---------------------------------------------------
    max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS

    # -- Loading -----------------------------------------------------
    max_depth: int = DEFAULT_MAX_DEPTH

    # -- Mutation ----------------------------------------------------
    enable_optimistic_updates: bool = True
    allow_root_drag: bool = False

    # -- Sync --------------------------------------------------------
    sync_interval_seconds: float = DEFAULT_SYNC_INTERVAL_SECONDS


def load_cache_config(path: str = DEFAULT_CACHE_CONFIG_PATH) -> CacheConfig:
    """Load cache configuration from a YAML file.

    Missing keys fall back to dataclass defaults and unknown keys are
    ignored.  If the file does not exist, a warning is logged and pure
    defaults are returned.
    """
    p = Path(path)
    if not p.exists():
        log.warning("Cache config not found at %s, using defaults", p)
        return CacheConfig()

    with p.open() as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"{p}: expected a mapping at top level, got {type(raw).__name__}")

    log.info("Loaded cache config from %s (%d keys)", p, len(raw))

    unknown = sorted(k for k in raw if k not in CacheConfig.__dataclass_fields__)
    if unknown:
        log.warning("Ignoring unknown cache config keys: %s", ", ".join(unknown))

    return CacheConfig(**{
        k: v for k, v in raw.items()
        if k in CacheConfig.__dataclass_fields__
    })
