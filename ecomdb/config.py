"""
Configuration for ecomdb.

Uses pydantic-settings for environment variable loading (prefix ECOMDB_).

Invariants:
    - All settings have defaults suitable for an in-memory, unpersisted store
    - Persistence is enabled only when ECOMDB_DATA_DIR is set
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

from .persist.base import create_sink
from .schema.definitions import default_registry
from .store.entity_store import EntityStore

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """ecomdb configuration loaded from environment."""

    # Persistence
    data_dir: Optional[str] = Field(
        default=None, description="Snapshot directory (unset = no persistence)"
    )
    compress_snapshots: bool = Field(default=True, description="gzip snapshot files")
    restore_on_start: bool = Field(
        default=True, description="Load existing snapshots when the store is created"
    )

    # Logging
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING or ERROR")
    log_format: str = Field(default="text", description="text or json")

    # Report defaults
    tax_rate: Decimal = Field(default=Decimal("0.18"), ge=0, description="Tax added to order totals")
    shipping_fee: Decimal = Field(default=Decimal("15.00"), ge=0, description="Flat shipping surcharge")
    low_stock_threshold: int = Field(default=20, ge=0, description="Default low-stock threshold")
    top_spenders_limit: int = Field(default=5, ge=0, description="Default N for top spenders")

    model_config = {"env_prefix": "ECOMDB_"}

    @property
    def persistence_enabled(self) -> bool:
        return bool(self.data_dir)


def create_store(settings: Optional[Settings] = None) -> EntityStore:
    """Build a store wired to the sink described by ``settings``.

    When persistence is enabled and restore_on_start is set, existing
    snapshots are loaded before the store is returned.
    """
    settings = settings or Settings()
    registry = default_registry()
    sink = create_sink(settings, fingerprint=registry.fingerprint)
    store = EntityStore(registry=registry, sink=sink)

    if sink is not None and settings.restore_on_start:
        loaded = store.restore()
        logger.info(f"Store ready with {loaded} record(s) from {settings.data_dir}")
    else:
        logger.info("Store ready (in-memory, no persistence)")
    return store
