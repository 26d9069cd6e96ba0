# src/goalcore/storage/manager.py
"""
Storage Manager for GoalCore.

Handles selection and lifecycle of the KPI storage backend based on the
``[storage]`` section of the configuration.
"""

import logging
from typing import Dict, Optional, Type

from ..config.models import StorageConfig
from ..exceptions import ConfigError, StorageError
from .base_store import BaseKpiStore
from .sqlite_store import SqliteKpiStore

logger = logging.getLogger(__name__)

# --- Mapping from config type string to class ---
KPI_STORAGE_MAP: Dict[str, Type[BaseKpiStore]] = {
    "sqlite": SqliteKpiStore,
}


class StorageManager:
    """
    Manages the initialization and access to the KPI storage backend.
    """
    _config: StorageConfig
    _store: Optional[BaseKpiStore] = None

    def __init__(self, config: StorageConfig):
        self._config = config

    async def initialize_storage(self) -> BaseKpiStore:
        """
        Create and initialize the configured backend.

        Raises:
            ConfigError: If the storage type is not supported.
            StorageError: If the backend fails to initialize.
        """
        if self._store is not None:
            return self._store

        storage_type = self._config.type.lower()
        store_cls = KPI_STORAGE_MAP.get(storage_type)
        if store_cls is None:
            raise ConfigError(f"Unsupported storage type configured: '{storage_type}'. "
                              f"Available types: {list(KPI_STORAGE_MAP.keys())}")

        store = store_cls()
        await store.initialize(self._config.model_dump())
        self._store = store
        logger.info(f"KPI storage '{storage_type}' initialized.")
        return store

    @property
    def store(self) -> BaseKpiStore:
        """The initialized backend."""
        if self._store is None:
            raise StorageError("Storage not initialized. Call initialize_storage() first.")
        return self._store

    async def close_storage(self) -> None:
        if self._store is not None:
            await self._store.close()
            self._store = None
            logger.info("KPI storage closed.")
