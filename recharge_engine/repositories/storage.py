"""Storage backend selection and the process-wide store instance."""

import threading
from typing import Optional, Union

from recharge_engine.config import ConfigurationError, get_config
from recharge_engine.logging_config import get_logger
from recharge_engine.models import StorageConfig
from recharge_engine.repositories.memory_store import InMemoryStore
from recharge_engine.repositories.sql_store import SqlStore

logger = get_logger(__name__)

Store = Union[InMemoryStore, SqlStore]

BACKENDS = ("memory", "sql")


def create_store(settings: Optional[StorageConfig] = None) -> Store:
    """Build a store for the configured backend.

    Args:
        settings: Storage settings (defaults to the global configuration)

    Raises:
        ConfigurationError: If the backend name is unknown
    """
    settings = settings or get_config().storage_settings
    backend = settings.backend.lower()
    if backend not in BACKENDS:
        raise ConfigurationError(
            f"Unknown storage backend: {settings.backend}. Expected one of {list(BACKENDS)}"
        )

    logger.info("store_created", backend=backend)
    if backend == "sql":
        return SqlStore(url=settings.url, echo=settings.echo)
    return InMemoryStore()


_store_instance: Optional[Store] = None
_store_lock = threading.Lock()


def get_store() -> Store:
    """Get global store instance (singleton)."""
    global _store_instance
    if _store_instance is None:
        with _store_lock:
            if _store_instance is None:
                _store_instance = create_store()
    return _store_instance


def set_store(store: Optional[Store]) -> None:
    """Replace the global store (None drops it)."""
    global _store_instance
    with _store_lock:
        _store_instance = store


def reset_store() -> None:
    """Clear all data in the global store.

    Warning: This removes all codes and purchases. Use with caution.
    """
    get_store().clear()
