"""
Run-state store registry.

Backends are listed explicitly in ``STORE_FACTORIES``; the configured
``PERSISTENCE_ADAPTER`` name picks one. Adding a backend means adding
one entry here.
"""

import logging
from typing import Callable

from omnichannel.config import PersistenceConfig
from omnichannel.errors import UnknownStrategyError
from omnichannel.persistence.base import RunStateStore, timed_operation
from omnichannel.persistence.file_store import FileRunStateStore
from omnichannel.persistence.memory_store import InMemoryRunStateStore

logger = logging.getLogger(__name__)


def _build_file_store(config: PersistenceConfig) -> RunStateStore:
    return FileRunStateStore(data_dir=config.data_dir, max_age_ms=config.max_age_ms)


def _build_redis_store(config: PersistenceConfig) -> RunStateStore:
    from omnichannel.persistence.redis_store import RedisRunStateStore

    return RedisRunStateStore.from_url(
        config.redis_url,
        key_prefix=config.redis_key_prefix,
        max_age_ms=config.max_age_ms,
    )


def _build_memory_store(config: PersistenceConfig) -> RunStateStore:
    return InMemoryRunStateStore(max_age_ms=config.max_age_ms)


STORE_FACTORIES: dict[str, Callable[[PersistenceConfig], RunStateStore]] = {
    "file": _build_file_store,
    "redis": _build_redis_store,
    "memory": _build_memory_store,
}


def create_run_state_store(config: PersistenceConfig) -> RunStateStore:
    """Create the run-state store named by ``config.adapter``.

    Raises:
        UnknownStrategyError: If the adapter name is not registered.
    """
    factory = STORE_FACTORIES.get(config.adapter)
    if factory is None:
        raise UnknownStrategyError(
            f"Persistence adapter '{config.adapter}' not registered. "
            f"Available: {list(STORE_FACTORIES)}"
        )
    logger.info("Using '%s' run-state store", config.adapter)
    return factory(config)


__all__ = [
    "RunStateStore", "FileRunStateStore", "InMemoryRunStateStore",
    "STORE_FACTORIES", "create_run_state_store", "timed_operation",
]
