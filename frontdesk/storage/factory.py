from dataclasses import dataclass
from typing import Callable

from loguru import logger

from frontdesk.config import StorageBackend, StorageConfig
from frontdesk.storage.adapters.memory import MemoryDatabase, MemoryIdentityStore, MemorySlotLedger
from frontdesk.storage.adapters.sql import SqlDatabase, SqlIdentityStore, SqlSlotLedger
from frontdesk.storage.ports import IdentityStoreProtocol, SlotLedgerProtocol, StorageHandle


@dataclass(frozen=True)
class Storage:
    """A storage handle and the adapters bound to it."""

    handle: StorageHandle
    identities: IdentityStoreProtocol
    slots: SlotLedgerProtocol


def _build_sql(config: StorageConfig) -> Storage:
    db = SqlDatabase(config.dsn, echo=config.echo, create_schema=config.create_schema)
    return Storage(handle=db, identities=SqlIdentityStore(db), slots=SqlSlotLedger(db))


def _build_memory(config: StorageConfig) -> Storage:
    db = MemoryDatabase()
    return Storage(handle=db, identities=MemoryIdentityStore(db), slots=MemorySlotLedger(db))


_BUILDERS: dict[StorageBackend, Callable[[StorageConfig], Storage]] = {
    StorageBackend.SQL: _build_sql,
    StorageBackend.MEMORY: _build_memory,
}


def build_storage(config: StorageConfig) -> Storage:
    """Build the storage adapters selected by config."""
    logger.info("Building storage with backend: {}", config.backend.value)
    return _BUILDERS[config.backend](config)
