import datetime as dt

import pytest
import pytest_asyncio

from frontdesk.domain.models import ClinicHours
from frontdesk.patients.history import HistoryMerger
from frontdesk.patients.resolver import IdentityResolver
from frontdesk.scheduling.availability import AvailabilityCalculator
from frontdesk.scheduling.coordinator import ReservationCoordinator
from frontdesk.storage.adapters.memory import MemoryDatabase, MemoryIdentityStore, MemorySlotLedger

FIXED_NOW = dt.datetime(2024, 5, 1, 9, 0, tzinfo=dt.timezone.utc)


@pytest_asyncio.fixture
async def memory_db() -> MemoryDatabase:
    db = MemoryDatabase()
    await db.open()
    return db


@pytest.fixture
def identity_store(memory_db: MemoryDatabase) -> MemoryIdentityStore:
    return MemoryIdentityStore(memory_db)


@pytest.fixture
def ledger(memory_db: MemoryDatabase) -> MemorySlotLedger:
    return MemorySlotLedger(memory_db)


@pytest.fixture
def hours() -> ClinicHours:
    return ClinicHours(
        open_time=dt.time(9, 0), close_time=dt.time(18, 0), slot_granularity_minutes=30
    )


@pytest.fixture
def coordinator(ledger: MemorySlotLedger, hours: ClinicHours) -> ReservationCoordinator:
    return ReservationCoordinator(ledger, AvailabilityCalculator(hours))


@pytest.fixture
def history() -> HistoryMerger:
    return HistoryMerger(clock=lambda: FIXED_NOW)


@pytest.fixture
def resolver(identity_store: MemoryIdentityStore, history: HistoryMerger) -> IdentityResolver:
    return IdentityResolver(identity_store, history, lookup_attempts=3, lookup_backoff_seconds=0)
