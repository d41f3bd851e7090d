"""SQL adapters against a throwaway SQLite file (aiosqlite).

These exercise the real uniqueness constraints: the patients primary key and
the partial unique index on active (date, time) slots.
"""

import asyncio
import datetime as dt
from pathlib import Path
from typing import AsyncIterator

import pytest
import pytest_asyncio

from frontdesk.app import FrontDesk, build_front_desk
from frontdesk.config import AppConfig, StorageBackend, StorageConfig
from frontdesk.domain.exceptions import (
    DuplicateIdentityError,
    SlotConflictError,
    StatusMismatchError,
    StorageUnavailableError,
)
from frontdesk.domain.models import (
    AppointmentSlot,
    PatientAttributes,
    PatientIdentity,
    SlotStatus,
    StressInput,
    StressLevel,
    VisitInput,
)
from frontdesk.domain.results import (
    Booked,
    InvalidTransition,
    Registered,
    RegistrationOutcome,
    SlotTaken,
    StatusChanged,
)
from frontdesk.storage.adapters.sql import SqlDatabase, SqlIdentityStore, SqlSlotLedger

DAY = dt.date(2024, 5, 1)
NID = "900101-1234567"


@pytest_asyncio.fixture
async def sql_db(tmp_path: Path) -> AsyncIterator[SqlDatabase]:
    db = SqlDatabase(f"sqlite+aiosqlite:///{tmp_path / 'frontdesk.db'}")
    await db.open()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def desk(tmp_path: Path) -> AsyncIterator[FrontDesk]:
    config = AppConfig(
        storage=StorageConfig(
            backend=StorageBackend.SQL, dsn=f"sqlite+aiosqlite:///{tmp_path / 'desk.db'}"
        )
    )
    async with build_front_desk(config) as front_desk:
        yield front_desk


def _slot(slot_id: str, time: str = "10:00") -> AppointmentSlot:
    return AppointmentSlot(slot_id=slot_id, date=DAY, time=time, patient_ref=NID)


class TestSqlSlotLedger:
    @pytest.mark.asyncio
    async def test_partial_index_rejects_second_active_slot(self, sql_db: SqlDatabase) -> None:
        ledger = SqlSlotLedger(sql_db)
        await ledger.reserve(_slot("a"))

        with pytest.raises(SlotConflictError):
            await ledger.reserve(_slot("b"))

    @pytest.mark.asyncio
    async def test_cancelled_rows_do_not_collide(self, sql_db: SqlDatabase) -> None:
        ledger = SqlSlotLedger(sql_db)
        await ledger.reserve(_slot("a"))
        await ledger.set_status("a", SlotStatus.CONFIRMED, SlotStatus.CANCELLED)
        await ledger.reserve(_slot("b"))
        await ledger.set_status("b", SlotStatus.CONFIRMED, SlotStatus.CANCELLED)

        await ledger.reserve(_slot("c"))

        occupant = await ledger.find(DAY, "10:00")
        assert occupant is not None
        assert occupant.slot_id == "c"
        assert [s.slot_id for s in await ledger.list_by_date(DAY)] == ["c"]
        assert len(await ledger.list_by_patient(NID)) == 3

    @pytest.mark.asyncio
    async def test_round_trips_slot_fields(self, sql_db: SqlDatabase) -> None:
        ledger = SqlSlotLedger(sql_db)
        slot = _slot("a").model_copy(
            update={"symptoms": ("headache",), "stress_level": 21.0, "memo": "note"}
        )
        await ledger.reserve(slot)

        loaded = await ledger.get("a")

        assert loaded is not None
        assert loaded.symptoms == ("headache",)
        assert loaded.stress_level == 21.0
        assert loaded.status is SlotStatus.CONFIRMED
        assert loaded.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_set_status_rejects_unexpected_current_status(self, sql_db: SqlDatabase) -> None:
        ledger = SqlSlotLedger(sql_db)
        await ledger.reserve(_slot("a"))
        await ledger.set_status("a", SlotStatus.CONFIRMED, SlotStatus.COMPLETED)

        with pytest.raises(StatusMismatchError) as exc_info:
            await ledger.set_status("a", SlotStatus.CONFIRMED, SlotStatus.CANCELLED)

        assert exc_info.value.slot.status is SlotStatus.COMPLETED
        stored = await ledger.get("a")
        assert stored is not None and stored.status is SlotStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_set_status_on_missing_slot(self, sql_db: SqlDatabase) -> None:
        ledger = SqlSlotLedger(sql_db)

        assert await ledger.set_status("missing", SlotStatus.CONFIRMED, SlotStatus.CANCELLED) is None

    @pytest.mark.asyncio
    async def test_stale_completion_cannot_revive_a_rebooked_slot(self, sql_db: SqlDatabase) -> None:
        ledger = SqlSlotLedger(sql_db)
        await ledger.reserve(_slot("a"))
        await ledger.set_status("a", SlotStatus.CONFIRMED, SlotStatus.CANCELLED)
        await ledger.reserve(_slot("b"))

        with pytest.raises(StatusMismatchError) as exc_info:
            await ledger.set_status("a", SlotStatus.CONFIRMED, SlotStatus.COMPLETED)

        assert exc_info.value.slot.status is SlotStatus.CANCELLED
        assert [s.slot_id for s in await ledger.list_by_date(DAY)] == ["b"]


class TestSqlIdentityStore:
    @pytest.mark.asyncio
    async def test_primary_key_rejects_duplicate(self, sql_db: SqlDatabase) -> None:
        store = SqlIdentityStore(sql_db)
        await store.insert(PatientIdentity(national_id=NID, name="A"))

        with pytest.raises(DuplicateIdentityError):
            await store.insert(PatientIdentity(national_id=NID, name="B"))

    @pytest.mark.asyncio
    async def test_delete_cascades_records(self, sql_db: SqlDatabase) -> None:
        store = SqlIdentityStore(sql_db)
        await store.insert(PatientIdentity(national_id=NID, name="A"))

        assert await store.delete(NID) is True
        assert await store.get(NID) is None
        assert await store.delete(NID) is False

    @pytest.mark.asyncio
    async def test_search_escapes_wildcards(self, sql_db: SqlDatabase) -> None:
        store = SqlIdentityStore(sql_db)
        await store.insert(PatientIdentity(national_id="1", name="Kim_Minji"))
        await store.insert(PatientIdentity(national_id="2", name="KimXMinji"))

        found = await store.search("kim_")

        assert [p.national_id for p in found] == ["1"]


class TestFrontDeskOnSql:
    @pytest.mark.asyncio
    async def test_registration_merges_and_keeps_history(self, desk: FrontDesk) -> None:
        first = await desk.patients.register_or_update(
            NID,
            PatientAttributes(name="A", phone="1", height=170, weight=68),
            VisitInput(pulse_wave={"heartRate": "72", "a-b": 0.12}, memo="first"),
        )
        second = await desk.patients.register_or_update(
            NID,
            PatientAttributes(phone=None, weight=70, work_intensity="high"),
            VisitInput(stress=StressInput(categories=["work"], total_score=30), memo="second"),
        )

        assert isinstance(first, Registered) and first.outcome is RegistrationOutcome.CREATED
        assert isinstance(second, Registered) and second.outcome is RegistrationOutcome.EXISTING
        identity = second.identity
        assert identity.phone == "1"
        assert identity.work_intensity == "high"
        assert identity.bmi == pytest.approx(24.2, abs=0.05)
        assert [r.memo for r in identity.records] == ["first", "second"]
        assert identity.records[0].pulse_wave == {"heartRate": 72.0, "a-b": 0.12, "HR": 72.0}
        assert identity.records[1].stress.level is StressLevel.HIGH

        reloaded = await desk.patients.get(NID)
        assert reloaded.kind == "patient"

    @pytest.mark.asyncio
    async def test_cancel_then_rebook(self, desk: FrontDesk) -> None:
        first = await desk.bookings.book(DAY, "10:00", NID)
        assert isinstance(first, Booked)

        await desk.bookings.cancel(first.slot.slot_id)
        second = await desk.bookings.book(DAY, "10:00", NID)

        assert isinstance(second, Booked)

    @pytest.mark.asyncio
    async def test_concurrent_bookings_have_exactly_one_winner(self, desk: FrontDesk) -> None:
        results = await asyncio.gather(*(desk.bookings.book(DAY, "14:00", f"p{i}") for i in range(5)))

        assert sum(isinstance(r, Booked) for r in results) == 1
        assert sum(isinstance(r, SlotTaken) for r in results) == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize("registrants", [5, 20])
    async def test_concurrent_registrations_converge(
        self, desk: FrontDesk, registrants: int
    ) -> None:
        results = await asyncio.gather(
            *(
                desk.patients.register_or_update(
                    NID, PatientAttributes(name=f"n{i}"), VisitInput(memo=f"visit {i}")
                )
                for i in range(registrants)
            )
        )

        assert all(isinstance(r, Registered) for r in results)
        assert sum(r.outcome is RegistrationOutcome.CREATED for r in results) == 1
        assert len(await desk.patients.search("n")) == 1
        found = await desk.patients.get(NID)
        assert found.kind == "patient"
        assert sorted(r.memo for r in found.identity.records) == sorted(
            f"visit {i}" for i in range(registrants)
        )

    @pytest.mark.asyncio
    async def test_concurrent_cancel_and_complete_have_one_winner(self, desk: FrontDesk) -> None:
        booked = await desk.bookings.book(DAY, "10:00", NID)
        assert isinstance(booked, Booked)
        slot_id = booked.slot.slot_id

        results = await asyncio.gather(desk.bookings.cancel(slot_id), desk.bookings.complete(slot_id))

        changed = [r for r in results if isinstance(r, StatusChanged)]
        rejected = [r for r in results if isinstance(r, InvalidTransition)]
        assert len(changed) == 1
        assert len(rejected) == 1
        assert rejected[0].current is changed[0].slot.status

    @pytest.mark.asyncio
    async def test_completing_a_cancelled_and_rebooked_slot_is_rejected(
        self, desk: FrontDesk
    ) -> None:
        first = await desk.bookings.book(DAY, "10:00", NID)
        assert isinstance(first, Booked)
        await desk.bookings.cancel(first.slot.slot_id)
        second = await desk.bookings.book(DAY, "10:00", "other")
        assert isinstance(second, Booked)

        result = await desk.bookings.complete(first.slot.slot_id)

        assert isinstance(result, InvalidTransition)
        assert result.current is SlotStatus.CANCELLED
        active = await desk.bookings.list_by_date(DAY)
        assert [s.slot_id for s in active] == [second.slot.slot_id]

    @pytest.mark.asyncio
    async def test_search_appointments_joins_patients_and_slots(self, desk: FrontDesk) -> None:
        await desk.patients.register_or_update("A-1", PatientAttributes(name="Kim Minji", phone="010-1"))
        await desk.patients.register_or_update("B-2", PatientAttributes(name="Kim Jisoo", phone="010-2"))
        await desk.patients.register_or_update("C-3", PatientAttributes(name="Lee", phone="010-3"))
        later = await desk.bookings.book(DAY + dt.timedelta(days=1), "09:00", "A-1")
        early = await desk.bookings.book(DAY, "15:00", "B-2")
        earliest = await desk.bookings.book(DAY, "10:00", "A-1")
        await desk.bookings.book(DAY, "11:00", "C-3")
        assert isinstance(earliest, Booked)
        await desk.bookings.cancel(earliest.slot.slot_id)

        matches = await desk.search_appointments("kim")

        assert [(m.slot.date, m.slot.time) for m in matches] == [
            (DAY, "10:00"),
            (DAY, "15:00"),
            (DAY + dt.timedelta(days=1), "09:00"),
        ]
        assert [m.name for m in matches] == ["Kim Minji", "Kim Jisoo", "Kim Minji"]
        assert matches[0].slot.status is SlotStatus.CANCELLED
        assert isinstance(later, Booked) and isinstance(early, Booked)

    @pytest.mark.asyncio
    async def test_health_check(self, desk: FrontDesk) -> None:
        assert await desk.health_check() is True


class TestUnavailable:
    @pytest.mark.asyncio
    async def test_unreachable_database_raises_storage_unavailable(self, tmp_path: Path) -> None:
        db = SqlDatabase(
            f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'dir' / 'x.db'}", create_schema=False
        )

        with pytest.raises(StorageUnavailableError):
            await SqlIdentityStore(db).get(NID)
        assert await db.health_check() is False
        await db.close()
