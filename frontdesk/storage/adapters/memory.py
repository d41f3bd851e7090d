import asyncio
import datetime as dt

from frontdesk.domain.exceptions import (
    DuplicateIdentityError,
    SlotConflictError,
    StatusMismatchError,
    StorageUnavailableError,
)
from frontdesk.domain.models import AppointmentSlot, PatientIdentity, SlotStatus, utcnow
from frontdesk.storage.ports import IdentityMutation


class MemoryDatabase:
    """In-process document store backing the memory adapters.

    Each operation yields to the event loop once (standing in for the
    network round trip) and then runs without awaiting, so every write is
    atomic with respect to other coroutines.  Uniqueness is enforced the way
    a real store enforces it: on write, not by callers checking first.

    Set ``error`` to make every subsequent call raise it.  Set
    ``stale_reads`` to make that many identity lookups miss an existing row,
    the way a lagging replica would.
    """

    def __init__(self) -> None:
        self.identities: dict[str, PatientIdentity] = {}
        self.slots: dict[str, AppointmentSlot] = {}
        self.active_slots: dict[tuple[dt.date, str], str] = {}
        self.is_open: bool = False
        self.error: Exception | None = None
        self.stale_reads: int = 0

    async def open(self) -> None:
        self.is_open = True

    async def health_check(self) -> bool:
        return self.is_open and self.error is None

    async def close(self) -> None:
        self.is_open = False

    async def round_trip(self) -> None:
        await asyncio.sleep(0)
        if self.error:
            raise self.error
        if not self.is_open:
            raise StorageUnavailableError("Memory store is not open")

    def consume_stale_read(self) -> bool:
        if self.stale_reads > 0:
            self.stale_reads -= 1
            return True
        return False


class MemoryIdentityStore:
    def __init__(self, db: MemoryDatabase) -> None:
        self._db = db

    async def insert(self, identity: PatientIdentity) -> PatientIdentity:
        await self._db.round_trip()
        if identity.national_id in self._db.identities:
            raise DuplicateIdentityError(identity.national_id)
        self._db.identities[identity.national_id] = identity
        return identity

    async def get(self, national_id: str) -> PatientIdentity | None:
        await self._db.round_trip()
        if self._db.consume_stale_read():
            return None
        return self._db.identities.get(national_id)

    async def update(
        self, national_id: str, mutate: IdentityMutation
    ) -> PatientIdentity | None:
        await self._db.round_trip()
        if self._db.consume_stale_read():
            return None
        current = self._db.identities.get(national_id)
        if current is None:
            return None
        changed = mutate(current)
        stored_ids = {r.record_id for r in current.records}
        appended = tuple(r for r in changed.records if r.record_id not in stored_ids)
        merged = changed.model_copy(
            update={
                "national_id": current.national_id,
                "records": current.records + appended,
                "created_at": current.created_at,
                "updated_at": utcnow(),
            }
        )
        self._db.identities[national_id] = merged
        return merged

    async def delete(self, national_id: str) -> bool:
        await self._db.round_trip()
        return self._db.identities.pop(national_id, None) is not None

    async def search(self, term: str) -> list[PatientIdentity]:
        await self._db.round_trip()
        needle = term.lower()
        return [
            p
            for p in self._db.identities.values()
            if needle in (p.name or "").lower() or needle in (p.phone or "").lower()
        ]


class MemorySlotLedger:
    def __init__(self, db: MemoryDatabase) -> None:
        self._db = db

    async def reserve(self, slot: AppointmentSlot) -> AppointmentSlot:
        await self._db.round_trip()
        key = (slot.date, slot.time)
        if slot.is_active and key in self._db.active_slots:
            raise SlotConflictError(slot.date, slot.time)
        self._db.slots[slot.slot_id] = slot
        if slot.is_active:
            self._db.active_slots[key] = slot.slot_id
        return slot

    async def find(self, date: dt.date, time: str) -> AppointmentSlot | None:
        await self._db.round_trip()
        active_id = self._db.active_slots.get((date, time))
        if active_id is not None:
            return self._db.slots[active_id]
        cancelled = [s for s in self._db.slots.values() if s.date == date and s.time == time]
        return max(cancelled, key=lambda s: s.updated_at, default=None)

    async def get(self, slot_id: str) -> AppointmentSlot | None:
        await self._db.round_trip()
        return self._db.slots.get(slot_id)

    async def set_status(
        self, slot_id: str, expected: SlotStatus, status: SlotStatus
    ) -> AppointmentSlot | None:
        await self._db.round_trip()
        current = self._db.slots.get(slot_id)
        if current is None:
            return None
        if current.status is not expected:
            raise StatusMismatchError(current)
        updated = current.model_copy(update={"status": status, "updated_at": utcnow()})
        self._db.slots[slot_id] = updated
        key = (updated.date, updated.time)
        if not updated.is_active and self._db.active_slots.get(key) == slot_id:
            del self._db.active_slots[key]
        return updated

    async def list_by_date(self, date: dt.date) -> list[AppointmentSlot]:
        await self._db.round_trip()
        return sorted(
            (s for s in self._db.slots.values() if s.date == date and s.is_active),
            key=lambda s: s.time,
        )

    async def list_by_patient(self, patient_ref: str) -> list[AppointmentSlot]:
        await self._db.round_trip()
        return sorted(
            (s for s in self._db.slots.values() if s.patient_ref == patient_ref),
            key=lambda s: (s.date, s.time),
        )
