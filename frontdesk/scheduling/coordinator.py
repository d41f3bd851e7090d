import datetime as dt
import uuid
from typing import Awaitable, TypeVar

from loguru import logger

from frontdesk.domain.exceptions import (
    SlotConflictError,
    StatusMismatchError,
    StorageUnavailableError,
)
from frontdesk.domain.models import AppointmentSlot, BookingDetails, SlotStatus
from frontdesk.domain.results import (
    AvailabilityResult,
    Booked,
    BookingResult,
    InvalidSlot,
    InvalidTransition,
    NotFound,
    SlotAvailability,
    SlotSummary,
    SlotTaken,
    StatusChanged,
    StatusResult,
)
from frontdesk.patients.history import clean_strings
from frontdesk.scheduling.availability import AvailabilityCalculator
from frontdesk.storage.ports import SlotLedgerProtocol

T = TypeVar("T")

_TRANSITIONS: dict[SlotStatus, frozenset[SlotStatus]] = {
    SlotStatus.CONFIRMED: frozenset({SlotStatus.CANCELLED, SlotStatus.COMPLETED}),
    SlotStatus.CANCELLED: frozenset(),
    SlotStatus.COMPLETED: frozenset(),
}


def _new_slot(
    date: dt.date, time: str, patient_ref: str, details: BookingDetails
) -> AppointmentSlot:
    return AppointmentSlot(
        slot_id=uuid.uuid4().hex,
        date=date,
        time=time,
        patient_ref=patient_ref,
        symptoms=clean_strings(details.symptoms),
        medications=clean_strings(details.medications),
        preferences=clean_strings(details.preferences),
        stress_level=details.stress_level,
        stress_categories=clean_strings(details.stress_categories),
        memo=details.memo.strip(),
    )


class ReservationCoordinator:
    """Books appointment slots without any application-level lock.

    Every booking writes optimistically and lets the ledger's uniqueness
    constraint pick the winner.  A conflict whose blocking slot turns out to
    be cancelled is stale and earns exactly one retry; any other conflict
    means the slot is taken.
    """

    def __init__(self, ledger: SlotLedgerProtocol, calculator: AvailabilityCalculator) -> None:
        self._ledger = ledger
        self._calculator = calculator

    async def book(
        self,
        date: dt.date,
        time: str,
        patient_ref: str,
        details: BookingDetails | None = None,
    ) -> BookingResult:
        verdict = self._calculator.check(date, time)
        if verdict.reason is not None:
            logger.info("Rejected booking for {} {}: {}", date, time, verdict.reason.value)
            return InvalidSlot(reason=verdict.reason)

        details = details or BookingDetails()
        logger.info("Booking slot: date={}, time={}", date, time)

        try:
            slot = await self._reserve(_new_slot(date, time, patient_ref, details))
        except SlotConflictError:
            occupant = await self._find(date, time)
            if occupant is not None and occupant.is_active:
                logger.info("Slot {} {} already taken", date, time)
                return SlotTaken(existing=SlotSummary.of(occupant))

            logger.warning("Stale conflict on {} {}; retrying once", date, time)
            try:
                slot = await self._reserve(_new_slot(date, time, patient_ref, details))
            except SlotConflictError:
                occupant = await self._find(date, time)
                logger.info("Slot {} {} taken by a concurrent booking", date, time)
                return SlotTaken(existing=SlotSummary.of(occupant) if occupant else None)

        logger.info("Slot booked: id={}", slot.slot_id)
        return Booked(slot=slot)

    async def cancel(self, slot_id: str) -> StatusResult:
        return await self._transition(slot_id, SlotStatus.CANCELLED)

    async def complete(self, slot_id: str) -> StatusResult:
        return await self._transition(slot_id, SlotStatus.COMPLETED)

    async def availability(self, date: dt.date, time: str) -> AvailabilityResult:
        """Advisory check for UI hints; ``book`` never consults it."""
        verdict = self._calculator.check(date, time)
        if verdict.reason is not None:
            return InvalidSlot(reason=verdict.reason)
        occupant = await self._find(date, time)
        available = occupant is None or not occupant.is_active
        return SlotAvailability(date=date, time=time, available=available)

    async def list_by_date(self, date: dt.date) -> list[AppointmentSlot]:
        return await self._call("list slots", self._ledger.list_by_date(date))

    async def list_for_patient(self, patient_ref: str) -> list[AppointmentSlot]:
        return await self._call("list patient slots", self._ledger.list_by_patient(patient_ref))

    async def free_times(self, date: dt.date) -> list[str]:
        """Bookable times on ``date`` with no active booking."""
        taken = {slot.time for slot in await self.list_by_date(date)}
        return [t for t in self._calculator.slot_times() if t not in taken]

    async def _transition(self, slot_id: str, target: SlotStatus) -> StatusResult:
        current = await self._call("load slot", self._ledger.get(slot_id))
        if current is None:
            return NotFound(resource="slot", key=slot_id)
        if current.status is target:
            return StatusChanged(slot=current)
        if target not in _TRANSITIONS[current.status]:
            return InvalidTransition(slot_id=slot_id, current=current.status, requested=target)

        try:
            updated = await self._set_status(slot_id, current.status, target)
        except StatusMismatchError as exc:
            # A concurrent change landed between the read and the write.
            latest = exc.slot
            if latest.status is target:
                return StatusChanged(slot=latest)
            logger.info(
                "Slot {} moved to {} before it could become {}",
                slot_id,
                latest.status.value,
                target.value,
            )
            return InvalidTransition(slot_id=slot_id, current=latest.status, requested=target)
        if updated is None:
            return NotFound(resource="slot", key=slot_id)
        logger.info("Slot {} is now {}", slot_id, target.value)
        return StatusChanged(slot=updated)

    async def _set_status(
        self, slot_id: str, expected: SlotStatus, target: SlotStatus
    ) -> AppointmentSlot | None:
        try:
            return await self._ledger.set_status(slot_id, expected, target)
        except (StatusMismatchError, StorageUnavailableError):
            raise
        except Exception as exc:
            raise StorageUnavailableError(f"Slot status update failed: {exc}") from exc

    async def _reserve(self, slot: AppointmentSlot) -> AppointmentSlot:
        try:
            return await self._ledger.reserve(slot)
        except (SlotConflictError, StorageUnavailableError):
            raise
        except Exception as exc:
            raise StorageUnavailableError(f"Slot reservation failed: {exc}") from exc

    async def _find(self, date: dt.date, time: str) -> AppointmentSlot | None:
        return await self._call("find slot", self._ledger.find(date, time))

    async def _call(self, action: str, pending: Awaitable[T]) -> T:
        try:
            return await pending
        except StorageUnavailableError:
            raise
        except Exception as exc:
            raise StorageUnavailableError(f"Failed to {action}: {exc}") from exc
