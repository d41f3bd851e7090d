import datetime as dt

from frontdesk.domain.models import AppointmentSlot


class FrontDeskError(Exception):
    """Base exception for all front-desk errors."""


class StorageUnavailableError(FrontDeskError):
    """Raised when the backing store is unreachable or fails unexpectedly."""


class SlotConflictError(FrontDeskError):
    """Raised by a slot ledger when the (date, time) uniqueness constraint rejects a write."""

    def __init__(self, date: dt.date, time: str) -> None:
        self.date = date
        self.time = time
        super().__init__(f"Slot {date.isoformat()} {time} is already reserved")


class DuplicateIdentityError(FrontDeskError):
    """Raised by an identity store when the national identifier already exists."""

    def __init__(self, national_id: str) -> None:
        self.national_id = national_id
        super().__init__("Patient identity already exists")


class StatusMismatchError(FrontDeskError):
    """Raised by a slot ledger when a status change finds the slot no longer in the expected status."""

    def __init__(self, slot: AppointmentSlot) -> None:
        self.slot = slot
        super().__init__(f"Slot {slot.slot_id} is {slot.status.value}")
