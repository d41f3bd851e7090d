"""Tagged outcomes returned to the request router.

Every operation returns one of these instead of raising for expected
outcomes. The ``kind`` literal is the tag the router switches on to pick a
transport status.
"""

import datetime as dt
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict

from frontdesk.domain.models import AppointmentSlot, PatientIdentity, SlotStatus, VisitRecord


class SlotRejection(str, Enum):
    BAD_FORMAT = "bad format"
    OUTSIDE_HOURS = "outside business hours"
    OFF_GRID = "off-grid time"


class _Result(BaseModel):
    model_config = ConfigDict(frozen=True)


class SlotSummary(_Result):
    """What a caller may learn about the slot that blocked a booking."""

    slot_id: str
    date: dt.date
    time: str
    status: SlotStatus

    @classmethod
    def of(cls, slot: AppointmentSlot) -> "SlotSummary":
        return cls(slot_id=slot.slot_id, date=slot.date, time=slot.time, status=slot.status)


# --- failures ---------------------------------------------------------------


class InvalidSlot(_Result):
    kind: Literal["invalid_slot"] = "invalid_slot"
    reason: SlotRejection


class SlotTaken(_Result):
    kind: Literal["slot_taken"] = "slot_taken"
    existing: SlotSummary | None = None


class TransientConflict(_Result):
    kind: Literal["transient_conflict"] = "transient_conflict"
    national_id: str


class NotFound(_Result):
    kind: Literal["not_found"] = "not_found"
    resource: Literal["slot", "patient"]
    key: str


class InvalidTransition(_Result):
    kind: Literal["invalid_transition"] = "invalid_transition"
    slot_id: str
    current: SlotStatus
    requested: SlotStatus


# --- successes --------------------------------------------------------------


class Booked(_Result):
    kind: Literal["booked"] = "booked"
    slot: AppointmentSlot


class StatusChanged(_Result):
    kind: Literal["status_changed"] = "status_changed"
    slot: AppointmentSlot


class SlotAvailability(_Result):
    kind: Literal["availability"] = "availability"
    date: dt.date
    time: str
    available: bool


class RegistrationOutcome(str, Enum):
    CREATED = "created"
    EXISTING = "existing"


class Registered(_Result):
    kind: Literal["registered"] = "registered"
    outcome: RegistrationOutcome
    identity: PatientIdentity
    history_length: int


class PatientFound(_Result):
    kind: Literal["patient"] = "patient"
    identity: PatientIdentity


class PatientHistory(_Result):
    kind: Literal["history"] = "history"
    national_id: str
    records: tuple[VisitRecord, ...]


class Deleted(_Result):
    kind: Literal["deleted"] = "deleted"
    national_id: str


class AppointmentMatch(_Result):
    """A slot found by patient search, with the contact details it was matched on."""

    kind: Literal["appointment"] = "appointment"
    slot: AppointmentSlot
    name: str | None
    phone: str | None


BookingResult = Booked | InvalidSlot | SlotTaken
StatusResult = StatusChanged | NotFound | InvalidTransition
AvailabilityResult = SlotAvailability | InvalidSlot
RegistrationResult = Registered | TransientConflict
