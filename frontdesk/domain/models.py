import datetime as dt
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def compute_bmi(height: float | None, weight: float | None) -> float | None:
    """Body-mass index from height in cm and weight in kg, one decimal.

    Returns None when either input is missing or not positive.
    """
    if not height or not weight or height <= 0 or weight <= 0:
        return None
    meters = height / 100
    return round(weight / (meters * meters), 1)


class ClinicHours(BaseModel):
    """Opening hours and slot granularity of the clinic."""

    model_config = ConfigDict(frozen=True)

    open_time: dt.time = dt.time(9, 0)
    close_time: dt.time = dt.time(18, 0)
    slot_granularity_minutes: int = Field(default=30, gt=0)

    @model_validator(mode="after")
    def _check_order(self) -> "ClinicHours":
        if self.open_time > self.close_time:
            raise ValueError("open_time must not be after close_time")
        return self

    @property
    def open_minutes(self) -> int:
        return self.open_time.hour * 60 + self.open_time.minute

    @property
    def close_minutes(self) -> int:
        return self.close_time.hour * 60 + self.close_time.minute

    def slot_times(self) -> list[str]:
        """Every bookable ``HH:MM`` of a day, in order."""
        step = self.slot_granularity_minutes
        first = -(-self.open_minutes // step) * step
        return [
            f"{minutes // 60:02d}:{minutes % 60:02d}"
            for minutes in range(first, self.close_minutes + 1, step)
        ]


# --- patients ---------------------------------------------------------------


class StressLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class StressInput(BaseModel):
    categories: list[str] = Field(default_factory=list)
    total_score: float | None = None
    level: StressLevel | None = None


class MedicationInput(BaseModel):
    drugs: list[str] = Field(default_factory=list)
    preferences: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    side_effects: list[str] = Field(default_factory=list)


class VisitInput(BaseModel):
    """A visit as submitted at the front desk, before normalization.

    ``pulse_wave`` is an open mapping: instruments add reading names over
    time and none of them may be rejected.
    """

    measurement_date: dt.datetime | None = None
    heart_rate: float | None = None
    pulse_wave: dict[str, Any] = Field(default_factory=dict)
    stress: StressInput = Field(default_factory=StressInput)
    symptoms: list[str] = Field(default_factory=list)
    medications: MedicationInput = Field(default_factory=MedicationInput)
    memo: str | None = None


class StressAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    categories: tuple[str, ...] = ()
    total_score: float | None = None
    level: StressLevel | None = None


class MedicationInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    drugs: tuple[str, ...] = ()
    preferences: tuple[str, ...] = ()
    allergies: tuple[str, ...] = ()
    side_effects: tuple[str, ...] = ()


class VisitRecord(BaseModel):
    """One measurement/consultation event in a patient's history."""

    model_config = ConfigDict(frozen=True)

    record_id: str
    measurement_date: dt.datetime
    heart_rate: float | None = None
    pulse_wave: dict[str, float] = Field(default_factory=dict)
    stress: StressAssessment = Field(default_factory=StressAssessment)
    symptoms: tuple[str, ...] = ()
    medications: MedicationInfo = Field(default_factory=MedicationInfo)
    memo: str = ""
    recorded_at: dt.datetime = Field(default_factory=utcnow)


class PatientAttributes(BaseModel):
    """Identity attributes carried by a registration. ``None`` means "keep"."""

    name: str | None = None
    phone: str | None = None
    gender: str | None = None
    height: float | None = None
    weight: float | None = None
    personality: str | None = None
    work_intensity: str | None = None
    blood_pressure: str | None = None
    birth_date: dt.date | None = None


class PatientIdentity(BaseModel):
    """The durable patient record keyed by national identifier."""

    model_config = ConfigDict(frozen=True)

    national_id: str
    name: str | None = None
    phone: str | None = None
    gender: str | None = None
    height: float | None = None
    weight: float | None = None
    bmi: float | None = None
    personality: str | None = None
    work_intensity: str | None = None
    blood_pressure: str | None = None
    birth_date: dt.date | None = None
    records: tuple[VisitRecord, ...] = ()
    created_at: dt.datetime = Field(default_factory=utcnow)
    updated_at: dt.datetime = Field(default_factory=utcnow)

    @property
    def history(self) -> list[VisitRecord]:
        """Records ordered by measurement date; ties keep append order."""
        return sorted(self.records, key=lambda r: r.measurement_date)

    @property
    def latest_record(self) -> VisitRecord | None:
        return self.records[-1] if self.records else None

    @property
    def history_length(self) -> int:
        return len(self.records)


# --- appointments -----------------------------------------------------------


class SlotStatus(str, Enum):
    """Possible states of an appointment slot."""

    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class BookingDetails(BaseModel):
    """Clinical context attached to a booking."""

    symptoms: list[str] = Field(default_factory=list)
    medications: list[str] = Field(default_factory=list)
    preferences: list[str] = Field(default_factory=list)
    stress_level: float | None = None
    stress_categories: list[str] = Field(default_factory=list)
    memo: str = ""


class AppointmentSlot(BaseModel):
    """A reserved ``(date, time)`` slot."""

    model_config = ConfigDict(frozen=True)

    slot_id: str
    date: dt.date
    time: str
    patient_ref: str
    symptoms: tuple[str, ...] = ()
    medications: tuple[str, ...] = ()
    preferences: tuple[str, ...] = ()
    stress_level: float | None = None
    stress_categories: tuple[str, ...] = ()
    memo: str = ""
    status: SlotStatus = SlotStatus.CONFIRMED
    created_at: dt.datetime = Field(default_factory=utcnow)
    updated_at: dt.datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status is not SlotStatus.CANCELLED
