import datetime as dt
import math
import uuid
from typing import Any, Callable, Iterable

from loguru import logger

from frontdesk.domain.models import (
    MedicationInfo,
    PatientIdentity,
    StressAssessment,
    StressInput,
    StressLevel,
    VisitInput,
    VisitRecord,
    utcnow,
)


def clean_strings(values: Iterable[Any]) -> tuple[str, ...]:
    """Trim, drop blanks and duplicates, keep first-seen order."""
    seen: dict[str, None] = {}
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            seen.setdefault(text, None)
    return tuple(seen)


def coerce_number(value: Any) -> float | None:
    """``"72"`` → ``72.0``; None for anything that is not a finite number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalize_pulse_wave(
    readings: dict[str, Any], heart_rate: float | None = None
) -> dict[str, float]:
    """Keep every numeric reading under its instrument name.

    ``HR`` falls back to ``heartRate`` (or the visit's heart rate) when the
    instrument did not report it.
    """
    wave: dict[str, float] = {}
    for name, value in readings.items():
        number = coerce_number(value)
        if number is None:
            if value is not None:
                logger.debug("Dropping non-numeric pulse-wave reading {}", name)
            continue
        wave[str(name).strip()] = number
    if "HR" not in wave:
        fallback = wave.get("heartRate", heart_rate)
        if fallback is not None:
            wave["HR"] = fallback
    return wave


class HistoryMerger:
    """Appends normalized visits to a patient's history.

    Stress levels are derived from the total score: below
    ``medium_threshold`` is low, below ``high_threshold`` is medium,
    anything else high.
    """

    def __init__(
        self,
        *,
        medium_threshold: float = 17,
        high_threshold: float = 27,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        if medium_threshold > high_threshold:
            raise ValueError("medium_threshold must not exceed high_threshold")
        self._medium = medium_threshold
        self._high = high_threshold
        self._clock = clock

    def stress_level(self, score: float | None) -> StressLevel | None:
        if score is None:
            return None
        if score < self._medium:
            return StressLevel.LOW
        if score < self._high:
            return StressLevel.MEDIUM
        return StressLevel.HIGH

    def _stress(self, stress: StressInput) -> StressAssessment:
        score = coerce_number(stress.total_score)
        return StressAssessment(
            categories=clean_strings(stress.categories),
            total_score=score,
            level=self.stress_level(score) if score is not None else stress.level,
        )

    def normalize(self, visit: VisitInput) -> VisitRecord:
        now = self._clock()
        measured = visit.measurement_date or now
        if measured.tzinfo is None:
            measured = measured.replace(tzinfo=dt.timezone.utc)
        heart_rate = coerce_number(visit.heart_rate)
        return VisitRecord(
            record_id=uuid.uuid4().hex,
            measurement_date=measured,
            heart_rate=heart_rate,
            pulse_wave=normalize_pulse_wave(visit.pulse_wave, heart_rate),
            stress=self._stress(visit.stress),
            symptoms=clean_strings(visit.symptoms),
            medications=MedicationInfo(
                drugs=clean_strings(visit.medications.drugs),
                preferences=clean_strings(visit.medications.preferences),
                allergies=clean_strings(visit.medications.allergies),
                side_effects=clean_strings(visit.medications.side_effects),
            ),
            memo=(visit.memo or "").strip(),
            recorded_at=now,
        )

    def append(self, identity: PatientIdentity, visit: VisitInput | VisitRecord) -> PatientIdentity:
        """Return ``identity`` with the visit as the newest record.

        Existing records are carried over untouched and nothing is reordered;
        backdated visits simply sort earlier when the history is read.
        """
        record = visit if isinstance(visit, VisitRecord) else self.normalize(visit)
        return identity.model_copy(update={"records": identity.records + (record,)})
