import datetime as dt
import re

from pydantic import BaseModel, ConfigDict

from frontdesk.domain.models import ClinicHours
from frontdesk.domain.results import SlotRejection

_HHMM = re.compile(r"^(\d{2}):(\d{2})$")


class SlotVerdict(BaseModel):
    """Whether a requested time is bookable, and why not if it isn't."""

    model_config = ConfigDict(frozen=True)

    reason: SlotRejection | None = None

    @property
    def legal(self) -> bool:
        return self.reason is None


LEGAL = SlotVerdict()


def parse_hhmm(value: str) -> int | None:
    """Convert ``"09:30"`` → ``570`` minutes since midnight, or None if malformed."""
    match = _HHMM.match(value) if isinstance(value, str) else None
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def check_slot(hours: ClinicHours, time: str) -> SlotVerdict:
    """Apply format, business-hour and grid rules, in that order."""
    minutes = parse_hhmm(time)
    if minutes is None:
        return SlotVerdict(reason=SlotRejection.BAD_FORMAT)
    if not hours.open_minutes <= minutes <= hours.close_minutes:
        return SlotVerdict(reason=SlotRejection.OUTSIDE_HOURS)
    if minutes % hours.slot_granularity_minutes != 0:
        return SlotVerdict(reason=SlotRejection.OFF_GRID)
    return LEGAL


class AvailabilityCalculator:
    """Pre-filter applied to every booking before any storage access."""

    def __init__(self, hours: ClinicHours) -> None:
        self._hours = hours

    @property
    def hours(self) -> ClinicHours:
        return self._hours

    def check(self, date: dt.date, time: str) -> SlotVerdict:
        # Hours do not vary by date.
        return check_slot(self._hours, time)

    def slot_times(self) -> list[str]:
        return self._hours.slot_times()
