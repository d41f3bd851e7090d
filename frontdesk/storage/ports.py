import datetime as dt
from typing import Callable, Protocol

from frontdesk.domain.models import AppointmentSlot, PatientIdentity, SlotStatus

IdentityMutation = Callable[[PatientIdentity], PatientIdentity]


class StorageHandle(Protocol):
    """A process-wide connection to the backing store.

    Opened once at startup and closed at shutdown; adapters receive it
    explicitly instead of reaching for a module-level connection.
    """

    async def open(self) -> None:
        """Connect and prepare the schema if configured to."""
        ...

    async def health_check(self) -> bool:
        """Check if the store is reachable."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...


class IdentityStoreProtocol(Protocol):
    """Keyed storage of patient identities, unique on ``national_id``."""

    async def insert(self, identity: PatientIdentity) -> PatientIdentity:
        """Create a new identity.

        Raises:
            DuplicateIdentityError: If the national identifier already exists.
            StorageUnavailableError: If the store is unreachable.
        """
        ...

    async def get(self, national_id: str) -> PatientIdentity | None:
        """Fetch an identity with its full record list."""
        ...

    async def update(
        self, national_id: str, mutate: IdentityMutation
    ) -> PatientIdentity | None:
        """Atomically read, mutate and persist an identity.

        ``mutate`` receives the current identity and returns the new one.
        Attribute changes are written back; records not yet stored are
        appended. Stored records are never rewritten. Returns None when no
        identity exists for ``national_id``.
        """
        ...

    async def delete(self, national_id: str) -> bool:
        """Remove an identity and all of its records."""
        ...

    async def search(self, term: str) -> list[PatientIdentity]:
        """Case-insensitive substring match over name and phone."""
        ...


class SlotLedgerProtocol(Protocol):
    """Durable appointment slots, unique on (date, time) among non-cancelled rows."""

    async def reserve(self, slot: AppointmentSlot) -> AppointmentSlot:
        """Write a new slot without checking for an occupant first.

        Raises:
            SlotConflictError: If an active slot already holds (date, time).
            StorageUnavailableError: If the store is unreachable.
        """
        ...

    async def find(self, date: dt.date, time: str) -> AppointmentSlot | None:
        """The active occupant of (date, time), else the latest cancelled one."""
        ...

    async def get(self, slot_id: str) -> AppointmentSlot | None:
        ...

    async def set_status(
        self, slot_id: str, expected: SlotStatus, status: SlotStatus
    ) -> AppointmentSlot | None:
        """Move a slot from ``expected`` to ``status`` in one atomic step.

        Returns None if the slot does not exist.

        Raises:
            StatusMismatchError: If the slot is no longer in ``expected``;
                carries the slot as currently stored.
            StorageUnavailableError: If the store is unreachable.
        """
        ...

    async def list_by_date(self, date: dt.date) -> list[AppointmentSlot]:
        """Non-cancelled slots for ``date`` ordered by time."""
        ...

    async def list_by_patient(self, patient_ref: str) -> list[AppointmentSlot]:
        """All slots referencing ``patient_ref`` ordered by (date, time)."""
        ...
