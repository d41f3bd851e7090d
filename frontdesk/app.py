from types import TracebackType

from loguru import logger

from frontdesk.config import AppConfig
from frontdesk.domain.results import AppointmentMatch
from frontdesk.patients.history import HistoryMerger
from frontdesk.patients.resolver import IdentityResolver
from frontdesk.scheduling.availability import AvailabilityCalculator
from frontdesk.scheduling.coordinator import ReservationCoordinator
from frontdesk.storage.factory import Storage, build_storage


class FrontDesk:
    """The operations handed to the request router, plus the storage lifecycle.

    Open once at startup and close at shutdown, or use as an async context
    manager::

        async with build_front_desk(AppConfig()) as desk:
            result = await desk.bookings.book(date, "10:00", national_id)
    """

    def __init__(
        self,
        storage: Storage,
        bookings: ReservationCoordinator,
        patients: IdentityResolver,
    ) -> None:
        self._storage = storage
        self.bookings = bookings
        self.patients = patients

    async def open(self) -> None:
        await self._storage.handle.open()
        logger.info("Front desk storage opened")

    async def health_check(self) -> bool:
        return await self._storage.handle.health_check()

    async def search_appointments(self, term: str) -> list[AppointmentMatch]:
        """Appointments of every patient whose name or phone contains ``term``.

        Slots of all statuses are returned, ordered by (date, time).
        """
        matches = [
            AppointmentMatch(slot=slot, name=patient.name, phone=patient.phone)
            for patient in await self.patients.search(term)
            for slot in await self.bookings.list_for_patient(patient.national_id)
        ]
        matches.sort(key=lambda m: (m.slot.date, m.slot.time))
        logger.info("Found {} appointment(s) matching search", len(matches))
        return matches

    async def close(self) -> None:
        await self._storage.handle.close()
        logger.info("Front desk storage closed")

    async def __aenter__(self) -> "FrontDesk":
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


def build_front_desk(config: AppConfig, storage: Storage | None = None) -> FrontDesk:
    """Wire coordinators and resolvers onto the configured storage."""
    storage = storage or build_storage(config.storage)
    calculator = AvailabilityCalculator(config.clinic.hours())
    history = HistoryMerger(
        medium_threshold=config.registration.stress_medium_threshold,
        high_threshold=config.registration.stress_high_threshold,
    )
    return FrontDesk(
        storage=storage,
        bookings=ReservationCoordinator(storage.slots, calculator),
        patients=IdentityResolver(
            storage.identities,
            history,
            lookup_attempts=config.registration.lookup_attempts,
            lookup_backoff_seconds=config.registration.lookup_backoff_seconds,
        ),
    )
