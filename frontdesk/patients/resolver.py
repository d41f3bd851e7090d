import asyncio
from typing import Awaitable, TypeVar

from loguru import logger

from frontdesk.domain.exceptions import DuplicateIdentityError, StorageUnavailableError
from frontdesk.domain.models import (
    PatientAttributes,
    PatientIdentity,
    VisitInput,
    VisitRecord,
    compute_bmi,
    utcnow,
)
from frontdesk.domain.results import (
    Deleted,
    NotFound,
    PatientFound,
    PatientHistory,
    Registered,
    RegistrationOutcome,
    RegistrationResult,
    TransientConflict,
)
from frontdesk.patients.history import HistoryMerger
from frontdesk.storage.ports import IdentityStoreProtocol

T = TypeVar("T")


def mask(national_id: str) -> str:
    """Log-safe form of a national identifier."""
    return f"***{national_id[-4:]}" if len(national_id) > 4 else "***"


def merge_attributes(identity: PatientIdentity, attrs: PatientAttributes) -> PatientIdentity:
    """Overwrite with every non-null incoming attribute and re-derive BMI."""
    changes = attrs.model_dump(exclude_none=True)
    height = changes.get("height", identity.height)
    weight = changes.get("weight", identity.weight)
    changes["bmi"] = compute_bmi(height, weight)
    return identity.model_copy(update=changes)


class IdentityResolver:
    """Registers patients without ever creating two identities for one national id.

    Registration is optimistic: a fresh identity is inserted first, and only
    when the store reports the identifier as taken does the resolver merge
    into the existing record.
    """

    def __init__(
        self,
        store: IdentityStoreProtocol,
        history: HistoryMerger,
        *,
        lookup_attempts: int = 3,
        lookup_backoff_seconds: float = 0.05,
    ) -> None:
        self._store = store
        self._history = history
        self._lookup_attempts = max(1, lookup_attempts)
        self._lookup_backoff = lookup_backoff_seconds

    async def register_or_update(
        self,
        national_id: str,
        attrs: PatientAttributes,
        visit: VisitInput | None = None,
    ) -> RegistrationResult:
        record = self._history.normalize(visit) if visit is not None else None

        fresh = merge_attributes(PatientIdentity(national_id=national_id), attrs)
        if record is not None:
            fresh = self._history.append(fresh, record)

        try:
            created = await self._store.insert(fresh)
        except DuplicateIdentityError:
            logger.debug("Patient {} already registered; merging", mask(national_id))
        except StorageUnavailableError:
            raise
        except Exception as exc:
            raise StorageUnavailableError(f"Patient registration failed: {exc}") from exc
        else:
            logger.info("Registered new patient {}", mask(national_id))
            return Registered(
                outcome=RegistrationOutcome.CREATED,
                identity=created,
                history_length=created.history_length,
            )

        merged = await self._merge_existing(national_id, attrs, record)
        if merged is None:
            logger.warning(
                "Patient {} exists but stayed invisible after {} lookups",
                mask(national_id),
                self._lookup_attempts,
            )
            return TransientConflict(national_id=national_id)

        logger.info(
            "Merged registration into patient {} ({} visits)",
            mask(national_id),
            merged.history_length,
        )
        return Registered(
            outcome=RegistrationOutcome.EXISTING,
            identity=merged,
            history_length=merged.history_length,
        )

    async def _merge_existing(
        self,
        national_id: str,
        attrs: PatientAttributes,
        record: VisitRecord | None,
    ) -> PatientIdentity | None:
        def mutate(existing: PatientIdentity) -> PatientIdentity:
            merged = merge_attributes(existing, attrs)
            if record is not None:
                merged = self._history.append(merged, record)
            return merged.model_copy(update={"updated_at": utcnow()})

        for attempt in range(self._lookup_attempts):
            if attempt:
                await asyncio.sleep(self._lookup_backoff * 2 ** (attempt - 1))
            try:
                merged = await self._store.update(national_id, mutate)
            except StorageUnavailableError:
                raise
            except Exception as exc:
                raise StorageUnavailableError(f"Patient merge failed: {exc}") from exc
            if merged is not None:
                return merged
            logger.debug(
                "Patient {} not visible yet (attempt {}/{})",
                mask(national_id),
                attempt + 1,
                self._lookup_attempts,
            )
        return None

    async def get(self, national_id: str) -> PatientFound | NotFound:
        identity = await self._call("load patient", self._store.get(national_id))
        if identity is None:
            return NotFound(resource="patient", key=national_id)
        return PatientFound(identity=identity)

    async def history(self, national_id: str) -> PatientHistory | NotFound:
        """Visits ordered by measurement date, oldest first."""
        identity = await self._call("load patient history", self._store.get(national_id))
        if identity is None:
            return NotFound(resource="patient", key=national_id)
        return PatientHistory(national_id=national_id, records=tuple(identity.history))

    async def search(self, term: str) -> list[PatientIdentity]:
        term = term.strip()
        if not term:
            return []
        patients = await self._call("search patients", self._store.search(term))
        logger.info("Found {} patient(s) matching search", len(patients))
        return patients

    async def delete(self, national_id: str) -> Deleted | NotFound:
        if not await self._call("delete patient", self._store.delete(national_id)):
            return NotFound(resource="patient", key=national_id)
        logger.info("Deleted patient {} and their visit history", mask(national_id))
        return Deleted(national_id=national_id)

    async def _call(self, action: str, pending: Awaitable[T]) -> T:
        try:
            return await pending
        except StorageUnavailableError:
            raise
        except Exception as exc:
            raise StorageUnavailableError(f"Failed to {action}: {exc}") from exc
