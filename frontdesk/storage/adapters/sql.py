import datetime as dt
from contextlib import contextmanager
from typing import Any, Iterator

from loguru import logger
from sqlalchemy import case, func, or_, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from frontdesk.domain.exceptions import (
    DuplicateIdentityError,
    SlotConflictError,
    StatusMismatchError,
    StorageUnavailableError,
)
from frontdesk.domain.models import (
    AppointmentSlot,
    MedicationInfo,
    PatientIdentity,
    SlotStatus,
    StressAssessment,
    VisitRecord,
    utcnow,
)
from frontdesk.storage.adapters.sql_schema import Base, PatientRow, SlotRow, VisitRow
from frontdesk.storage.ports import IdentityMutation

_ATTRIBUTE_FIELDS = (
    "name",
    "phone",
    "gender",
    "height",
    "weight",
    "bmi",
    "personality",
    "work_intensity",
    "blood_pressure",
    "birth_date",
)


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    """Translate driver failures into StorageUnavailableError."""
    try:
        yield
    except (SQLAlchemyError, OSError) as exc:
        raise StorageUnavailableError(f"Failed to {action}: {exc}") from exc


def _aware(value: dt.datetime) -> dt.datetime:
    # SQLite hands back naive datetimes even for timezone=True columns.
    return value if value.tzinfo else value.replace(tzinfo=dt.timezone.utc)


class SqlDatabase:
    """SQLAlchemy async engine + session factory shared by the SQL adapters."""

    def __init__(self, dsn: str, *, echo: bool = False, create_schema: bool = True) -> None:
        self._engine = create_async_engine(dsn, echo=echo, pool_pre_ping=True)
        self._create_schema = create_schema
        self.sessions = async_sessionmaker(self._engine, expire_on_commit=False, class_=AsyncSession)

    async def open(self) -> None:
        if not self._create_schema:
            return
        with _storage_errors("create schema"):
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ready")

    async def health_check(self) -> bool:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as exc:
            logger.warning("Database health check failed: {}", exc)
            return False

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("Database engine disposed")


# --- identities -------------------------------------------------------------


def _visit_to_row(record: VisitRecord) -> VisitRow:
    return VisitRow(
        record_id=record.record_id,
        measurement_date=record.measurement_date,
        heart_rate=record.heart_rate,
        pulse_wave=dict(record.pulse_wave),
        stress=record.stress.model_dump(mode="json"),
        symptoms=list(record.symptoms),
        medications=record.medications.model_dump(mode="json"),
        memo=record.memo,
        recorded_at=record.recorded_at,
    )


def _visit_from_row(row: VisitRow) -> VisitRecord:
    return VisitRecord(
        record_id=row.record_id,
        measurement_date=_aware(row.measurement_date),
        heart_rate=row.heart_rate,
        pulse_wave=row.pulse_wave or {},
        stress=StressAssessment.model_validate(row.stress or {}),
        symptoms=tuple(row.symptoms or ()),
        medications=MedicationInfo.model_validate(row.medications or {}),
        memo=row.memo or "",
        recorded_at=_aware(row.recorded_at),
    )


def _identity_to_row(identity: PatientIdentity) -> PatientRow:
    row = PatientRow(
        national_id=identity.national_id,
        created_at=identity.created_at,
        updated_at=identity.updated_at,
        **{field: getattr(identity, field) for field in _ATTRIBUTE_FIELDS},
    )
    row.records = [_visit_to_row(r) for r in identity.records]
    return row


def _identity_from_row(row: PatientRow) -> PatientIdentity:
    return PatientIdentity(
        national_id=row.national_id,
        records=tuple(_visit_from_row(r) for r in row.records),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        **{field: getattr(row, field) for field in _ATTRIBUTE_FIELDS},
    )


class SqlIdentityStore:
    """Patient identities in SQL; the primary key arbitrates concurrent creators."""

    def __init__(self, db: SqlDatabase) -> None:
        self._db = db

    async def insert(self, identity: PatientIdentity) -> PatientIdentity:
        with _storage_errors("insert patient"):
            try:
                async with self._db.sessions() as session, session.begin():
                    session.add(_identity_to_row(identity))
            except IntegrityError as exc:
                raise DuplicateIdentityError(identity.national_id) from exc
        return identity

    async def get(self, national_id: str) -> PatientIdentity | None:
        with _storage_errors("load patient"):
            async with self._db.sessions() as session:
                row = await session.get(PatientRow, national_id)
                return _identity_from_row(row) if row else None

    async def update(
        self, national_id: str, mutate: IdentityMutation
    ) -> PatientIdentity | None:
        with _storage_errors("update patient"):
            async with self._db.sessions() as session, session.begin():
                row = await session.get(PatientRow, national_id, with_for_update=True)
                if row is None:
                    return None
                changed = mutate(_identity_from_row(row))
                for field in _ATTRIBUTE_FIELDS:
                    setattr(row, field, getattr(changed, field))
                stored = {r.record_id for r in row.records}
                for record in changed.records:
                    if record.record_id not in stored:
                        row.records.append(_visit_to_row(record))
                row.updated_at = utcnow()
                await session.flush()
                return _identity_from_row(row)

    async def delete(self, national_id: str) -> bool:
        with _storage_errors("delete patient"):
            async with self._db.sessions() as session, session.begin():
                row = await session.get(PatientRow, national_id)
                if row is None:
                    return False
                await session.delete(row)
                return True

    async def search(self, term: str) -> list[PatientIdentity]:
        needle = term.lower()
        query = (
            select(PatientRow)
            .where(
                or_(
                    func.lower(PatientRow.name).contains(needle, autoescape=True),
                    func.lower(PatientRow.phone).contains(needle, autoescape=True),
                )
            )
            .order_by(PatientRow.name)
        )
        with _storage_errors("search patients"):
            async with self._db.sessions() as session:
                rows = (await session.scalars(query)).all()
                return [_identity_from_row(r) for r in rows]


# --- slots ------------------------------------------------------------------


def _slot_to_row(slot: AppointmentSlot) -> SlotRow:
    data: dict[str, Any] = slot.model_dump(mode="python")
    for field in ("symptoms", "medications", "preferences", "stress_categories"):
        data[field] = list(data[field])
    data["status"] = slot.status.value
    return SlotRow(**data)


def _slot_from_row(row: SlotRow) -> AppointmentSlot:
    return AppointmentSlot(
        slot_id=row.slot_id,
        date=row.date,
        time=row.time,
        patient_ref=row.patient_ref,
        symptoms=tuple(row.symptoms or ()),
        medications=tuple(row.medications or ()),
        preferences=tuple(row.preferences or ()),
        stress_level=row.stress_level,
        stress_categories=tuple(row.stress_categories or ()),
        memo=row.memo or "",
        status=SlotStatus(row.status),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


class SqlSlotLedger:
    """Appointment slots in SQL; a partial unique index arbitrates concurrent bookers."""

    def __init__(self, db: SqlDatabase) -> None:
        self._db = db

    async def reserve(self, slot: AppointmentSlot) -> AppointmentSlot:
        with _storage_errors("reserve slot"):
            try:
                async with self._db.sessions() as session, session.begin():
                    session.add(_slot_to_row(slot))
            except IntegrityError as exc:
                raise SlotConflictError(slot.date, slot.time) from exc
        return slot

    async def find(self, date: dt.date, time: str) -> AppointmentSlot | None:
        query = (
            select(SlotRow)
            .where(SlotRow.date == date, SlotRow.time == time)
            .order_by(
                case((SlotRow.status == SlotStatus.CANCELLED.value, 1), else_=0),
                SlotRow.updated_at.desc(),
            )
            .limit(1)
        )
        with _storage_errors("find slot"):
            async with self._db.sessions() as session:
                row = (await session.scalars(query)).first()
                return _slot_from_row(row) if row else None

    async def get(self, slot_id: str) -> AppointmentSlot | None:
        with _storage_errors("load slot"):
            async with self._db.sessions() as session:
                row = await session.get(SlotRow, slot_id)
                return _slot_from_row(row) if row else None

    async def set_status(
        self, slot_id: str, expected: SlotStatus, status: SlotStatus
    ) -> AppointmentSlot | None:
        # Conditional UPDATE: the status check and the write are one statement.
        query = (
            update(SlotRow)
            .where(SlotRow.slot_id == slot_id, SlotRow.status == expected.value)
            .values(status=status.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        with _storage_errors("update slot status"):
            async with self._db.sessions() as session, session.begin():
                changed = (await session.execute(query)).rowcount
                row = await session.get(SlotRow, slot_id)
                if row is None:
                    return None
                slot = _slot_from_row(row)
        if not changed:
            raise StatusMismatchError(slot)
        return slot

    async def list_by_date(self, date: dt.date) -> list[AppointmentSlot]:
        query = (
            select(SlotRow)
            .where(SlotRow.date == date, SlotRow.status != SlotStatus.CANCELLED.value)
            .order_by(SlotRow.time)
        )
        with _storage_errors("list slots"):
            async with self._db.sessions() as session:
                return [_slot_from_row(r) for r in (await session.scalars(query)).all()]

    async def list_by_patient(self, patient_ref: str) -> list[AppointmentSlot]:
        query = (
            select(SlotRow)
            .where(SlotRow.patient_ref == patient_ref)
            .order_by(SlotRow.date, SlotRow.time)
        )
        with _storage_errors("list patient slots"):
            async with self._db.sessions() as session:
                return [_slot_from_row(r) for r in (await session.scalars(query)).all()]
