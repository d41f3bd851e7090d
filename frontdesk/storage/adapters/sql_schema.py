import datetime as dt
from typing import Any

from sqlalchemy import JSON, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class PatientRow(Base):
    __tablename__ = "patients"

    national_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(200), index=True)
    phone: Mapped[str | None] = mapped_column(String(40))
    gender: Mapped[str | None] = mapped_column(String(16))
    height: Mapped[float | None] = mapped_column(Float)
    weight: Mapped[float | None] = mapped_column(Float)
    bmi: Mapped[float | None] = mapped_column(Float)
    personality: Mapped[str | None] = mapped_column(String(100))
    work_intensity: Mapped[str | None] = mapped_column(String(40))
    blood_pressure: Mapped[str | None] = mapped_column(String(40))
    birth_date: Mapped[dt.date | None] = mapped_column(Date)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))

    records: Mapped[list["VisitRow"]] = relationship(
        back_populates="patient",
        cascade="all, delete-orphan",
        order_by="VisitRow.seq",
        lazy="selectin",
    )


class VisitRow(Base):
    __tablename__ = "visit_records"

    # Insertion order of the history.
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    record_id: Mapped[str] = mapped_column(String(32), unique=True)
    national_id: Mapped[str] = mapped_column(
        ForeignKey("patients.national_id", ondelete="CASCADE"), index=True
    )
    measurement_date: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    heart_rate: Mapped[float | None] = mapped_column(Float)
    pulse_wave: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    stress: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    symptoms: Mapped[list[str]] = mapped_column(JSON, default=list)
    medications: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    memo: Mapped[str] = mapped_column(Text, default="")
    recorded_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))

    patient: Mapped[PatientRow] = relationship(back_populates="records")


_ACTIVE = text("status != 'cancelled'")


class SlotRow(Base):
    __tablename__ = "appointment_slots"
    __table_args__ = (
        # One live booking per (date, time); cancelled rows stay for audit.
        Index(
            "uq_appointment_slots_active",
            "date",
            "time",
            unique=True,
            postgresql_where=_ACTIVE,
            sqlite_where=_ACTIVE,
        ),
    )

    slot_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date)
    time: Mapped[str] = mapped_column(String(5))
    patient_ref: Mapped[str] = mapped_column(String(64), index=True)
    symptoms: Mapped[list[str]] = mapped_column(JSON, default=list)
    medications: Mapped[list[str]] = mapped_column(JSON, default=list)
    preferences: Mapped[list[str]] = mapped_column(JSON, default=list)
    stress_level: Mapped[float | None] = mapped_column(Float)
    stress_categories: Mapped[list[str]] = mapped_column(JSON, default=list)
    memo: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(16))
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
