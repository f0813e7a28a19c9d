"""Vital-sign measurements and the interaction audit trail."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from nephrawn.models.base import Base, JSONType

MANUAL_SOURCE = "manual"


class MeasurementType(StrEnum):
    WEIGHT = "WEIGHT"
    BP_SYSTOLIC = "BP_SYSTOLIC"
    BP_DIASTOLIC = "BP_DIASTOLIC"
    SPO2 = "SPO2"
    HEART_RATE = "HEART_RATE"
    # Device-derived body composition
    FAT_FREE_MASS = "FAT_FREE_MASS"
    FAT_RATIO = "FAT_RATIO"
    FAT_MASS = "FAT_MASS"
    MUSCLE_MASS = "MUSCLE_MASS"
    HYDRATION = "HYDRATION"
    BONE_MASS = "BONE_MASS"
    PULSE_WAVE_VELOCITY = "PULSE_WAVE_VELOCITY"


class InteractionType(StrEnum):
    PATIENT_MEASUREMENT = "PATIENT_MEASUREMENT"


class Measurement(Base):
    """A single accepted reading, stored in the canonical unit of its type.

    Rows are immutable once written. ``input_unit`` records the submitted unit
    only when a conversion took place.
    """

    __tablename__ = "measurements"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[str] = mapped_column(String(16), nullable=False)
    input_unit: Mapped[str | None] = mapped_column(String(16), nullable=True)
    source: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        default=MANUAL_SOURCE,
        server_default=MANUAL_SOURCE,
        comment="manual or a device vendor tag",
    )
    external_id: Mapped[str | None] = mapped_column(
        String(120),
        nullable=True,
        comment="Vendor-assigned identifier used for device dedup",
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Effective reading time",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "source",
            "external_id",
            name="uq_measurements_source_external_id",
        ),
        Index(
            "ix_measurements_patient_type_timestamp",
            "patient_id",
            "type",
            "timestamp",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Measurement(id={self.id}, patient_id={self.patient_id}, "
            f"type={self.type}, value={self.value} {self.unit})>"
        )


class InteractionLog(Base):
    """Audit row written alongside every accepted measurement."""

    __tablename__ = "interaction_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    clinician_id: Mapped[int | None] = mapped_column(
        ForeignKey("clinicians.id", ondelete="SET NULL"),
        nullable=True,
    )
    interaction_type: Mapped[str] = mapped_column(String(40), nullable=False)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_interaction_logs_patient_timestamp", "patient_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<InteractionLog(id={self.id}, type={self.interaction_type}, patient_id={self.patient_id})>"
