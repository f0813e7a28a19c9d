"""Clinical alerts raised by the rule engine."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from nephrawn.models.base import Base, JSONType, TimestampMixin


class AlertSeverity(StrEnum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    AlertSeverity.INFO: 0,
    AlertSeverity.WARNING: 1,
    AlertSeverity.CRITICAL: 2,
}


class AlertStatus(StrEnum):
    OPEN = "OPEN"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    DISMISSED = "DISMISSED"


class Alert(Base, TimestampMixin):
    """An instance of a clinical condition detected for one patient.

    At most one row per (patient_id, rule_id) may be OPEN. The upsert
    coordinator serializes on that key; the partial unique index below is a
    backstop that turns a lost race into an integrity error instead of a
    second OPEN row.
    """

    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    rule_id: Mapped[str] = mapped_column(String(64), nullable=False)
    rule_name: Mapped[str] = mapped_column(String(200), nullable=False)
    severity: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="INFO|WARNING|CRITICAL",
    )
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=AlertStatus.OPEN.value,
        server_default=AlertStatus.OPEN.value,
        comment="OPEN|ACKNOWLEDGED|DISMISSED",
    )
    inputs: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    summary_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    triggered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    last_notified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    acknowledged_by: Mapped[int | None] = mapped_column(
        ForeignKey("clinicians.id", ondelete="SET NULL"),
        nullable=True,
    )
    acknowledged_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        Index(
            "uq_alerts_open_patient_rule",
            "patient_id",
            "rule_id",
            unique=True,
            postgresql_where=text("status = 'OPEN'"),
        ),
        Index("ix_alerts_patient_status", "patient_id", "status"),
        Index("ix_alerts_triggered_at", "triggered_at"),
    )

    @property
    def is_open(self) -> bool:
        return self.status == AlertStatus.OPEN

    @property
    def severity_rank(self) -> int:
        return AlertSeverity(self.severity).rank

    def __repr__(self) -> str:
        return (
            f"<Alert(id={self.id}, patient_id={self.patient_id}, rule_id={self.rule_id}, "
            f"severity={self.severity}, status={self.status})>"
        )
