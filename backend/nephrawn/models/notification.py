"""Notification audit trail and clinician notification preferences."""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from nephrawn.models.alert import AlertSeverity
from nephrawn.models.base import Base, TimestampMixin


class NotificationChannel(StrEnum):
    EMAIL = "EMAIL"


class NotificationStatus(StrEnum):
    SENT = "SENT"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class NotificationLog(Base):
    """Append-only record of one dispatch attempt, including skips.

    ``clinician_id`` and ``recipient`` are empty when the attempt stopped
    before a recipient was resolved.
    """

    __tablename__ = "notification_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    clinician_id: Mapped[int | None] = mapped_column(
        ForeignKey("clinicians.id", ondelete="CASCADE"),
        nullable=True,
    )
    patient_id: Mapped[int] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
    )
    alert_id: Mapped[int | None] = mapped_column(
        ForeignKey("alerts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    channel: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=NotificationChannel.EMAIL.value,
    )
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="SENT|FAILED|SKIPPED",
    )
    recipient: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index(
            "ix_notification_logs_clinician_patient_sent",
            "clinician_id",
            "patient_id",
            "sent_at",
        ),
    )

    def __repr__(self) -> str:
        return f"<NotificationLog(id={self.id}, alert_id={self.alert_id}, status={self.status})>"


class NotificationPreference(Base, TimestampMixin):
    """Per-clinician switches for alert emails."""

    __tablename__ = "notification_preferences"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    clinician_id: Mapped[int] = mapped_column(
        ForeignKey("clinicians.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    email_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_on_critical: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_on_warning: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_on_info: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    @classmethod
    def defaults(cls, clinician_id: int) -> "NotificationPreference":
        return cls(
            clinician_id=clinician_id,
            email_enabled=True,
            notify_on_critical=True,
            notify_on_warning=True,
            notify_on_info=False,
        )

    def allows(self, severity: str) -> bool:
        """Whether an email should go out for an alert of this severity."""
        if not self.email_enabled:
            return False
        if severity == AlertSeverity.CRITICAL:
            return self.notify_on_critical
        if severity == AlertSeverity.WARNING:
            return self.notify_on_warning
        if severity == AlertSeverity.INFO:
            return self.notify_on_info
        return False
