"""Clinician notifications for newly created alerts.

Every dispatch attempt leaves exactly one ``NotificationLog`` row, whether
the email went out, failed, or was skipped by a gate. Delivery is
best-effort: a failed send is recorded and not retried.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Optional

from nephrawn.config import settings
from nephrawn.errors import AlertNotFoundError
from nephrawn.models import (
    Alert,
    AlertSeverity,
    NotificationChannel,
    NotificationLog,
    NotificationPreference,
    NotificationStatus,
)
from nephrawn.services.email import EmailAdapter, EmailMessage, SendResult, get_email_adapter
from nephrawn.services.store import RecipientContact, Store, UnitOfWork
from nephrawn.templates.alert_email import AlertEmailData, render_html, render_subject, render_text

logger = logging.getLogger("nephrawn.notifications")

NOTIFY_LOCK_NAMESPACE = "notify"

PREFERENCE_FIELDS = (
    "email_enabled",
    "notify_on_critical",
    "notify_on_warning",
    "notify_on_info",
)


class SkipReason:
    ALERT_COOLDOWN = "Alert notified within cooldown window"
    NO_PRIMARY_CLINICIAN = "No active primary clinician enrollment"
    PREFERENCES = "Clinician preferences exclude this severity"
    CLINICIAN_COOLDOWN = "Clinician already notified about this patient within cooldown window"


async def load_preferences(uow: UnitOfWork, clinician_id: int) -> NotificationPreference:
    """Return the clinician's preferences, creating the defaults on first use."""
    preferences = await uow.get_preferences(clinician_id)
    if preferences is None:
        preferences = await uow.add_preferences(NotificationPreference.defaults(clinician_id))
    return preferences


class NotificationPreferenceService:
    def __init__(self, store: Store):
        self.store = store

    async def get_preferences(self, clinician_id: int) -> NotificationPreference:
        async with self.store.transaction() as uow:
            return await load_preferences(uow, clinician_id)

    async def update_preferences(self, clinician_id: int, **changes: Optional[bool]) -> NotificationPreference:
        """Apply a partial update; ``None`` values leave the field unchanged."""
        unknown = set(changes) - set(PREFERENCE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown preference fields: {', '.join(sorted(unknown))}")
        values = {key: value for key, value in changes.items() if value is not None}

        async with self.store.transaction() as uow:
            preferences = await uow.get_preferences(clinician_id)
            if preferences is None:
                created = NotificationPreference.defaults(clinician_id)
                for key, value in values.items():
                    setattr(created, key, value)
                return await uow.add_preferences(created)
            if values:
                preferences = await uow.update_preferences(preferences, **values)
        return preferences


class NotificationDispatcher:
    """Decide whether a new alert is emailed to the patient's primary clinician.

    Gates, in order: the alert's own cooldown, an active primary enrollment,
    the clinician's preferences, then a per clinician and patient cooldown
    on SENT notifications. The whole decision runs in one transaction that
    holds the patient's notification lock, so two alerts for the same
    patient cannot both pass the cooldown check.
    """

    def __init__(
        self,
        store: Store,
        email_adapter: Optional[EmailAdapter] = None,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
        cooldown: Optional[timedelta] = None,
    ):
        self.store = store
        self.email_adapter = email_adapter or get_email_adapter()
        self.now = now
        self.cooldown = cooldown or timedelta(hours=settings.notification_cooldown_hours)

    async def notify_on_alert(self, alert_id: int) -> NotificationLog:
        async with self.store.transaction() as uow:
            alert = await uow.get_alert(alert_id)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            await uow.acquire_lock(NOTIFY_LOCK_NAMESPACE, alert.patient_id)
            return await self._dispatch(uow, alert)

    async def _dispatch(self, uow: UnitOfWork, alert: Alert) -> NotificationLog:
        now = self.now()
        cutoff = now - self.cooldown

        if alert.last_notified_at is not None and alert.last_notified_at > cutoff:
            return await self._skip(uow, alert, None, SkipReason.ALERT_COOLDOWN)

        contact = await uow.get_primary_contact(alert.patient_id)
        if contact is None:
            return await self._skip(uow, alert, None, SkipReason.NO_PRIMARY_CLINICIAN)

        preferences = await load_preferences(uow, contact.clinician_id)
        if not preferences.allows(alert.severity):
            return await self._skip(uow, alert, contact, SkipReason.PREFERENCES)

        if await uow.has_sent_notification_since(contact.clinician_id, alert.patient_id, cutoff):
            return await self._skip(uow, alert, contact, SkipReason.CLINICIAN_COOLDOWN)

        email_data = AlertEmailData(
            clinician_name=contact.clinician_name,
            patient_name=contact.patient_name,
            patient_id=alert.patient_id,
            alert_id=alert.id,
            severity=AlertSeverity(alert.severity),
            rule_name=alert.rule_name,
            summary_text=alert.summary_text,
            triggered_at=alert.triggered_at,
        )
        subject = render_subject(email_data)
        message = EmailMessage(
            to=contact.clinician_email,
            subject=subject,
            html=render_html(email_data),
            text=render_text(email_data),
        )
        # Runs inside the transaction holding the patient's notify lock, so the
        # pool connection stays checked out for the whole send (up to the
        # SMTP/Resend timeout).
        try:
            result = await self.email_adapter.send(message)
        except Exception as exc:
            logger.exception("Email adapter raised for alert %s", alert.id)
            result = SendResult(success=False, error=str(exc) or exc.__class__.__name__)

        if not result.success:
            logger.error(
                "Failed to send notification for alert %s to clinician %s: %s",
                alert.id,
                contact.clinician_id,
                result.error,
            )
            return await uow.add_notification_log(
                self._log(alert, contact, NotificationStatus.FAILED, now, subject, result.error)
            )

        await uow.update_alert(alert, last_notified_at=now)
        logger.info(
            "Notification for alert %s sent to clinician %s",
            alert.id,
            contact.clinician_id,
        )
        return await uow.add_notification_log(
            self._log(alert, contact, NotificationStatus.SENT, now, subject)
        )

    async def _skip(
        self,
        uow: UnitOfWork,
        alert: Alert,
        contact: Optional[RecipientContact],
        reason: str,
    ) -> NotificationLog:
        logger.debug("Skipping notification for alert %s: %s", alert.id, reason)
        return await uow.add_notification_log(
            self._log(alert, contact, NotificationStatus.SKIPPED, self.now(), None, reason)
        )

    @staticmethod
    def _log(
        alert: Alert,
        contact: Optional[RecipientContact],
        status: NotificationStatus,
        sent_at: datetime,
        subject: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> NotificationLog:
        return NotificationLog(
            clinician_id=contact.clinician_id if contact else None,
            patient_id=alert.patient_id,
            alert_id=alert.id,
            channel=NotificationChannel.EMAIL.value,
            status=status.value,
            recipient=contact.clinician_email if contact else None,
            subject=subject,
            error_message=error_message,
            sent_at=sent_at,
        )
