import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Optional

from nephrawn.errors import AlertNotFoundError, AlertTransitionError
from nephrawn.models import Alert, AlertStatus
from nephrawn.services.alerts.coordinator import ALERT_LOCK_NAMESPACE
from nephrawn.services.store import Store, UnitOfWork

logger = logging.getLogger("nephrawn.alerts.lifecycle")

_ALLOWED_SOURCES: dict[AlertStatus, frozenset[AlertStatus]] = {
    AlertStatus.ACKNOWLEDGED: frozenset({AlertStatus.OPEN}),
    AlertStatus.DISMISSED: frozenset({AlertStatus.OPEN, AlertStatus.ACKNOWLEDGED}),
}


class AlertLifecycleService:
    """Clinician-facing reads and status transitions for alerts."""

    def __init__(self, store: Store, now: Callable[[], datetime] = lambda: datetime.now(UTC)):
        self.store = store
        self.now = now

    async def list_for_patient(
        self,
        patient_id: int,
        status: Optional[AlertStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Alert]:
        async with self.store.transaction() as uow:
            return await uow.list_alerts(
                [patient_id],
                status=status.value if status else None,
                limit=limit,
                offset=offset,
            )

    async def list_for_clinician(
        self,
        clinician_id: int,
        status: Optional[AlertStatus] = AlertStatus.OPEN,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Alert]:
        """Alerts across the clinician's active patients, most severe first."""
        async with self.store.transaction() as uow:
            patient_ids = await uow.list_enrolled_patient_ids(clinician_id)
            return await uow.list_alerts(
                patient_ids,
                status=status.value if status else None,
                limit=limit,
                offset=offset,
                by_severity=True,
            )

    async def get(self, alert_id: int) -> Alert:
        async with self.store.transaction() as uow:
            return await self._load(uow, alert_id)

    async def acknowledge(self, alert_id: int, clinician_id: int) -> Alert:
        return await self._transition(alert_id, clinician_id, AlertStatus.ACKNOWLEDGED)

    async def dismiss(self, alert_id: int, clinician_id: int) -> Alert:
        return await self._transition(alert_id, clinician_id, AlertStatus.DISMISSED)

    async def _load(self, uow: UnitOfWork, alert_id: int) -> Alert:
        alert = await uow.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    async def _transition(self, alert_id: int, clinician_id: int, target: AlertStatus) -> Alert:
        now = self.now()
        async with self.store.transaction() as uow:
            alert = await self._load(uow, alert_id)
            # Same key as the upsert coordinator so a refresh cannot race a close.
            await uow.acquire_lock(ALERT_LOCK_NAMESPACE, alert.patient_id, alert.rule_id)
            alert = await self._load(uow, alert_id)

            enrollment = await uow.get_enrollment(alert.patient_id, clinician_id)
            if enrollment is None or not enrollment.is_active:
                # Do not reveal alerts of patients outside the clinician's panel.
                raise AlertNotFoundError(alert_id)

            current = AlertStatus(alert.status)
            if current not in _ALLOWED_SOURCES[target]:
                raise AlertTransitionError(alert_id, current.value, target.value)

            alert = await uow.update_alert(
                alert,
                status=target.value,
                acknowledged_by=clinician_id,
                acknowledged_at=now,
                updated_at=now,
            )

        logger.info(
            "Alert %s moved to %s by clinician %s", alert_id, target.value, clinician_id
        )
        return alert
