"""Turn rule triggers into alert rows.

There is at most one OPEN alert per (patient, rule). A repeat trigger while
an alert is OPEN refreshes that alert in place instead of adding a row, so a
clinician sees one evolving alert rather than a stream of copies.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from nephrawn.models import Alert, AlertStatus
from nephrawn.services.alerts.rules import AlertRule, Trigger
from nephrawn.services.store import Store

logger = logging.getLogger("nephrawn.alerts.coordinator")

ALERT_LOCK_NAMESPACE = "alert"


@dataclass(frozen=True)
class UpsertOutcome:
    alert: Alert
    created: bool


class AlertUpsertCoordinator:
    def __init__(self, store: Store, now: Callable[[], datetime] = lambda: datetime.now(UTC)):
        self.store = store
        self.now = now

    async def apply_trigger(
        self,
        patient_id: int,
        rule: AlertRule,
        trigger: Trigger,
    ) -> UpsertOutcome:
        """Create or refresh the OPEN alert for ``(patient_id, rule.id)``.

        The read and the write happen under a lock on that key, held until the
        transaction commits, so concurrent triggers serialize and the second
        one sees the first one's row.
        """
        now = self.now()
        inputs = trigger.inputs.model_dump(mode="json")

        async with self.store.transaction() as uow:
            await uow.acquire_lock(ALERT_LOCK_NAMESPACE, patient_id, rule.id)
            existing = await uow.get_open_alert(patient_id, rule.id)

            if existing is not None:
                alert = await uow.update_alert(
                    existing,
                    severity=trigger.severity.value,
                    inputs=inputs,
                    summary_text=trigger.summary,
                    updated_at=now,
                )
                created = False
            else:
                alert = await uow.add_alert(
                    Alert(
                        patient_id=patient_id,
                        rule_id=rule.id,
                        rule_name=rule.name,
                        severity=trigger.severity.value,
                        status=AlertStatus.OPEN.value,
                        inputs=inputs,
                        summary_text=trigger.summary,
                        triggered_at=now,
                    )
                )
                created = True

        logger.info(
            "%s alert %s (%s, %s) for patient %s",
            "Created" if created else "Updated",
            alert.id,
            rule.id,
            trigger.severity,
            patient_id,
        )
        return UpsertOutcome(alert=alert, created=created)
