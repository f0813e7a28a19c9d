import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from nephrawn.models import MeasurementType
from nephrawn.services.alerts.rules import ALERT_RULES, AlertRule, Trigger
from nephrawn.services.store import Store

logger = logging.getLogger("nephrawn.alerts.engine")


@dataclass(frozen=True)
class RuleMatch:
    rule: AlertRule
    trigger: Trigger


class AlertRuleEngine:
    """Run the rules registered for a measurement type.

    Every rule gets its own read transaction. A rule that raises is logged
    and skipped; the remaining rules still run.
    """

    def __init__(
        self,
        store: Store,
        rules: Sequence[AlertRule] = ALERT_RULES,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.store = store
        self.rules = list(rules)
        self.now = now

    def rules_for(self, measurement_type: str | MeasurementType) -> list[AlertRule]:
        return [rule for rule in self.rules if rule.measurement_type == measurement_type]

    async def evaluate(
        self,
        patient_id: int,
        measurement_type: str | MeasurementType,
    ) -> list[RuleMatch]:
        matches: list[RuleMatch] = []
        now = self.now()
        for rule in self.rules_for(measurement_type):
            try:
                async with self.store.transaction() as uow:
                    trigger = await rule.evaluate(uow, patient_id, now)
            except Exception:
                logger.exception(
                    "Alert rule %s failed for patient %s", rule.id, patient_id
                )
                continue
            if trigger is not None:
                logger.info(
                    "Alert rule %s triggered for patient %s (%s)",
                    rule.id,
                    patient_id,
                    trigger.severity,
                )
                matches.append(RuleMatch(rule=rule, trigger=trigger))
        return matches
