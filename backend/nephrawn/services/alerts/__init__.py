"""Alert rules, evaluation, upsert, and lifecycle."""

from nephrawn.services.alerts.coordinator import AlertUpsertCoordinator, UpsertOutcome
from nephrawn.services.alerts.engine import AlertRuleEngine, RuleMatch
from nephrawn.services.alerts.lifecycle import AlertLifecycleService
from nephrawn.services.alerts.rules import (
    ALERT_RULES,
    ALERT_THRESHOLDS,
    RULES_BY_ID,
    AlertRule,
    Trigger,
)

__all__ = [
    "ALERT_RULES",
    "ALERT_THRESHOLDS",
    "RULES_BY_ID",
    "AlertRule",
    "AlertRuleEngine",
    "AlertLifecycleService",
    "AlertUpsertCoordinator",
    "RuleMatch",
    "Trigger",
    "UpsertOutcome",
]
