"""Clinical alert rules.

Each rule reads the patient's history for one measurement type and either
returns a ``Trigger`` or ``None``. Rules never write; persisting a trigger is
the upsert coordinator's job.

Thresholds are in canonical units (kg, mmHg, %).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Literal, Optional

from nephrawn.models import AlertSeverity, Measurement, MeasurementType
from nephrawn.schemas.alert import LatestValueInputs, MeasurementPoint, WindowedDeltaInputs
from nephrawn.services.store import UnitOfWork
from nephrawn.services.units import CANONICAL_PRECISION

ALERT_THRESHOLDS = {
    # 3 lbs and 5 lbs in 48h
    "weight_gain_kg": 1.36,
    "weight_gain_critical_kg": 2.27,
    "weight_window_hours": 48,
    "systolic_high": 180.0,
    "systolic_high_critical": 200.0,
    "systolic_low": 90.0,
    "systolic_low_critical": 80.0,
    "spo2_low": 92.0,
    "spo2_low_critical": 88.0,
}


@dataclass(frozen=True)
class Trigger:
    rule_id: str
    severity: AlertSeverity
    inputs: WindowedDeltaInputs | LatestValueInputs
    summary: str


RuleEvaluator = Callable[[UnitOfWork, int, datetime], Awaitable[Optional[Trigger]]]


@dataclass(frozen=True)
class AlertRule:
    id: str
    name: str
    description: str
    measurement_type: MeasurementType
    evaluate: RuleEvaluator


def _point(measurement: Measurement) -> MeasurementPoint:
    return MeasurementPoint(
        id=measurement.id,
        value=measurement.value,
        unit=measurement.unit,
        timestamp=measurement.timestamp,
    )


def windowed_delta_rule(
    *,
    rule_id: str,
    measurement_type: MeasurementType,
    window_hours: float,
    threshold: float,
    critical_threshold: float,
    label: str,
) -> RuleEvaluator:
    """Build an evaluator firing when the newest reading in the window exceeds
    the oldest by at least ``threshold``."""

    async def evaluate(uow: UnitOfWork, patient_id: int, now: datetime) -> Optional[Trigger]:
        since = now - timedelta(hours=window_hours)
        history = await uow.list_measurements(
            patient_id,
            measurement_type.value,
            since=since,
            newest_first=False,
        )
        if len(history) < 2:
            return None

        oldest, newest = history[0], history[-1]
        delta = round(newest.value - oldest.value, CANONICAL_PRECISION)
        if delta < threshold:
            return None

        severity = AlertSeverity.CRITICAL if delta >= critical_threshold else AlertSeverity.WARNING
        inputs = WindowedDeltaInputs(
            measurements=[_point(row) for row in history],
            oldest_value=oldest.value,
            newest_value=newest.value,
            delta=delta,
            threshold=threshold,
            critical_threshold=critical_threshold,
            window_hours=window_hours,
        )
        summary = (
            f"{label} up {delta:.2f} {newest.unit} in {window_hours:g}h "
            f"({oldest.value:.2f} to {newest.value:.2f} {newest.unit})"
        )
        return Trigger(rule_id=rule_id, severity=severity, inputs=inputs, summary=summary)

    return evaluate


def latest_value_rule(
    *,
    rule_id: str,
    measurement_type: MeasurementType,
    threshold: float,
    critical_threshold: float,
    direction: Literal["above", "below"],
    label: str,
) -> RuleEvaluator:
    """Build an evaluator comparing the most recent reading to a bound.

    ``above`` fires at or over the threshold; ``below`` fires strictly under it.
    """

    def breaches(value: float, bound: float) -> bool:
        return value >= bound if direction == "above" else value < bound

    async def evaluate(uow: UnitOfWork, patient_id: int, now: datetime) -> Optional[Trigger]:
        latest = await uow.latest_measurement(patient_id, measurement_type.value)
        if latest is None or not breaches(latest.value, threshold):
            return None

        severity = (
            AlertSeverity.CRITICAL
            if breaches(latest.value, critical_threshold)
            else AlertSeverity.WARNING
        )
        inputs = LatestValueInputs(
            measurement=_point(latest),
            threshold=threshold,
            critical_threshold=critical_threshold,
            direction=direction,
        )
        comparison = "at or above" if direction == "above" else "below"
        summary = (
            f"{label} {latest.value:g} {latest.unit} is {comparison} "
            f"{threshold:g} {latest.unit}"
        )
        return Trigger(rule_id=rule_id, severity=severity, inputs=inputs, summary=summary)

    return evaluate


ALERT_RULES: list[AlertRule] = [
    AlertRule(
        id="weight_gain_48h",
        name="Rapid Weight Gain",
        description="Weight increase of 1.36+ kg (3 lbs) within 48 hours",
        measurement_type=MeasurementType.WEIGHT,
        evaluate=windowed_delta_rule(
            rule_id="weight_gain_48h",
            measurement_type=MeasurementType.WEIGHT,
            window_hours=ALERT_THRESHOLDS["weight_window_hours"],
            threshold=ALERT_THRESHOLDS["weight_gain_kg"],
            critical_threshold=ALERT_THRESHOLDS["weight_gain_critical_kg"],
            label="Weight",
        ),
    ),
    AlertRule(
        id="bp_systolic_high",
        name="High Systolic Blood Pressure",
        description="Systolic BP reading of 180 mmHg or more",
        measurement_type=MeasurementType.BP_SYSTOLIC,
        evaluate=latest_value_rule(
            rule_id="bp_systolic_high",
            measurement_type=MeasurementType.BP_SYSTOLIC,
            threshold=ALERT_THRESHOLDS["systolic_high"],
            critical_threshold=ALERT_THRESHOLDS["systolic_high_critical"],
            direction="above",
            label="Systolic BP",
        ),
    ),
    AlertRule(
        id="bp_systolic_low",
        name="Low Systolic Blood Pressure",
        description="Systolic BP reading below 90 mmHg",
        measurement_type=MeasurementType.BP_SYSTOLIC,
        evaluate=latest_value_rule(
            rule_id="bp_systolic_low",
            measurement_type=MeasurementType.BP_SYSTOLIC,
            threshold=ALERT_THRESHOLDS["systolic_low"],
            critical_threshold=ALERT_THRESHOLDS["systolic_low_critical"],
            direction="below",
            label="Systolic BP",
        ),
    ),
    AlertRule(
        id="spo2_low",
        name="Low Oxygen Saturation",
        description="SpO2 reading below 92%",
        measurement_type=MeasurementType.SPO2,
        evaluate=latest_value_rule(
            rule_id="spo2_low",
            measurement_type=MeasurementType.SPO2,
            threshold=ALERT_THRESHOLDS["spo2_low"],
            critical_threshold=ALERT_THRESHOLDS["spo2_low_critical"],
            direction="below",
            label="SpO2",
        ),
    ),
]

RULES_BY_ID: dict[str, AlertRule] = {rule.id: rule for rule in ALERT_RULES}
