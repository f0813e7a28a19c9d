from datetime import UTC, datetime, timedelta

import pytest

from nephrawn.models import AlertSeverity
from nephrawn.schemas.alert import LatestValueInputs, WindowedDeltaInputs, parse_trigger_inputs
from nephrawn.services.alerts.rules import ALERT_RULES, RULES_BY_ID

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


async def _evaluate(store, rule_id, patient_id=1, now=NOW):
    async with store.transaction() as uow:
        return await RULES_BY_ID[rule_id].evaluate(uow, patient_id, now)


def test_rule_registry():
    assert [rule.id for rule in ALERT_RULES] == [
        "weight_gain_48h",
        "bp_systolic_high",
        "bp_systolic_low",
        "spo2_low",
    ]
    assert RULES_BY_ID["weight_gain_48h"].measurement_type == "WEIGHT"


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("newest", "expected"),
    [
        (71.0, None),
        (71.35, None),
        (71.36, AlertSeverity.WARNING),
        (72.26, AlertSeverity.WARNING),
        (72.27, AlertSeverity.CRITICAL),
    ],
)
async def test_weight_gain_thresholds(store, seed, newest, expected):
    await seed(1, "WEIGHT", 70.0, "kg", NOW - timedelta(hours=30))
    await seed(1, "WEIGHT", newest, "kg", NOW)

    trigger = await _evaluate(store, "weight_gain_48h")

    if expected is None:
        assert trigger is None
    else:
        assert trigger.severity == expected
        assert trigger.rule_id == "weight_gain_48h"


@pytest.mark.anyio
async def test_weight_gain_needs_two_points_in_window(store, seed):
    await seed(1, "WEIGHT", 68.0, "kg", NOW - timedelta(hours=49))
    await seed(1, "WEIGHT", 71.0, "kg", NOW)

    assert await _evaluate(store, "weight_gain_48h") is None


@pytest.mark.anyio
async def test_weight_gain_inputs_snapshot(store, seed):
    await seed(1, "WEIGHT", 70.0, "kg", NOW - timedelta(hours=24))
    await seed(1, "WEIGHT", 70.9, "kg", NOW - timedelta(hours=12))
    await seed(1, "WEIGHT", 71.8, "kg", NOW)

    trigger = await _evaluate(store, "weight_gain_48h")

    inputs = trigger.inputs
    assert isinstance(inputs, WindowedDeltaInputs)
    assert inputs.delta == 1.8
    assert inputs.oldest_value == 70.0
    assert inputs.newest_value == 71.8
    assert inputs.threshold == 1.36
    assert inputs.critical_threshold == 2.27
    assert inputs.window_hours == 48
    assert [point.value for point in inputs.measurements] == [70.0, 70.9, 71.8]
    assert "1.80 kg" in trigger.summary


@pytest.mark.anyio
async def test_weight_loss_does_not_trigger(store, seed):
    await seed(1, "WEIGHT", 73.0, "kg", NOW - timedelta(hours=10))
    await seed(1, "WEIGHT", 70.0, "kg", NOW)

    assert await _evaluate(store, "weight_gain_48h") is None


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("rule_id", "measurement_type", "unit", "value", "expected"),
    [
        ("bp_systolic_high", "BP_SYSTOLIC", "mmHg", 179, None),
        ("bp_systolic_high", "BP_SYSTOLIC", "mmHg", 180, AlertSeverity.WARNING),
        ("bp_systolic_high", "BP_SYSTOLIC", "mmHg", 199, AlertSeverity.WARNING),
        ("bp_systolic_high", "BP_SYSTOLIC", "mmHg", 200, AlertSeverity.CRITICAL),
        ("bp_systolic_low", "BP_SYSTOLIC", "mmHg", 90, None),
        ("bp_systolic_low", "BP_SYSTOLIC", "mmHg", 89, AlertSeverity.WARNING),
        ("bp_systolic_low", "BP_SYSTOLIC", "mmHg", 80, AlertSeverity.WARNING),
        ("bp_systolic_low", "BP_SYSTOLIC", "mmHg", 79, AlertSeverity.CRITICAL),
        ("spo2_low", "SPO2", "%", 92, None),
        ("spo2_low", "SPO2", "%", 91, AlertSeverity.WARNING),
        ("spo2_low", "SPO2", "%", 88, AlertSeverity.WARNING),
        ("spo2_low", "SPO2", "%", 87, AlertSeverity.CRITICAL),
    ],
)
async def test_latest_value_thresholds(store, seed, rule_id, measurement_type, unit, value, expected):
    await seed(1, measurement_type, value, unit, NOW)

    trigger = await _evaluate(store, rule_id)

    if expected is None:
        assert trigger is None
    else:
        assert trigger.severity == expected
        assert isinstance(trigger.inputs, LatestValueInputs)
        assert trigger.inputs.measurement.value == value


@pytest.mark.anyio
async def test_latest_value_uses_most_recent_reading(store, seed):
    await seed(1, "SPO2", 85, "%", NOW - timedelta(hours=2))
    await seed(1, "SPO2", 97, "%", NOW)

    assert await _evaluate(store, "spo2_low") is None


@pytest.mark.anyio
async def test_no_history_returns_none(store):
    assert await _evaluate(store, "bp_systolic_high") is None


@pytest.mark.anyio
async def test_inputs_round_trip_through_tagged_union(store, seed):
    await seed(1, "BP_SYSTOLIC", 205, "mmHg", NOW)

    trigger = await _evaluate(store, "bp_systolic_high")
    stored = trigger.inputs.model_dump(mode="json")

    assert stored["kind"] == "latest_value"
    assert stored["direction"] == "above"
    parsed = parse_trigger_inputs(stored)
    assert isinstance(parsed, LatestValueInputs)
    assert parsed.critical_threshold == 200
