from datetime import UTC, datetime, timedelta, timezone

import pytest

from nephrawn.config import settings
from nephrawn.errors import NaiveTimestampError, UnsupportedUnitError, ValueOutOfRangeError
from nephrawn.models import InteractionType
from nephrawn.services.measurements import MeasurementService
from nephrawn.services.memory_store import InMemoryUnitOfWork

START = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.mark.anyio
async def test_submit_stores_canonical_value_and_interaction(service, store):
    result = await service.submit_measurement(1, "weight", 150, "lbs")

    assert result.is_duplicate is False
    assert result.converted_from == "lbs"
    measurement = result.measurement
    assert measurement.value == 68.0388
    assert measurement.unit == "kg"
    assert measurement.input_unit == "lbs"
    assert measurement.source == "manual"
    assert measurement.timestamp == START

    [log] = store.tables["interaction_logs"]
    assert log.interaction_type == InteractionType.PATIENT_MEASUREMENT
    assert log.patient_id == 1
    assert log.metadata_["measurement_id"] == measurement.id
    assert log.metadata_["type"] == "WEIGHT"


@pytest.mark.anyio
async def test_rejections_happen_before_any_store_access(service, store, monkeypatch):
    def _no_store():
        raise AssertionError("store must not be touched")

    monkeypatch.setattr(store, "transaction", _no_store)

    with pytest.raises(UnsupportedUnitError):
        await service.submit_measurement(1, "WEIGHT", 70, "stone")
    with pytest.raises(ValueOutOfRangeError):
        await service.submit_measurement(1, "SPO2", 40, "%")


@pytest.mark.anyio
async def test_write_is_atomic(service, store, monkeypatch):
    async def _fail(self, log):
        raise RuntimeError("audit table unavailable")

    monkeypatch.setattr(InMemoryUnitOfWork, "add_interaction", _fail)

    with pytest.raises(RuntimeError, match="audit table unavailable"):
        await service.submit_measurement(1, "WEIGHT", 70, "kg")

    assert store.tables["measurements"] == []
    assert store.tables["interaction_logs"] == []


@pytest.mark.anyio
async def test_blood_pressure_pair_shares_timestamp(service, store):
    result = await service.submit_blood_pressure(1, systolic=128, diastolic=82)

    assert result.is_duplicate is False
    assert result.systolic.measurement.type == "BP_SYSTOLIC"
    assert result.diastolic.measurement.type == "BP_DIASTOLIC"
    assert result.systolic.measurement.timestamp == result.diastolic.measurement.timestamp
    assert len(store.tables["interaction_logs"]) == 2


@pytest.mark.anyio
async def test_blood_pressure_pair_is_validated_before_writing(service, store):
    with pytest.raises(ValueOutOfRangeError):
        await service.submit_blood_pressure(1, systolic=128, diastolic=250)

    assert store.tables["measurements"] == []


@pytest.mark.anyio
async def test_list_measurements_filters_and_orders_newest_first(service, clock):
    await service.submit_measurement(1, "WEIGHT", 70, "kg")
    clock.advance(hours=1)
    await service.submit_measurement(1, "SPO2", 97, "%")
    clock.advance(hours=1)
    await service.submit_measurement(1, "WEIGHT", 70.6, "kg")
    await service.submit_measurement(2, "WEIGHT", 80, "kg")

    weights = await service.list_measurements(1, "WEIGHT")
    everything = await service.list_measurements(1)
    recent = await service.list_measurements(1, since=START + timedelta(minutes=30))
    paged = await service.list_measurements(1, limit=1, offset=1)

    assert [m.value for m in weights] == [70.6, 70.0]
    assert len(everything) == 3
    assert {m.type for m in recent} == {"SPO2", "WEIGHT"}
    assert len(recent) == 2
    assert paged[0].type == "SPO2"


@pytest.mark.anyio
async def test_alert_failure_does_not_fail_ingestion(service, store, monkeypatch):
    async def _boom(*_args, **_kwargs):
        raise RuntimeError("lock timeout")

    monkeypatch.setattr(service.coordinator, "apply_trigger", _boom)

    result = await service.submit_measurement(1, "BP_SYSTOLIC", 210, "mmHg")

    assert result.is_duplicate is False
    assert len(store.tables["measurements"]) == 1
    assert store.tables["alerts"] == []


@pytest.mark.anyio
async def test_notification_failure_does_not_fail_ingestion(service, store, monkeypatch):
    async def _boom(_alert_id):
        raise RuntimeError("mail relay down")

    monkeypatch.setattr(service.dispatcher, "notify_on_alert", _boom)

    result = await service.submit_measurement(1, "SPO2", 85, "%")

    assert result.is_duplicate is False
    [alert] = store.tables["alerts"]
    assert alert.severity == "CRITICAL"


@pytest.mark.anyio
async def test_timestamp_without_offset_is_rejected(service, store):
    with pytest.raises(NaiveTimestampError):
        await service.submit_measurement(1, "WEIGHT", 70, "kg", timestamp=datetime(2026, 3, 1, 8, 0))
    with pytest.raises(NaiveTimestampError):
        await service.submit_blood_pressure(1, 128, 82, timestamp=datetime(2026, 3, 1, 8, 0))

    assert store.tables["measurements"] == []


@pytest.mark.anyio
async def test_offset_timestamps_feed_the_weight_rule(service, store, clinic):
    patient_id = clinic["patient"].id
    nairobi = timezone(timedelta(hours=3))

    await service.submit_measurement(
        patient_id, "WEIGHT", 70.0, "kg", timestamp=(START - timedelta(hours=24)).astimezone(nairobi)
    )
    await service.submit_measurement(
        patient_id, "WEIGHT", 72.0, "kg", timestamp=(START - timedelta(hours=1)).astimezone(nairobi)
    )

    [alert] = store.tables["alerts"]
    assert alert.rule_id == "weight_gain_48h"


@pytest.mark.anyio
async def test_dedup_window_comes_from_settings(store, dispatcher, clock, monkeypatch):
    monkeypatch.setattr(settings, "dedup_window_minutes", 30)
    service = MeasurementService(store, dispatcher=dispatcher, now=clock)

    await service.submit_measurement(1, "WEIGHT", 70.0, "kg")
    clock.advance(minutes=20)
    result = await service.submit_measurement(1, "WEIGHT", 70.0, "kg")

    assert service.dedup_policy.window == timedelta(minutes=30)
    assert result.is_duplicate is True
    assert len(store.tables["measurements"]) == 1
