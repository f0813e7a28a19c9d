import pytest
from httpx import ASGITransport, AsyncClient

from nephrawn.api.deps import get_clock, get_email_sender, get_store
from nephrawn.main import app
from nephrawn.models import Alert

API = "/api/v1"


@pytest.fixture()
async def client(store, email_adapter, clock):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_email_sender] = lambda: email_adapter
    app.dependency_overrides[get_clock] = lambda: clock

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as async_client:
        yield async_client

    app.dependency_overrides.clear()


async def _open_alert(store, patient_id, clock, rule_id="spo2_low", severity="WARNING"):
    async with store.transaction() as uow:
        return await uow.add_alert(
            Alert(
                patient_id=patient_id,
                rule_id=rule_id,
                rule_name="Low Oxygen Saturation",
                severity=severity,
                status="OPEN",
                inputs={
                    "kind": "latest_value",
                    "measurement": {
                        "id": 1,
                        "value": 90,
                        "unit": "%",
                        "timestamp": clock().isoformat(),
                    },
                    "threshold": 92,
                    "critical_threshold": 88,
                    "direction": "below",
                },
                summary_text="SpO2 90 % is below 92 %",
                triggered_at=clock(),
            )
        )


@pytest.mark.anyio
async def test_health(client: AsyncClient):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "nephrawn-api"}
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert "X-Request-Id" in response.headers


@pytest.mark.anyio
async def test_readiness_reports_database_outage(client: AsyncClient, monkeypatch):
    from nephrawn import database

    async def _down() -> bool:
        return False

    monkeypatch.setattr(database, "check_db", _down)

    response = await client.get("/health/ready")

    assert response.status_code == 503
    assert response.json()["database"] is False


@pytest.mark.anyio
async def test_submit_measurement_converts_and_dedups(client: AsyncClient, clinic):
    url = f"{API}/patients/{clinic['patient'].id}/measurements"
    payload = {"type": "weight", "value": 154.3, "unit": "lbs"}

    created = await client.post(url, json=payload)
    duplicate = await client.post(url, json=payload)

    assert created.status_code == 201
    body = created.json()
    assert body["is_duplicate"] is False
    assert body["converted_from"] == "lbs"
    assert body["measurement"]["unit"] == "kg"
    assert body["measurement"]["value"] == 69.9892
    assert duplicate.status_code == 200
    assert duplicate.json()["is_duplicate"] is True
    assert duplicate.json()["measurement"]["id"] == body["measurement"]["id"]


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("payload", "fragment"),
    [
        ({"type": "GLUCOSE", "value": 5.1, "unit": "mmol/L"}, "Unsupported measurement type"),
        ({"type": "WEIGHT", "value": 70, "unit": "stone"}, "Unsupported unit"),
        ({"type": "SPO2", "value": 140, "unit": "%"}, "plausible range"),
    ],
)
async def test_rejected_measurement_is_400(client: AsyncClient, clinic, store, payload, fragment):
    response = await client.post(
        f"{API}/patients/{clinic['patient'].id}/measurements", json=payload
    )

    assert response.status_code == 400
    assert fragment in response.json()["error"]["message"]
    assert store.tables["measurements"] == []


@pytest.mark.anyio
async def test_blood_pressure_pair(client: AsyncClient, clinic):
    url = f"{API}/patients/{clinic['patient'].id}/measurements/blood-pressure"

    response = await client.post(url, json={"systolic": 128, "diastolic": 82})
    invalid = await client.post(url, json={"systolic": 80, "diastolic": 90})

    assert response.status_code == 201
    body = response.json()
    assert body["systolic"]["type"] == "BP_SYSTOLIC"
    assert body["diastolic"]["type"] == "BP_DIASTOLIC"
    assert body["systolic"]["timestamp"] == body["diastolic"]["timestamp"]
    assert invalid.status_code == 422
    assert invalid.json()["error"]["type"] == "validation_error"


@pytest.mark.anyio
async def test_list_measurements_by_type(client: AsyncClient, clinic, clock):
    url = f"{API}/patients/{clinic['patient'].id}/measurements"
    await client.post(url, json={"type": "SPO2", "value": 97, "unit": "%"})
    clock.advance(hours=1)
    await client.post(url, json={"type": "HEART_RATE", "value": 72, "unit": "bpm"})

    response = await client.get(url, params={"type": "spo2"})
    unknown = await client.get(url, params={"type": "glucose"})

    assert response.status_code == 200
    assert [row["type"] for row in response.json()] == ["SPO2"]
    assert unknown.status_code == 400


@pytest.mark.anyio
async def test_timestamp_without_offset_is_422(client: AsyncClient, clinic, store):
    response = await client.post(
        f"{API}/patients/{clinic['patient'].id}/measurements",
        json={"type": "WEIGHT", "value": 70, "unit": "kg", "timestamp": "2026-03-01T08:00:00"},
    )

    assert response.status_code == 422
    assert response.json()["error"]["type"] == "validation_error"
    assert store.tables["measurements"] == []


@pytest.mark.anyio
async def test_list_measurements_display_unit(client: AsyncClient, clinic):
    url = f"{API}/patients/{clinic['patient'].id}/measurements"
    await client.post(url, json={"type": "WEIGHT", "value": 154.3, "unit": "lbs"})

    default = (await client.get(url, params={"type": "WEIGHT"})).json()
    metric = (await client.get(url, params={"type": "WEIGHT", "display_unit": "kg"})).json()
    bogus = (await client.get(url, params={"type": "WEIGHT", "display_unit": "stone"})).json()

    assert (default[0]["display_value"], default[0]["display_unit"]) == (154.3, "lbs")
    assert (metric[0]["display_value"], metric[0]["display_unit"]) == (69.99, "kg")
    assert bogus[0]["display_unit"] == "kg"
    assert default[0]["value"] == 69.9892


@pytest.mark.anyio
async def test_alert_raised_through_api_is_listed(client: AsyncClient, clinic, email_adapter):
    patient_id = clinic["patient"].id
    await client.post(
        f"{API}/patients/{patient_id}/measurements",
        json={"type": "BP_SYSTOLIC", "value": 204, "unit": "mmHg"},
    )

    response = await client.get(f"{API}/patients/{patient_id}/alerts")

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    [alert] = body["alerts"]
    assert alert["rule_id"] == "bp_systolic_high"
    assert alert["severity"] == "CRITICAL"
    assert alert["inputs"]["kind"] == "latest_value"
    assert len(email_adapter.sent) == 1


@pytest.mark.anyio
async def test_clinician_alert_queue(client: AsyncClient, store, clinic, clock):
    alert = await _open_alert(store, clinic["patient"].id, clock)

    response = await client.get(f"{API}/clinicians/{clinic['clinician'].id}/alerts")
    dismissed = await client.get(
        f"{API}/clinicians/{clinic['clinician'].id}/alerts", params={"status": "DISMISSED"}
    )

    assert [row["id"] for row in response.json()["alerts"]] == [alert.id]
    assert dismissed.json()["count"] == 0


@pytest.mark.anyio
async def test_acknowledge_then_conflict(client: AsyncClient, store, clinic, clock):
    alert = await _open_alert(store, clinic["patient"].id, clock)
    base = f"{API}/clinicians/{clinic['clinician'].id}/alerts/{alert.id}"

    acknowledged = await client.post(f"{base}/acknowledge")
    again = await client.post(f"{base}/acknowledge")
    dismissed = await client.post(f"{base}/dismiss")

    assert acknowledged.status_code == 200
    assert acknowledged.json()["status"] == "ACKNOWLEDGED"
    assert acknowledged.json()["acknowledged_by"] == clinic["clinician"].id
    assert again.status_code == 409
    assert dismissed.status_code == 200
    assert dismissed.json()["status"] == "DISMISSED"


@pytest.mark.anyio
async def test_transition_of_unknown_or_foreign_alert_is_404(client: AsyncClient, store, clinic, clock):
    alert = await _open_alert(store, clinic["patient"].id, clock)
    stranger = store.add_clinician("Dr. Stranger", "stranger@clinic.example")

    missing = await client.post(f"{API}/clinicians/{clinic['clinician'].id}/alerts/999/dismiss")
    foreign = await client.post(f"{API}/clinicians/{stranger.id}/alerts/{alert.id}/dismiss")

    assert missing.status_code == 404
    assert foreign.status_code == 404


@pytest.mark.anyio
async def test_notification_preferences(client: AsyncClient, clinic):
    url = f"{API}/clinicians/{clinic['clinician'].id}/notification-preferences"

    defaults = await client.get(url)
    updated = await client.put(url, json={"notify_on_info": True})

    assert defaults.status_code == 200
    assert defaults.json()["notify_on_info"] is False
    assert updated.status_code == 200
    assert updated.json()["notify_on_info"] is True
    assert updated.json()["notify_on_warning"] is True
