import pytest

from nephrawn.errors import AlertNotFoundError, AlertTransitionError
from nephrawn.models import Alert, AlertSeverity, AlertStatus, EnrollmentStatus
from nephrawn.services.alerts import AlertLifecycleService


@pytest.fixture()
def lifecycle(store, clock):
    return AlertLifecycleService(store, now=clock)


async def _alert(store, clock, patient_id, rule_id="spo2_low", severity=AlertSeverity.WARNING, status="OPEN"):
    async with store.transaction() as uow:
        return await uow.add_alert(
            Alert(
                patient_id=patient_id,
                rule_id=rule_id,
                rule_name=rule_id,
                severity=severity.value,
                status=status,
                inputs={},
                triggered_at=clock(),
            )
        )


@pytest.mark.anyio
async def test_acknowledge_records_clinician_and_time(store, clinic, clock, lifecycle):
    alert = await _alert(store, clock, clinic["patient"].id)
    clock.advance(minutes=15)

    updated = await lifecycle.acknowledge(alert.id, clinic["clinician"].id)

    assert updated.status == AlertStatus.ACKNOWLEDGED
    assert updated.acknowledged_by == clinic["clinician"].id
    assert updated.acknowledged_at == clock()
    assert updated.updated_at == clock()


@pytest.mark.anyio
async def test_acknowledged_alert_can_be_dismissed(store, clinic, clock, lifecycle):
    alert = await _alert(store, clock, clinic["patient"].id)

    await lifecycle.acknowledge(alert.id, clinic["clinician"].id)
    dismissed = await lifecycle.dismiss(alert.id, clinic["clinician"].id)

    assert dismissed.status == AlertStatus.DISMISSED


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("status", "action"),
    [
        ("ACKNOWLEDGED", "acknowledge"),
        ("DISMISSED", "acknowledge"),
        ("DISMISSED", "dismiss"),
    ],
)
async def test_disallowed_transitions(store, clinic, clock, lifecycle, status, action):
    alert = await _alert(store, clock, clinic["patient"].id, status=status)

    with pytest.raises(AlertTransitionError) as excinfo:
        await getattr(lifecycle, action)(alert.id, clinic["clinician"].id)

    assert excinfo.value.current == status
    assert store.find("alerts", alert.id).status == status


@pytest.mark.anyio
async def test_unknown_alert_is_not_found(clinic, lifecycle):
    with pytest.raises(AlertNotFoundError):
        await lifecycle.acknowledge(404, clinic["clinician"].id)
    with pytest.raises(AlertNotFoundError):
        await lifecycle.get(404)


@pytest.mark.anyio
async def test_clinician_outside_panel_cannot_transition(store, clinic, clock, lifecycle):
    outsider = store.add_clinician("Dr. Outside", "outside@clinic.example")
    former = store.add_clinician("Dr. Former", "former@clinic.example")
    store.enroll(clinic["patient"], former, is_primary=False, status=EnrollmentStatus.DISCHARGED)
    alert = await _alert(store, clock, clinic["patient"].id)

    for clinician in (outsider, former):
        with pytest.raises(AlertNotFoundError):
            await lifecycle.dismiss(alert.id, clinician.id)

    assert store.find("alerts", alert.id).status == AlertStatus.OPEN


@pytest.mark.anyio
async def test_clinician_list_puts_critical_first(store, clinic, clock, lifecycle):
    other = store.add_patient("John Roe")
    store.enroll(other, clinic["clinician"])
    stranger = store.add_patient("Not Mine")

    await _alert(store, clock, clinic["patient"].id, "spo2_low", AlertSeverity.WARNING)
    clock.advance(minutes=5)
    critical = await _alert(store, clock, other.id, "bp_systolic_high", AlertSeverity.CRITICAL)
    clock.advance(minutes=5)
    await _alert(store, clock, clinic["patient"].id, "weight_gain_48h", AlertSeverity.INFO)
    await _alert(store, clock, stranger.id, "spo2_low", AlertSeverity.CRITICAL)
    await _alert(store, clock, other.id, "bp_systolic_low", status="DISMISSED")

    alerts = await lifecycle.list_for_clinician(clinic["clinician"].id)

    assert alerts[0].id == critical.id
    assert [alert.severity for alert in alerts] == ["CRITICAL", "WARNING", "INFO"]
    assert {alert.patient_id for alert in alerts} == {clinic["patient"].id, other.id}


@pytest.mark.anyio
async def test_patient_list_is_newest_first_and_filterable(store, clinic, clock, lifecycle):
    patient_id = clinic["patient"].id
    older = await _alert(store, clock, patient_id, "spo2_low", status="DISMISSED")
    clock.advance(hours=1)
    newer = await _alert(store, clock, patient_id, "spo2_low")

    everything = await lifecycle.list_for_patient(patient_id)
    open_only = await lifecycle.list_for_patient(patient_id, status=AlertStatus.OPEN)

    assert [alert.id for alert in everything] == [newer.id, older.id]
    assert [alert.id for alert in open_only] == [newer.id]
