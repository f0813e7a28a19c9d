from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from nephrawn.api.deps import get_lifecycle_service
from nephrawn.errors import AlertNotFoundError, AlertTransitionError
from nephrawn.models import AlertStatus
from nephrawn.schemas.alert import AlertListResponse, AlertResponse
from nephrawn.services.alerts import AlertLifecycleService

router = APIRouter(tags=["Alerts"])


def _listing(alerts) -> AlertListResponse:
    items = [AlertResponse.model_validate(alert) for alert in alerts]
    return AlertListResponse(alerts=items, count=len(items))


@router.get("/patients/{patient_id}/alerts", response_model=AlertListResponse)
async def list_patient_alerts(
    patient_id: int,
    alert_status: Optional[AlertStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: AlertLifecycleService = Depends(get_lifecycle_service),
):
    """Alerts for one patient, newest first."""
    alerts = await service.list_for_patient(
        patient_id, status=alert_status, limit=limit, offset=offset
    )
    return _listing(alerts)


@router.get("/clinicians/{clinician_id}/alerts", response_model=AlertListResponse)
async def list_clinician_alerts(
    clinician_id: int,
    alert_status: Optional[AlertStatus] = Query(AlertStatus.OPEN, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: AlertLifecycleService = Depends(get_lifecycle_service),
):
    """Alerts across the clinician's enrolled patients, critical first."""
    alerts = await service.list_for_clinician(
        clinician_id, status=alert_status, limit=limit, offset=offset
    )
    return _listing(alerts)


async def _transition(action, alert_id: int, clinician_id: int) -> AlertResponse:
    try:
        alert = await action(alert_id, clinician_id)
    except AlertNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except AlertTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return AlertResponse.model_validate(alert)


@router.post(
    "/clinicians/{clinician_id}/alerts/{alert_id}/acknowledge",
    response_model=AlertResponse,
)
async def acknowledge_alert(
    clinician_id: int,
    alert_id: int,
    service: AlertLifecycleService = Depends(get_lifecycle_service),
):
    return await _transition(service.acknowledge, alert_id, clinician_id)


@router.post(
    "/clinicians/{clinician_id}/alerts/{alert_id}/dismiss",
    response_model=AlertResponse,
)
async def dismiss_alert(
    clinician_id: int,
    alert_id: int,
    service: AlertLifecycleService = Depends(get_lifecycle_service),
):
    return await _transition(service.dismiss, alert_id, clinician_id)
