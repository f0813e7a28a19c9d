from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import AwareDatetime

from nephrawn.api.deps import get_measurement_service
from nephrawn.errors import MeasurementRejected
from nephrawn.schemas.measurement import (
    BloodPressureCreate,
    BloodPressureSubmitResponse,
    MeasurementCreate,
    MeasurementResponse,
    MeasurementSubmitResponse,
)
from nephrawn.services.measurements import MeasurementService
from nephrawn.services.units import to_display

router = APIRouter(prefix="/patients/{patient_id}/measurements", tags=["Measurements"])


def _rejected(exc: MeasurementRejected) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.post("", response_model=MeasurementSubmitResponse, status_code=201)
async def submit_measurement(
    patient_id: int,
    payload: MeasurementCreate,
    response: Response,
    service: MeasurementService = Depends(get_measurement_service),
):
    """Submit a single reading. Duplicates return the existing record with 200."""
    try:
        result = await service.submit_measurement(
            patient_id,
            payload.type,
            payload.value,
            payload.unit,
            source=payload.source,
            external_id=payload.external_id,
            timestamp=payload.timestamp,
        )
    except MeasurementRejected as exc:
        raise _rejected(exc)

    if result.is_duplicate:
        response.status_code = status.HTTP_200_OK
    return MeasurementSubmitResponse(
        measurement=MeasurementResponse.model_validate(result.measurement),
        is_duplicate=result.is_duplicate,
        converted_from=result.converted_from,
    )


@router.post("/blood-pressure", response_model=BloodPressureSubmitResponse, status_code=201)
async def submit_blood_pressure(
    patient_id: int,
    payload: BloodPressureCreate,
    response: Response,
    service: MeasurementService = Depends(get_measurement_service),
):
    try:
        result = await service.submit_blood_pressure(
            patient_id,
            payload.systolic,
            payload.diastolic,
            unit=payload.unit,
            timestamp=payload.timestamp,
        )
    except MeasurementRejected as exc:
        raise _rejected(exc)

    if result.is_duplicate:
        response.status_code = status.HTTP_200_OK
    return BloodPressureSubmitResponse(
        systolic=MeasurementResponse.model_validate(result.systolic.measurement),
        diastolic=MeasurementResponse.model_validate(result.diastolic.measurement),
        is_duplicate=result.is_duplicate,
    )


@router.get("", response_model=list[MeasurementResponse])
async def list_measurements(
    patient_id: int,
    type: Optional[str] = Query(None, description="Filter by measurement type"),
    since: Optional[AwareDatetime] = Query(None),
    until: Optional[AwareDatetime] = Query(None),
    display_unit: Optional[str] = Query(None, description="Unit for display_value, e.g. lbs"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: MeasurementService = Depends(get_measurement_service),
):
    try:
        rows = await service.list_measurements(
            patient_id,
            type,
            since=since,
            until=until,
            limit=limit,
            offset=offset,
        )
    except MeasurementRejected as exc:
        raise _rejected(exc)
    items = []
    for row in rows:
        item = MeasurementResponse.model_validate(row)
        item.display_value, item.display_unit = to_display(row.type, row.value, display_unit)
        items.append(item)
    return items
