"""Pydantic schemas for API request/response validation."""

from nephrawn.schemas.alert import (
    AlertListResponse,
    AlertResponse,
    LatestValueInputs,
    MeasurementPoint,
    TriggerInputs,
    WindowedDeltaInputs,
    parse_trigger_inputs,
)
from nephrawn.schemas.measurement import (
    BloodPressureCreate,
    BloodPressureSubmitResponse,
    MeasurementCreate,
    MeasurementResponse,
    MeasurementSubmitResponse,
)
from nephrawn.schemas.notification import (
    NotificationPreferenceResponse,
    NotificationPreferenceUpdate,
)

__all__ = [
    # Alerts
    "AlertListResponse",
    "AlertResponse",
    "LatestValueInputs",
    "MeasurementPoint",
    "TriggerInputs",
    "WindowedDeltaInputs",
    "parse_trigger_inputs",
    # Measurements
    "BloodPressureCreate",
    "BloodPressureSubmitResponse",
    "MeasurementCreate",
    "MeasurementResponse",
    "MeasurementSubmitResponse",
    # Notifications
    "NotificationPreferenceResponse",
    "NotificationPreferenceUpdate",
]
