"""Schemas for alert trigger inputs and alert responses.

Trigger inputs are stored on the alert as JSON. ``kind`` tags which rule
family produced them so readers can decode the snapshot without knowing
the rule.
"""

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class MeasurementPoint(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    value: float
    unit: str
    timestamp: datetime


class WindowedDeltaInputs(BaseModel):
    """Change between the oldest and newest reading inside a time window."""

    kind: Literal["windowed_delta"] = "windowed_delta"
    measurements: list[MeasurementPoint]
    oldest_value: float
    newest_value: float
    delta: float
    threshold: float
    critical_threshold: float
    window_hours: float


class LatestValueInputs(BaseModel):
    """Single most recent reading compared against a fixed bound."""

    kind: Literal["latest_value"] = "latest_value"
    measurement: MeasurementPoint
    threshold: float
    critical_threshold: float
    direction: Literal["above", "below"]


TriggerInputs = Annotated[
    Union[WindowedDeltaInputs, LatestValueInputs],
    Field(discriminator="kind"),
]

trigger_inputs_adapter: TypeAdapter[TriggerInputs] = TypeAdapter(TriggerInputs)


def parse_trigger_inputs(data: dict) -> WindowedDeltaInputs | LatestValueInputs:
    return trigger_inputs_adapter.validate_python(data)


class AlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    rule_id: str
    rule_name: str
    severity: str
    status: str
    inputs: TriggerInputs
    summary_text: str | None = None
    triggered_at: datetime
    last_notified_at: datetime | None = None
    acknowledged_by: int | None = None
    acknowledged_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AlertListResponse(BaseModel):
    alerts: list[AlertResponse]
    count: int  # alerts on this page
