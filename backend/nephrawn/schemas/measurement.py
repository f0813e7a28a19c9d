"""Schemas for measurement submission and history."""

from datetime import datetime

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator

from nephrawn.models import MANUAL_SOURCE


class MeasurementCreate(BaseModel):
    type: str = Field(..., min_length=1, max_length=32)
    value: float
    unit: str = Field(..., min_length=1, max_length=16)
    source: str = Field(default=MANUAL_SOURCE, min_length=1, max_length=40)
    external_id: str | None = Field(default=None, max_length=120)
    timestamp: AwareDatetime | None = None


class BloodPressureCreate(BaseModel):
    systolic: float = Field(..., gt=0)
    diastolic: float = Field(..., gt=0)
    unit: str = Field(default="mmHg", max_length=16)
    timestamp: AwareDatetime | None = None

    @model_validator(mode="after")
    def check_pair(self) -> "BloodPressureCreate":
        if self.diastolic >= self.systolic:
            raise ValueError("Systolic must be greater than diastolic")
        return self


class MeasurementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    type: str
    value: float
    unit: str
    input_unit: str | None = None
    source: str
    external_id: str | None = None
    timestamp: datetime
    created_at: datetime | None = None
    display_value: float | None = None
    display_unit: str | None = None


class MeasurementSubmitResponse(BaseModel):
    measurement: MeasurementResponse
    is_duplicate: bool = False
    converted_from: str | None = None


class BloodPressureSubmitResponse(BaseModel):
    systolic: MeasurementResponse
    diastolic: MeasurementResponse
    is_duplicate: bool = False
