from datetime import datetime

from pydantic import BaseModel, ConfigDict


class NotificationPreferenceUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""

    email_enabled: bool | None = None
    notify_on_critical: bool | None = None
    notify_on_warning: bool | None = None
    notify_on_info: bool | None = None


class NotificationPreferenceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    clinician_id: int
    email_enabled: bool
    notify_on_critical: bool
    notify_on_warning: bool
    notify_on_info: bool
    updated_at: datetime | None = None
