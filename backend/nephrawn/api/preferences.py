from fastapi import APIRouter, Depends

from nephrawn.api.deps import get_preference_service
from nephrawn.schemas.notification import (
    NotificationPreferenceResponse,
    NotificationPreferenceUpdate,
)
from nephrawn.services.notifications import NotificationPreferenceService

router = APIRouter(
    prefix="/clinicians/{clinician_id}/notification-preferences",
    tags=["Notifications"],
)


@router.get("", response_model=NotificationPreferenceResponse)
async def get_notification_preferences(
    clinician_id: int,
    service: NotificationPreferenceService = Depends(get_preference_service),
):
    """Current preferences; defaults are created on first read."""
    preferences = await service.get_preferences(clinician_id)
    return NotificationPreferenceResponse.model_validate(preferences)


@router.put("", response_model=NotificationPreferenceResponse)
async def update_notification_preferences(
    clinician_id: int,
    payload: NotificationPreferenceUpdate,
    service: NotificationPreferenceService = Depends(get_preference_service),
):
    preferences = await service.update_preferences(
        clinician_id, **payload.model_dump(exclude_unset=True)
    )
    return NotificationPreferenceResponse.model_validate(preferences)
