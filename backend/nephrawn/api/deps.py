"""Shared API dependencies."""

from collections.abc import Callable
from datetime import UTC, datetime
from functools import lru_cache

from fastapi import Depends

from nephrawn.services.alerts import AlertLifecycleService
from nephrawn.services.email import EmailAdapter, get_email_adapter
from nephrawn.services.measurements import MeasurementService
from nephrawn.services.notifications import NotificationDispatcher, NotificationPreferenceService
from nephrawn.services.store import SQLStore, Store


@lru_cache()
def get_store() -> Store:
    from nephrawn.database import async_session_maker

    return SQLStore(async_session_maker)


def get_email_sender() -> EmailAdapter:
    return get_email_adapter()


def get_clock() -> Callable[[], datetime]:
    return lambda: datetime.now(UTC)


def get_measurement_service(
    store: Store = Depends(get_store),
    email: EmailAdapter = Depends(get_email_sender),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> MeasurementService:
    dispatcher = NotificationDispatcher(store, email_adapter=email, now=clock)
    return MeasurementService(store, dispatcher=dispatcher, now=clock)


def get_lifecycle_service(
    store: Store = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AlertLifecycleService:
    return AlertLifecycleService(store, now=clock)


def get_preference_service(store: Store = Depends(get_store)) -> NotificationPreferenceService:
    return NotificationPreferenceService(store)
