"""Business logic services for Nephrawn.

Imports are resolved lazily so that importing a single service module does
not pull in the whole pipeline.
"""

from importlib import import_module

__all__ = [
    # Store
    "Store",
    "UnitOfWork",
    "SQLStore",
    "InMemoryStore",
    # Ingestion
    "MeasurementService",
    "SubmitResult",
    "BloodPressureResult",
    # Alerts
    "AlertRuleEngine",
    "AlertUpsertCoordinator",
    "AlertLifecycleService",
    # Notifications
    "NotificationDispatcher",
    "NotificationPreferenceService",
    "get_email_adapter",
]

_LAZY_IMPORTS = {
    "Store": ("nephrawn.services.store", "Store"),
    "UnitOfWork": ("nephrawn.services.store", "UnitOfWork"),
    "SQLStore": ("nephrawn.services.store", "SQLStore"),
    "InMemoryStore": ("nephrawn.services.memory_store", "InMemoryStore"),
    "MeasurementService": ("nephrawn.services.measurements", "MeasurementService"),
    "SubmitResult": ("nephrawn.services.measurements", "SubmitResult"),
    "BloodPressureResult": ("nephrawn.services.measurements", "BloodPressureResult"),
    "AlertRuleEngine": ("nephrawn.services.alerts", "AlertRuleEngine"),
    "AlertUpsertCoordinator": ("nephrawn.services.alerts", "AlertUpsertCoordinator"),
    "AlertLifecycleService": ("nephrawn.services.alerts", "AlertLifecycleService"),
    "NotificationDispatcher": ("nephrawn.services.notifications", "NotificationDispatcher"),
    "NotificationPreferenceService": (
        "nephrawn.services.notifications",
        "NotificationPreferenceService",
    ),
    "get_email_adapter": ("nephrawn.services.email", "get_email_adapter"),
}


def __getattr__(name: str):
    target = _LAZY_IMPORTS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    return getattr(import_module(module_name), attr_name)
