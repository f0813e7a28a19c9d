from nephrawn.models.alert import Alert, AlertSeverity, AlertStatus
from nephrawn.models.base import Base, JSONType, TimestampMixin
from nephrawn.models.directory import Clinician, Enrollment, EnrollmentStatus, Patient
from nephrawn.models.measurement import (
    MANUAL_SOURCE,
    InteractionLog,
    InteractionType,
    Measurement,
    MeasurementType,
)
from nephrawn.models.notification import (
    NotificationChannel,
    NotificationLog,
    NotificationPreference,
    NotificationStatus,
)

__all__ = [
    # Base
    "Base",
    "JSONType",
    "TimestampMixin",
    # Directory
    "Patient",
    "Clinician",
    "Enrollment",
    "EnrollmentStatus",
    # Measurements
    "Measurement",
    "MeasurementType",
    "InteractionLog",
    "InteractionType",
    "MANUAL_SOURCE",
    # Alerts
    "Alert",
    "AlertSeverity",
    "AlertStatus",
    # Notifications
    "NotificationLog",
    "NotificationPreference",
    "NotificationChannel",
    "NotificationStatus",
]
