"""Transactional store used by the ingestion and alert pipeline.

The pipeline talks to a ``Store`` that hands out ``UnitOfWork`` objects, one
per transaction. ``SQLStore`` is the production implementation on
PostgreSQL; ``nephrawn.services.memory_store.InMemoryStore`` mirrors its
semantics for tests and local demos.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncContextManager, Optional, Protocol

from sqlalchemy import and_, case, desc, func, select, text
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nephrawn.models import (
    Alert,
    AlertStatus,
    Clinician,
    Enrollment,
    EnrollmentStatus,
    InteractionLog,
    Measurement,
    NotificationLog,
    NotificationPreference,
    NotificationStatus,
    Patient,
)

logger = logging.getLogger("nephrawn.store")


@dataclass(frozen=True)
class RecipientContact:
    """Primary clinician for a patient, as needed to address an email."""

    clinician_id: int
    clinician_name: str
    clinician_email: str
    patient_id: int
    patient_name: str


class UnitOfWork(Protocol):
    async def get_measurement_by_external_id(
        self, source: str, external_id: str
    ) -> Optional[Measurement]:
        ...

    async def find_measurements_in_window(
        self,
        patient_id: int,
        measurement_type: str,
        source: str,
        start: datetime,
        end: datetime,
    ) -> list[Measurement]:
        ...

    async def list_measurements(
        self,
        patient_id: int,
        measurement_type: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        newest_first: bool = True,
    ) -> list[Measurement]:
        ...

    async def latest_measurement(
        self, patient_id: int, measurement_type: str
    ) -> Optional[Measurement]:
        ...

    async def add_measurement(self, measurement: Measurement) -> Optional[Measurement]:
        """Insert a measurement; return None if its (source, external_id) exists."""
        ...

    async def add_interaction(self, log: InteractionLog) -> InteractionLog:
        ...

    async def acquire_lock(self, namespace: str, *key: object) -> None:
        """Block until this transaction holds the lock for ``(namespace, key)``."""
        ...

    async def get_open_alert(self, patient_id: int, rule_id: str) -> Optional[Alert]:
        ...

    async def get_alert(self, alert_id: int) -> Optional[Alert]:
        ...

    async def add_alert(self, alert: Alert) -> Alert:
        ...

    async def update_alert(self, alert: Alert, **values: object) -> Alert:
        ...

    async def list_alerts(
        self,
        patient_ids: Sequence[int],
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        by_severity: bool = False,
    ) -> list[Alert]:
        ...

    async def get_primary_contact(self, patient_id: int) -> Optional[RecipientContact]:
        ...

    async def get_enrollment(self, patient_id: int, clinician_id: int) -> Optional[Enrollment]:
        ...

    async def list_enrolled_patient_ids(self, clinician_id: int) -> list[int]:
        ...

    async def get_preferences(self, clinician_id: int) -> Optional[NotificationPreference]:
        ...

    async def add_preferences(self, preferences: NotificationPreference) -> NotificationPreference:
        ...

    async def update_preferences(
        self, preferences: NotificationPreference, **values: object
    ) -> NotificationPreference:
        ...

    async def has_sent_notification_since(
        self, clinician_id: int, patient_id: int, since: datetime
    ) -> bool:
        ...

    async def add_notification_log(self, log: NotificationLog) -> NotificationLog:
        ...

    async def list_notification_logs(
        self,
        patient_id: Optional[int] = None,
        alert_id: Optional[int] = None,
    ) -> list[NotificationLog]:
        ...


class Store(Protocol):
    def transaction(self) -> AsyncContextManager[UnitOfWork]:
        ...


def advisory_lock_key(namespace: str, *key: object) -> int:
    """Stable signed 64-bit key for ``pg_advisory_xact_lock``."""
    raw = ":".join([namespace, *(str(part) for part in key)]).encode("utf-8")
    digest = hashlib.blake2b(raw, digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


_SEVERITY_ORDER = case(
    (Alert.severity == "CRITICAL", 2),
    (Alert.severity == "WARNING", 1),
    else_=0,
)


class SQLUnitOfWork:
    """Unit of work bound to one AsyncSession transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_measurement_by_external_id(
        self, source: str, external_id: str
    ) -> Optional[Measurement]:
        result = await self.db.execute(
            select(Measurement).where(
                Measurement.source == source,
                Measurement.external_id == external_id,
            )
        )
        return result.scalar_one_or_none()

    async def find_measurements_in_window(
        self,
        patient_id: int,
        measurement_type: str,
        source: str,
        start: datetime,
        end: datetime,
    ) -> list[Measurement]:
        result = await self.db.execute(
            select(Measurement)
            .where(
                Measurement.patient_id == patient_id,
                Measurement.type == measurement_type,
                Measurement.source == source,
                Measurement.timestamp >= start,
                Measurement.timestamp <= end,
            )
            .order_by(Measurement.timestamp.asc(), Measurement.id.asc())
        )
        return list(result.scalars().all())

    async def list_measurements(
        self,
        patient_id: int,
        measurement_type: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        newest_first: bool = True,
    ) -> list[Measurement]:
        query = select(Measurement).where(Measurement.patient_id == patient_id)
        if measurement_type is not None:
            query = query.where(Measurement.type == measurement_type)
        if since is not None:
            query = query.where(Measurement.timestamp >= since)
        if until is not None:
            query = query.where(Measurement.timestamp <= until)
        if newest_first:
            query = query.order_by(desc(Measurement.timestamp), desc(Measurement.id))
        else:
            query = query.order_by(Measurement.timestamp.asc(), Measurement.id.asc())
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def latest_measurement(
        self, patient_id: int, measurement_type: str
    ) -> Optional[Measurement]:
        rows = await self.list_measurements(patient_id, measurement_type, limit=1)
        return rows[0] if rows else None

    async def add_measurement(self, measurement: Measurement) -> Optional[Measurement]:
        if measurement.external_id is None:
            self.db.add(measurement)
            await self.db.flush()
            return measurement

        values = {
            column.key: getattr(measurement, column.key)
            for column in Measurement.__table__.columns
            if getattr(measurement, column.key, None) is not None
        }
        statement = (
            insert(Measurement)
            .values(**values)
            .on_conflict_do_nothing(constraint="uq_measurements_source_external_id")
            .returning(Measurement)
        )
        result = await self.db.execute(statement)
        stored = result.scalar_one_or_none()
        if stored is None:
            logger.debug(
                "Insert of %s/%s skipped; reading already stored",
                measurement.source,
                measurement.external_id,
            )
        return stored

    async def add_interaction(self, log: InteractionLog) -> InteractionLog:
        self.db.add(log)
        await self.db.flush()
        return log

    async def acquire_lock(self, namespace: str, *key: object) -> None:
        await self.db.execute(
            text("SELECT pg_advisory_xact_lock(:key)"),
            {"key": advisory_lock_key(namespace, *key)},
        )

    async def get_open_alert(self, patient_id: int, rule_id: str) -> Optional[Alert]:
        result = await self.db.execute(
            select(Alert).where(
                Alert.patient_id == patient_id,
                Alert.rule_id == rule_id,
                Alert.status == AlertStatus.OPEN.value,
            )
        )
        return result.scalar_one_or_none()

    async def get_alert(self, alert_id: int) -> Optional[Alert]:
        result = await self.db.execute(select(Alert).where(Alert.id == alert_id))
        return result.scalar_one_or_none()

    async def add_alert(self, alert: Alert) -> Alert:
        self.db.add(alert)
        await self.db.flush()
        return alert

    async def update_alert(self, alert: Alert, **values: object) -> Alert:
        for key, value in values.items():
            setattr(alert, key, value)
        await self.db.flush()
        return alert

    async def list_alerts(
        self,
        patient_ids: Sequence[int],
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        by_severity: bool = False,
    ) -> list[Alert]:
        if not patient_ids:
            return []
        query = select(Alert).where(Alert.patient_id.in_(list(patient_ids)))
        if status is not None:
            query = query.where(Alert.status == status)
        if by_severity:
            query = query.order_by(desc(_SEVERITY_ORDER), desc(Alert.triggered_at))
        else:
            query = query.order_by(desc(Alert.triggered_at), desc(Alert.id))
        result = await self.db.execute(query.offset(offset).limit(limit))
        return list(result.scalars().all())

    async def get_primary_contact(self, patient_id: int) -> Optional[RecipientContact]:
        result = await self.db.execute(
            select(Enrollment, Clinician, Patient)
            .join(Clinician, Clinician.id == Enrollment.clinician_id)
            .join(Patient, Patient.id == Enrollment.patient_id)
            .where(
                and_(
                    Enrollment.patient_id == patient_id,
                    Enrollment.status == EnrollmentStatus.ACTIVE.value,
                    Enrollment.is_primary.is_(True),
                )
            )
            .order_by(Enrollment.id.asc())
            .limit(1)
        )
        row = result.first()
        if row is None:
            return None
        _enrollment, clinician, patient = row
        return RecipientContact(
            clinician_id=clinician.id,
            clinician_name=clinician.name,
            clinician_email=clinician.email,
            patient_id=patient.id,
            patient_name=patient.name,
        )

    async def get_enrollment(self, patient_id: int, clinician_id: int) -> Optional[Enrollment]:
        result = await self.db.execute(
            select(Enrollment).where(
                Enrollment.patient_id == patient_id,
                Enrollment.clinician_id == clinician_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_enrolled_patient_ids(self, clinician_id: int) -> list[int]:
        result = await self.db.execute(
            select(Enrollment.patient_id).where(
                Enrollment.clinician_id == clinician_id,
                Enrollment.status == EnrollmentStatus.ACTIVE.value,
            )
        )
        return list(result.scalars().all())

    async def get_preferences(self, clinician_id: int) -> Optional[NotificationPreference]:
        result = await self.db.execute(
            select(NotificationPreference).where(
                NotificationPreference.clinician_id == clinician_id
            )
        )
        return result.scalar_one_or_none()

    async def add_preferences(self, preferences: NotificationPreference) -> NotificationPreference:
        # Two dispatches for one clinician may both create the defaults.
        statement = (
            insert(NotificationPreference)
            .values(
                clinician_id=preferences.clinician_id,
                email_enabled=preferences.email_enabled,
                notify_on_critical=preferences.notify_on_critical,
                notify_on_warning=preferences.notify_on_warning,
                notify_on_info=preferences.notify_on_info,
            )
            .on_conflict_do_nothing(index_elements=["clinician_id"])
        )
        await self.db.execute(statement)
        return await self.get_preferences(preferences.clinician_id)

    async def update_preferences(
        self, preferences: NotificationPreference, **values: object
    ) -> NotificationPreference:
        for key, value in values.items():
            setattr(preferences, key, value)
        await self.db.flush()
        return preferences

    async def has_sent_notification_since(
        self, clinician_id: int, patient_id: int, since: datetime
    ) -> bool:
        count = await self.db.scalar(
            select(func.count())
            .select_from(NotificationLog)
            .where(
                NotificationLog.clinician_id == clinician_id,
                NotificationLog.patient_id == patient_id,
                NotificationLog.status == NotificationStatus.SENT.value,
                NotificationLog.sent_at > since,
            )
        )
        return bool(count)

    async def add_notification_log(self, log: NotificationLog) -> NotificationLog:
        self.db.add(log)
        await self.db.flush()
        return log

    async def list_notification_logs(
        self,
        patient_id: Optional[int] = None,
        alert_id: Optional[int] = None,
    ) -> list[NotificationLog]:
        query = select(NotificationLog)
        if patient_id is not None:
            query = query.where(NotificationLog.patient_id == patient_id)
        if alert_id is not None:
            query = query.where(NotificationLog.alert_id == alert_id)
        result = await self.db.execute(query.order_by(NotificationLog.id.asc()))
        return list(result.scalars().all())


class SQLStore:
    """Store backed by SQLAlchemy; each transaction is one session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SQLUnitOfWork]:
        async with self.session_factory() as session:
            async with session.begin():
                yield SQLUnitOfWork(session)
