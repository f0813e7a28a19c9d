"""In-process Store with the same transactional semantics as ``SQLStore``.

Writes are staged per transaction and applied together on commit; an
exception inside ``transaction()`` discards them. Reads see committed rows
plus the transaction's own staged rows. Key locks are held until the
transaction ends, matching ``pg_advisory_xact_lock``.
"""

from __future__ import annotations

import asyncio
import itertools
from collections import defaultdict
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, Optional, TypeVar

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
from nephrawn.services.store import RecipientContact

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


async def _checkpoint() -> None:
    # Yield to the loop so concurrent transactions interleave as they would
    # across a network round trip.
    await asyncio.sleep(0)


class _KeyedLocks:
    """asyncio locks created on demand and dropped once nobody holds or waits."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = defaultdict(int)

    async def acquire(self, key: str) -> None:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            await lock.acquire()
        except BaseException:
            self._drop(key)
            raise

    def release(self, key: str) -> None:
        self._locks[key].release()
        self._drop(key)

    def _drop(self, key: str) -> None:
        self._users[key] -= 1
        if self._users[key] <= 0:
            del self._users[key]
            del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class InMemoryUnitOfWork:
    def __init__(self, store: "InMemoryStore"):
        self.store = store
        self._added: list[tuple[str, Any]] = []
        self._updates: list[tuple[Any, dict[str, Any]]] = []
        self._held: list[str] = []

    # staging

    def _stage(self, table: str, row: T) -> T:
        row.id = next(self.store._ids[table])
        self._added.append((table, row))
        return row

    def _rows(self, table: str) -> list[Any]:
        staged = [row for name, row in self._added if name == table]
        return [*self.store.tables[table], *staged]

    def commit(self) -> None:
        for table, row in self._added:
            self.store.tables[table].append(row)
        for row, values in self._updates:
            for key, value in values.items():
                setattr(row, key, value)
        self._added.clear()
        self._updates.clear()

    def release_locks(self) -> None:
        while self._held:
            self.store._locks.release(self._held.pop())

    # measurements

    async def get_measurement_by_external_id(
        self, source: str, external_id: str
    ) -> Optional[Measurement]:
        await _checkpoint()
        for row in self._rows("measurements"):
            if row.source == source and row.external_id == external_id:
                return row
        return None

    async def find_measurements_in_window(
        self,
        patient_id: int,
        measurement_type: str,
        source: str,
        start: datetime,
        end: datetime,
    ) -> list[Measurement]:
        await _checkpoint()
        rows = [
            row
            for row in self._rows("measurements")
            if row.patient_id == patient_id
            and row.type == measurement_type
            and row.source == source
            and start <= row.timestamp <= end
        ]
        return sorted(rows, key=lambda row: (row.timestamp, row.id))

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
        await _checkpoint()
        rows = [
            row
            for row in self._rows("measurements")
            if row.patient_id == patient_id
            and (measurement_type is None or row.type == measurement_type)
            and (since is None or row.timestamp >= since)
            and (until is None or row.timestamp <= until)
        ]
        rows.sort(key=lambda row: (row.timestamp, row.id), reverse=newest_first)
        rows = rows[offset:]
        return rows if limit is None else rows[:limit]

    async def latest_measurement(
        self, patient_id: int, measurement_type: str
    ) -> Optional[Measurement]:
        rows = await self.list_measurements(patient_id, measurement_type, limit=1)
        return rows[0] if rows else None

    async def add_measurement(self, measurement: Measurement) -> Optional[Measurement]:
        if measurement.external_id is not None:
            existing = await self.get_measurement_by_external_id(
                measurement.source, measurement.external_id
            )
            if existing is not None:
                return None
        if measurement.created_at is None:
            measurement.created_at = self.store.clock()
        return self._stage("measurements", measurement)

    async def add_interaction(self, log: InteractionLog) -> InteractionLog:
        if log.timestamp is None:
            log.timestamp = self.store.clock()
        if log.metadata_ is None:
            log.metadata_ = {}
        return self._stage("interaction_logs", log)

    # locking

    async def acquire_lock(self, namespace: str, *key: object) -> None:
        name = ":".join([namespace, *(str(part) for part in key)])
        if name in self._held:
            return
        await self.store._locks.acquire(name)
        self._held.append(name)

    # alerts

    async def get_open_alert(self, patient_id: int, rule_id: str) -> Optional[Alert]:
        await _checkpoint()
        for row in self._rows("alerts"):
            if (
                row.patient_id == patient_id
                and row.rule_id == rule_id
                and row.is_open
            ):
                return row
        return None

    async def get_alert(self, alert_id: int) -> Optional[Alert]:
        await _checkpoint()
        for row in self._rows("alerts"):
            if row.id == alert_id:
                return row
        return None

    async def add_alert(self, alert: Alert) -> Alert:
        now = self.store.clock()
        if alert.status is None:
            alert.status = AlertStatus.OPEN.value
        alert.created_at = alert.created_at or now
        alert.updated_at = alert.updated_at or now
        return self._stage("alerts", alert)

    async def update_alert(self, alert: Alert, **values: object) -> Alert:
        self._updates.append((alert, dict(values)))
        return alert

    async def list_alerts(
        self,
        patient_ids: Sequence[int],
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        by_severity: bool = False,
    ) -> list[Alert]:
        await _checkpoint()
        wanted = set(patient_ids)
        rows = [
            row
            for row in self._rows("alerts")
            if row.patient_id in wanted and (status is None or row.status == status)
        ]
        if by_severity:
            rows.sort(
                key=lambda row: (row.severity_rank, row.triggered_at),
                reverse=True,
            )
        else:
            rows.sort(key=lambda row: (row.triggered_at, row.id), reverse=True)
        return rows[offset : offset + limit]

    # directory

    async def get_primary_contact(self, patient_id: int) -> Optional[RecipientContact]:
        await _checkpoint()
        enrollments = sorted(
            (
                row
                for row in self.store.tables["enrollments"]
                if row.patient_id == patient_id
                and row.status == EnrollmentStatus.ACTIVE
                and row.is_primary
            ),
            key=lambda row: row.id,
        )
        if not enrollments:
            return None
        enrollment = enrollments[0]
        clinician = self.store.find("clinicians", enrollment.clinician_id)
        patient = self.store.find("patients", patient_id)
        if clinician is None or patient is None:
            return None
        return RecipientContact(
            clinician_id=clinician.id,
            clinician_name=clinician.name,
            clinician_email=clinician.email,
            patient_id=patient.id,
            patient_name=patient.name,
        )

    async def get_enrollment(self, patient_id: int, clinician_id: int) -> Optional[Enrollment]:
        await _checkpoint()
        for row in self.store.tables["enrollments"]:
            if row.patient_id == patient_id and row.clinician_id == clinician_id:
                return row
        return None

    async def list_enrolled_patient_ids(self, clinician_id: int) -> list[int]:
        await _checkpoint()
        return [
            row.patient_id
            for row in self.store.tables["enrollments"]
            if row.clinician_id == clinician_id and row.status == EnrollmentStatus.ACTIVE
        ]

    # notifications

    async def get_preferences(self, clinician_id: int) -> Optional[NotificationPreference]:
        await _checkpoint()
        for row in self._rows("notification_preferences"):
            if row.clinician_id == clinician_id:
                return row
        return None

    async def add_preferences(self, preferences: NotificationPreference) -> NotificationPreference:
        now = self.store.clock()
        preferences.created_at = preferences.created_at or now
        preferences.updated_at = preferences.updated_at or now
        return self._stage("notification_preferences", preferences)

    async def update_preferences(
        self, preferences: NotificationPreference, **values: object
    ) -> NotificationPreference:
        self._updates.append((preferences, {**values, "updated_at": self.store.clock()}))
        return preferences

    async def has_sent_notification_since(
        self, clinician_id: int, patient_id: int, since: datetime
    ) -> bool:
        await _checkpoint()
        return any(
            row.clinician_id == clinician_id
            and row.patient_id == patient_id
            and row.status == NotificationStatus.SENT
            and row.sent_at > since
            for row in self._rows("notification_logs")
        )

    async def add_notification_log(self, log: NotificationLog) -> NotificationLog:
        if log.sent_at is None:
            log.sent_at = self.store.clock()
        return self._stage("notification_logs", log)

    async def list_notification_logs(
        self,
        patient_id: Optional[int] = None,
        alert_id: Optional[int] = None,
    ) -> list[NotificationLog]:
        await _checkpoint()
        return [
            row
            for row in self._rows("notification_logs")
            if (patient_id is None or row.patient_id == patient_id)
            and (alert_id is None or row.alert_id == alert_id)
        ]


class InMemoryStore:
    """Dictionary-backed store for tests and local runs without PostgreSQL."""

    TABLES = (
        "patients",
        "clinicians",
        "enrollments",
        "measurements",
        "interaction_logs",
        "alerts",
        "notification_logs",
        "notification_preferences",
    )

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self.clock = clock
        self.tables: dict[str, list[Any]] = {name: [] for name in self.TABLES}
        self._ids = {name: itertools.count(1) for name in self.TABLES}
        self._locks = _KeyedLocks()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryUnitOfWork]:
        uow = InMemoryUnitOfWork(self)
        try:
            yield uow
            uow.commit()
        finally:
            uow.release_locks()

    def find(self, table: str, row_id: int) -> Any:
        for row in self.tables[table]:
            if row.id == row_id:
                return row
        return None

    @property
    def held_lock_count(self) -> int:
        return len(self._locks)

    # seeding helpers; the directory is owned by another service in production

    def add_patient(self, name: str, email: str | None = None) -> Patient:
        patient = Patient(id=next(self._ids["patients"]), name=name, email=email)
        self.tables["patients"].append(patient)
        return patient

    def add_clinician(self, name: str, email: str) -> Clinician:
        clinician = Clinician(id=next(self._ids["clinicians"]), name=name, email=email)
        self.tables["clinicians"].append(clinician)
        return clinician

    def enroll(
        self,
        patient: Patient,
        clinician: Clinician,
        *,
        is_primary: bool = True,
        status: EnrollmentStatus = EnrollmentStatus.ACTIVE,
    ) -> Enrollment:
        enrollment = Enrollment(
            id=next(self._ids["enrollments"]),
            patient_id=patient.id,
            clinician_id=clinician.id,
            status=status.value,
            is_primary=is_primary,
            enrolled_at=self.clock(),
        )
        self.tables["enrollments"].append(enrollment)
        return enrollment
