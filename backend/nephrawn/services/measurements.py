"""Measurement ingestion: normalize, deduplicate, store, then alert.

``submit_measurement`` is the single inbound operation. Rejections are
raised before any store access. Once the measurement is committed, alert
evaluation, alert upserts and notifications are best-effort: their failures
are logged and never change the result returned to the caller.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Optional

from nephrawn.errors import NaiveTimestampError
from nephrawn.logging import patient_id_var
from nephrawn.models import (
    MANUAL_SOURCE,
    InteractionLog,
    InteractionType,
    Measurement,
    MeasurementType,
)
from nephrawn.services.alerts import (
    AlertRuleEngine,
    AlertUpsertCoordinator,
    RuleMatch,
)
from nephrawn.services.dedup import DedupPolicy, find_duplicate
from nephrawn.services.notifications import NotificationDispatcher
from nephrawn.services.store import Store
from nephrawn.services.units import CanonicalValue, check_plausible, parse_measurement_type, to_canonical

logger = logging.getLogger("nephrawn.measurements")


@dataclass(frozen=True)
class SubmitResult:
    measurement: Measurement
    is_duplicate: bool
    converted_from: Optional[str] = None


@dataclass(frozen=True)
class BloodPressureResult:
    systolic: SubmitResult
    diastolic: SubmitResult

    @property
    def is_duplicate(self) -> bool:
        return self.systolic.is_duplicate or self.diastolic.is_duplicate


@dataclass(frozen=True)
class MeasurementCandidate:
    patient_id: int
    type: MeasurementType
    canonical: CanonicalValue
    source: str
    external_id: Optional[str]
    timestamp: datetime


class MeasurementService:
    def __init__(
        self,
        store: Store,
        dispatcher: Optional[NotificationDispatcher] = None,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
        dedup_policy: Optional[DedupPolicy] = None,
    ):
        self.store = store
        self.now = now
        self.dedup_policy = dedup_policy or DedupPolicy.from_settings()
        self.engine = AlertRuleEngine(store, now=now)
        self.coordinator = AlertUpsertCoordinator(store, now=now)
        self.dispatcher = dispatcher or NotificationDispatcher(store, now=now)

    def _prepare(
        self,
        patient_id: int,
        measurement_type: str | MeasurementType,
        value: float,
        unit: str,
        source: str,
        external_id: Optional[str],
        timestamp: Optional[datetime],
    ) -> MeasurementCandidate:
        resolved = parse_measurement_type(measurement_type)
        canonical = to_canonical(resolved, value, unit)
        check_plausible(resolved, canonical.value)
        if timestamp is not None and timestamp.utcoffset() is None:
            raise NaiveTimestampError(timestamp)
        return MeasurementCandidate(
            patient_id=patient_id,
            type=resolved,
            canonical=canonical,
            source=source or MANUAL_SOURCE,
            external_id=external_id,
            timestamp=timestamp or self.now(),
        )

    async def submit_measurement(
        self,
        patient_id: int,
        measurement_type: str | MeasurementType,
        value: float,
        unit: str,
        source: str = MANUAL_SOURCE,
        external_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> SubmitResult:
        """Ingest one reading.

        Raises:
            MeasurementRejected: unsupported type or unit, or implausible value.
        """
        candidate = self._prepare(
            patient_id, measurement_type, value, unit, source, external_id, timestamp
        )
        return await self._ingest(candidate)

    async def submit_blood_pressure(
        self,
        patient_id: int,
        systolic: float,
        diastolic: float,
        unit: str = "mmHg",
        source: str = MANUAL_SOURCE,
        timestamp: Optional[datetime] = None,
    ) -> BloodPressureResult:
        """Ingest a systolic/diastolic pair sharing one timestamp.

        Both values are validated before either is stored.
        """
        timestamp = timestamp or self.now()
        systolic_candidate = self._prepare(
            patient_id, MeasurementType.BP_SYSTOLIC, systolic, unit, source, None, timestamp
        )
        diastolic_candidate = self._prepare(
            patient_id, MeasurementType.BP_DIASTOLIC, diastolic, unit, source, None, timestamp
        )
        return BloodPressureResult(
            systolic=await self._ingest(systolic_candidate),
            diastolic=await self._ingest(diastolic_candidate),
        )

    async def list_measurements(
        self,
        patient_id: int,
        measurement_type: Optional[str | MeasurementType] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Measurement]:
        resolved = parse_measurement_type(measurement_type) if measurement_type else None
        async with self.store.transaction() as uow:
            return await uow.list_measurements(
                patient_id,
                resolved.value if resolved else None,
                since=since,
                until=until,
                limit=limit,
                offset=offset,
            )

    async def _ingest(self, candidate: MeasurementCandidate) -> SubmitResult:
        token = patient_id_var.set(candidate.patient_id)
        try:
            async with self.store.transaction() as uow:
                existing = await find_duplicate(
                    uow,
                    patient_id=candidate.patient_id,
                    measurement_type=candidate.type.value,
                    value=candidate.canonical.value,
                    timestamp=candidate.timestamp,
                    source=candidate.source,
                    external_id=candidate.external_id,
                    policy=self.dedup_policy,
                )
            if existing is not None:
                logger.info(
                    "Duplicate %s measurement; returning existing %s",
                    candidate.type.value,
                    existing.id,
                )
                return SubmitResult(measurement=existing, is_duplicate=True)

            measurement, created = await self.write(candidate)
            if not created:
                return SubmitResult(measurement=measurement, is_duplicate=True)

            logger.info(
                "Stored %s measurement %s (%s %s)",
                candidate.type.value,
                measurement.id,
                measurement.value,
                measurement.unit,
            )
            await self._run_alerts(candidate.patient_id, candidate.type)
            return SubmitResult(
                measurement=measurement,
                is_duplicate=False,
                converted_from=candidate.canonical.converted_from,
            )
        finally:
            patient_id_var.reset(token)

    async def write(self, candidate: MeasurementCandidate) -> tuple[Measurement, bool]:
        """Insert the measurement and its interaction log atomically.

        Returns the stored row and whether it was inserted. A device reading
        whose ``(source, external_id)`` was stored concurrently comes back as
        the existing row with ``False``.
        """
        async with self.store.transaction() as uow:
            stored = await uow.add_measurement(
                Measurement(
                    patient_id=candidate.patient_id,
                    type=candidate.type.value,
                    value=candidate.canonical.value,
                    unit=candidate.canonical.unit,
                    input_unit=candidate.canonical.converted_from,
                    source=candidate.source,
                    external_id=candidate.external_id,
                    timestamp=candidate.timestamp,
                )
            )
            if stored is None:
                existing = await uow.get_measurement_by_external_id(
                    candidate.source, candidate.external_id
                )
                return existing, False

            await uow.add_interaction(
                InteractionLog(
                    patient_id=candidate.patient_id,
                    interaction_type=InteractionType.PATIENT_MEASUREMENT.value,
                    metadata_={
                        "measurement_id": stored.id,
                        "type": candidate.type.value,
                        "source": candidate.source,
                    },
                    timestamp=self.now(),
                )
            )
        return stored, True

    async def _run_alerts(self, patient_id: int, measurement_type: MeasurementType) -> None:
        matches = await self.engine.evaluate(patient_id, measurement_type)
        for match in matches:
            await self._apply(patient_id, match)

    async def _apply(self, patient_id: int, match: RuleMatch) -> None:
        try:
            outcome = await self.coordinator.apply_trigger(patient_id, match.rule, match.trigger)
        except Exception:
            logger.exception("Failed to upsert alert for rule %s", match.rule.id)
            return
        if not outcome.created:
            return
        try:
            await self.dispatcher.notify_on_alert(outcome.alert.id)
        except Exception:
            logger.exception("Failed to dispatch notification for alert %s", outcome.alert.id)
