"""Duplicate detection for incoming measurements.

Device readings carry a vendor identifier and are matched on
``(source, external_id)``. Manual entries (and device readings without an
identifier) are matched heuristically: same patient, type and source, taken
within a few minutes of each other, with nearly the same value.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from nephrawn.config import settings
from nephrawn.models import MANUAL_SOURCE, Measurement
from nephrawn.services.store import UnitOfWork

logger = logging.getLogger("nephrawn.dedup")


@dataclass(frozen=True)
class DedupPolicy:
    window: timedelta
    relative_tolerance: float
    absolute_tolerance: float

    @classmethod
    def from_settings(cls) -> "DedupPolicy":
        return cls(
            window=timedelta(minutes=settings.dedup_window_minutes),
            relative_tolerance=settings.dedup_relative_tolerance,
            absolute_tolerance=settings.dedup_absolute_tolerance,
        )

    def tolerance_for(self, existing_value: float) -> float:
        return max(abs(existing_value) * self.relative_tolerance, self.absolute_tolerance)

    def values_match(self, existing_value: float, candidate_value: float) -> bool:
        return abs(existing_value - candidate_value) <= self.tolerance_for(existing_value)


async def find_duplicate(
    uow: UnitOfWork,
    *,
    patient_id: int,
    measurement_type: str,
    value: float,
    timestamp: datetime,
    source: str = MANUAL_SOURCE,
    external_id: Optional[str] = None,
    policy: Optional[DedupPolicy] = None,
) -> Optional[Measurement]:
    """Return an existing measurement equivalent to the candidate, if any.

    ``value`` must already be canonical. Reads only; never writes.
    """
    policy = policy or DedupPolicy.from_settings()
    if external_id is not None and source != MANUAL_SOURCE:
        existing = await uow.get_measurement_by_external_id(source, external_id)
        if existing is not None:
            logger.debug(
                "Device reading %s/%s already stored as measurement %s",
                source,
                external_id,
                existing.id,
            )
        return existing

    candidates = await uow.find_measurements_in_window(
        patient_id,
        measurement_type,
        source,
        timestamp - policy.window,
        timestamp + policy.window,
    )
    for existing in candidates:
        if policy.values_match(existing.value, value):
            logger.debug(
                "Measurement for patient %s matches existing %s (%s vs %s)",
                patient_id,
                existing.id,
                existing.value,
                value,
            )
            return existing
    return None
