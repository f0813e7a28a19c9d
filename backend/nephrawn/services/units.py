"""Canonical units and conversions for measurement types.

Every measurement is stored in the canonical unit of its type. Conversion
happens once, at ingestion; display conversion is the inverse and never
fails.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from nephrawn.errors import UnsupportedTypeError, UnsupportedUnitError, ValueOutOfRangeError
from nephrawn.models import MeasurementType

CANONICAL_PRECISION = 4
DISPLAY_PRECISION = 2

KG_PER_LB = 0.453592

CANONICAL_UNITS: dict[MeasurementType, str] = {
    MeasurementType.WEIGHT: "kg",
    MeasurementType.BP_SYSTOLIC: "mmHg",
    MeasurementType.BP_DIASTOLIC: "mmHg",
    MeasurementType.SPO2: "%",
    MeasurementType.HEART_RATE: "bpm",
    MeasurementType.FAT_FREE_MASS: "kg",
    MeasurementType.FAT_RATIO: "%",
    MeasurementType.FAT_MASS: "kg",
    MeasurementType.MUSCLE_MASS: "kg",
    MeasurementType.HYDRATION: "kg",
    MeasurementType.BONE_MASS: "kg",
    MeasurementType.PULSE_WAVE_VELOCITY: "m/s",
}

# Frontend defaults (US)
DISPLAY_UNITS: dict[MeasurementType, str] = {
    **CANONICAL_UNITS,
    MeasurementType.WEIGHT: "lbs",
}

Conversion = Callable[[float], float]


def _identity(value: float) -> float:
    return value


def _lb_to_kg(value: float) -> float:
    return value * KG_PER_LB


def _kg_to_lb(value: float) -> float:
    return value / KG_PER_LB


_MASS_UNITS: dict[str, Conversion] = {
    "kg": _identity,
    "kgs": _identity,
    "lbs": _lb_to_kg,
    "lb": _lb_to_kg,
    "pounds": _lb_to_kg,
}
_PRESSURE_UNITS: dict[str, Conversion] = {"mmhg": _identity}
_PERCENT_UNITS: dict[str, Conversion] = {"%": _identity, "percent": _identity}
_RATE_UNITS: dict[str, Conversion] = {"bpm": _identity, "beats/min": _identity}

# Keys are lower-cased; lookups normalize the submitted unit first.
_TO_CANONICAL: dict[MeasurementType, dict[str, Conversion]] = {
    MeasurementType.WEIGHT: _MASS_UNITS,
    MeasurementType.BP_SYSTOLIC: _PRESSURE_UNITS,
    MeasurementType.BP_DIASTOLIC: _PRESSURE_UNITS,
    MeasurementType.SPO2: _PERCENT_UNITS,
    MeasurementType.HEART_RATE: _RATE_UNITS,
    MeasurementType.FAT_FREE_MASS: _MASS_UNITS,
    MeasurementType.FAT_RATIO: _PERCENT_UNITS,
    MeasurementType.FAT_MASS: _MASS_UNITS,
    MeasurementType.MUSCLE_MASS: _MASS_UNITS,
    MeasurementType.HYDRATION: _MASS_UNITS,
    MeasurementType.BONE_MASS: _MASS_UNITS,
    MeasurementType.PULSE_WAVE_VELOCITY: {"m/s": _identity},
}

_INVERSE: dict[Conversion, Conversion] = {_identity: _identity, _lb_to_kg: _kg_to_lb}

# Every accepted input alias is also a valid display unit.
_FROM_CANONICAL: dict[MeasurementType, dict[str, Conversion]] = {
    measurement_type: {alias: _INVERSE[convert] for alias, convert in conversions.items()}
    for measurement_type, conversions in _TO_CANONICAL.items()
}

# Clinically plausible bounds in canonical units; anything outside is a typo
# or a device fault rather than a reading.
PLAUSIBLE_RANGES: dict[MeasurementType, tuple[float, float]] = {
    MeasurementType.WEIGHT: (20.0, 500.0),
    MeasurementType.BP_SYSTOLIC: (40.0, 300.0),
    MeasurementType.BP_DIASTOLIC: (20.0, 200.0),
    MeasurementType.SPO2: (50.0, 100.0),
    MeasurementType.HEART_RATE: (20.0, 300.0),
    MeasurementType.FAT_FREE_MASS: (0.0, 500.0),
    MeasurementType.FAT_RATIO: (0.0, 100.0),
    MeasurementType.FAT_MASS: (0.0, 500.0),
    MeasurementType.MUSCLE_MASS: (0.0, 500.0),
    MeasurementType.HYDRATION: (0.0, 500.0),
    MeasurementType.BONE_MASS: (0.0, 50.0),
    MeasurementType.PULSE_WAVE_VELOCITY: (0.0, 50.0),
}


@dataclass(frozen=True)
class CanonicalValue:
    value: float
    unit: str
    converted_from: str | None = None


def _normalize_unit(unit: str) -> str:
    return unit.strip().lower()


def parse_measurement_type(measurement_type: str | MeasurementType) -> MeasurementType:
    """Resolve a type name, raising ``UnsupportedTypeError`` for unknown names."""
    if isinstance(measurement_type, MeasurementType):
        return measurement_type
    try:
        return MeasurementType(str(measurement_type).strip().upper())
    except ValueError:
        raise UnsupportedTypeError(str(measurement_type)) from None


def accepted_units(measurement_type: str | MeasurementType) -> list[str]:
    """Units accepted on input for a type (lower-cased)."""
    return list(_TO_CANONICAL[parse_measurement_type(measurement_type)])


def is_valid_unit(measurement_type: str | MeasurementType, unit: str) -> bool:
    try:
        resolved = parse_measurement_type(measurement_type)
    except UnsupportedTypeError:
        return False
    return _normalize_unit(unit) in _TO_CANONICAL[resolved]


def to_canonical(
    measurement_type: str | MeasurementType,
    value: float,
    unit: str,
) -> CanonicalValue:
    """Convert an input value to the canonical unit of its type.

    Unit matching is trimmed and case-insensitive. The result is rounded to
    four decimals so repeated conversions do not accumulate float drift.

    Raises:
        UnsupportedTypeError: the type is not a known measurement type.
        UnsupportedUnitError: the unit is not accepted for the type.
    """
    resolved = parse_measurement_type(measurement_type)
    conversions = _TO_CANONICAL[resolved]
    normalized = _normalize_unit(unit)
    converter = conversions.get(normalized)
    if converter is None:
        raise UnsupportedUnitError(resolved.value, unit, list(conversions))

    canonical_unit = CANONICAL_UNITS[resolved]
    converted_from = None if normalized == canonical_unit.lower() else unit.strip()
    return CanonicalValue(
        value=round(converter(float(value)), CANONICAL_PRECISION),
        unit=canonical_unit,
        converted_from=converted_from,
    )


def from_canonical(
    measurement_type: str | MeasurementType,
    value: float,
    display_unit: str,
) -> float:
    """Convert a canonical value to a display unit, rounded to two decimals.

    Unknown types or display units return the canonical value unchanged.
    """
    try:
        resolved = parse_measurement_type(measurement_type)
    except UnsupportedTypeError:
        return value
    converter = _FROM_CANONICAL[resolved].get(_normalize_unit(display_unit))
    if converter is None:
        return value
    return round(converter(float(value)), DISPLAY_PRECISION)


def check_plausible(measurement_type: str | MeasurementType, value: float) -> None:
    """Reject canonical values outside the plausible range for the type."""
    resolved = parse_measurement_type(measurement_type)
    low, high = PLAUSIBLE_RANGES[resolved]
    if not low <= value <= high:
        raise ValueOutOfRangeError(resolved.value, value, low, high, CANONICAL_UNITS[resolved])


def to_display(
    measurement_type: str | MeasurementType,
    value: float,
    display_unit: str | None = None,
) -> tuple[float, str]:
    """Value and unit for charts and lists.

    Defaults to ``DISPLAY_UNITS``; a unit the type does not accept falls back
    to the canonical unit.
    """
    resolved = parse_measurement_type(measurement_type)
    unit = (display_unit or DISPLAY_UNITS[resolved]).strip()
    if not is_valid_unit(resolved, unit):
        unit = CANONICAL_UNITS[resolved]
    return from_canonical(resolved, value, unit), unit
