"""Error taxonomy for the ingestion and alerting pipeline.

Input rejections subclass ``ValueError`` so callers that only care about
"bad input" can catch the builtin. Duplicates are not errors; they are a
successful outcome reported on the submit result.
"""


class MeasurementRejected(ValueError):
    """A submitted measurement was rejected before reaching the store."""

    code = "measurement_rejected"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.details = details


class UnsupportedTypeError(MeasurementRejected):
    code = "unsupported_type"

    def __init__(self, measurement_type: str):
        super().__init__(
            f"Unsupported measurement type: {measurement_type}",
            type=measurement_type,
        )


class UnsupportedUnitError(MeasurementRejected):
    code = "unsupported_unit"

    def __init__(self, measurement_type: str, unit: str, accepted: list[str]):
        super().__init__(
            f"Unsupported unit '{unit}' for {measurement_type}. "
            f"Accepted units: {', '.join(accepted)}",
            type=measurement_type,
            unit=unit,
            accepted=accepted,
        )


class ValueOutOfRangeError(MeasurementRejected):
    code = "value_out_of_range"

    def __init__(self, measurement_type: str, value: float, low: float, high: float, unit: str):
        super().__init__(
            f"{measurement_type} value {value:g} {unit} is outside the plausible "
            f"range {low:g}-{high:g} {unit}",
            type=measurement_type,
            value=value,
            min=low,
            max=high,
            unit=unit,
        )


class NaiveTimestampError(MeasurementRejected):
    code = "naive_timestamp"

    def __init__(self, timestamp):
        super().__init__(
            f"Timestamp {timestamp.isoformat()} has no UTC offset",
            timestamp=timestamp.isoformat(),
        )


class AlertNotFoundError(LookupError):
    def __init__(self, alert_id: int):
        super().__init__(f"Alert {alert_id} not found")
        self.alert_id = alert_id


class AlertTransitionError(Exception):
    """Raised when an alert cannot move to the requested status."""

    def __init__(self, alert_id: int, current: str, target: str, reason: str | None = None):
        message = f"Alert {alert_id} cannot move from {current} to {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.alert_id = alert_id
        self.current = current
        self.target = target
