"""API Routes for Nephrawn."""

from nephrawn.api import alerts, health, measurements, preferences

__all__ = [
    "alerts",
    "health",
    "measurements",
    "preferences",
]
