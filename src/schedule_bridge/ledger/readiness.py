"""Readiness gate: decides when a scheduled payment may be executed."""

from ..models import ScheduledPayment


def is_ready(payment: ScheduledPayment, now: int) -> bool:
    """Return True once the destination clock has reached the scheduled time."""
    return now >= payment.scheduled_time


def seconds_until_ready(payment: ScheduledPayment, now: int) -> int:
    """Seconds left before the payment becomes executable (0 when ready)."""
    return max(0, payment.scheduled_time - now)
