"""Relay service: origin events in, destination payments out."""

from .alerts import FailureReport, OperatorAlerts
from .cursor import RelayCursor
from .event_processor import EventProcessor
from .relayer import ScheduleRelayer
from .submitter import PaymentSubmitter

__all__ = [
    "EventProcessor",
    "FailureReport",
    "OperatorAlerts",
    "PaymentSubmitter",
    "RelayCursor",
    "ScheduleRelayer",
]
