"""
Schedule bridge package.

Cross-ledger scheduled payments: requests made on an EVM origin chain are
relayed into a payment ledger on Flow and executed once their time arrives.
"""

from .config import RelayerConfig
from .ledger import OriginEmitter, PaymentLedger
from .models import OriginKey, ScheduledPayment, ScheduleRequest, ScheduleRequestedEvent
from .relay import ScheduleRelayer

__all__ = [
    "OriginEmitter",
    "OriginKey",
    "PaymentLedger",
    "RelayerConfig",
    "ScheduledPayment",
    "ScheduleRelayer",
    "ScheduleRequest",
    "ScheduleRequestedEvent",
]
__version__ = "0.1.0"
