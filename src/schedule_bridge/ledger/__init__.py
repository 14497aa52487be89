"""
In-process ledger models: the origin emitter, the payment ledger and its
readiness gate.
"""

from .origin_emitter import BatchItemResult, OriginEmitter
from .payment_ledger import ExecutionEstimate, PaymentLedger
from .readiness import is_ready, seconds_until_ready

__all__ = [
    "BatchItemResult",
    "ExecutionEstimate",
    "OriginEmitter",
    "PaymentLedger",
    "is_ready",
    "seconds_until_ready",
]
