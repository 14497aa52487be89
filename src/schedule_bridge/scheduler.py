"""
Native scheduled-execution capability of the destination ledger.

The payment ledger can register each payment with the ledger's own
time-locked execution facility. The capability exposes two operations,
``estimate_fee`` and ``schedule``, and comes in two implementations: a
deterministic in-memory double and a Flow-backed one that goes through the
Flow CLI. The ledger logic does not depend on which one is wired in.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import IntEnum
from typing import Any, Protocol

from .clients.flow_cli import FlowCli, cadence_arg, find_event, script_value
from .clock import Clock, SystemClock
from .errors import InvalidArgument, PermanentError

logger = logging.getLogger(__name__)

FEE_QUANTUM = Decimal("0.00000001")


class Priority(IntEnum):
    """Execution priority, in the order the destination ledger defines it."""
    HIGH = 0
    MEDIUM = 1
    LOW = 2


@dataclass(frozen=True, slots=True)
class FeeEstimate:
    """Result of a fee estimate.

    Attributes:
        fee: Estimated fee, or None when the request would be rejected
        timestamp: Timestamp the execution would be scheduled for
        error: Reason the request would be rejected, if any
    """
    fee: Decimal | None
    timestamp: int | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class ScheduleHandle:
    """Handle returned when a payment is registered for native execution."""
    id: int
    payment_id: int
    timestamp: int
    priority: Priority
    execution_effort: int
    fee: Decimal


class NativeScheduler(Protocol):
    def estimate_fee(self, timestamp: int, priority: Priority, execution_effort: int) -> FeeEstimate:
        ...

    def schedule(
        self,
        payment_id: int,
        timestamp: int,
        priority: Priority,
        execution_effort: int,
    ) -> ScheduleHandle:
        ...


class InMemoryNativeScheduler:
    """Deterministic native scheduler used in tests and local simulations."""

    BASE_FEE = Decimal("0.0001")
    EFFORT_FEE = Decimal("0.0000001")
    PRIORITY_MULTIPLIER = {
        Priority.HIGH: Decimal(10),
        Priority.MEDIUM: Decimal(5),
        Priority.LOW: Decimal(2),
    }
    MIN_EFFORT = 10
    MAX_EFFORT = 9999

    def __init__(self, clock: Clock | None = None) -> None:
        self.clock = clock or SystemClock()
        self.handles: dict[int, ScheduleHandle] = {}
        self._next_handle = 1

    def estimate_fee(self, timestamp: int, priority: Priority, execution_effort: int) -> FeeEstimate:
        if timestamp < self.clock.now():
            return FeeEstimate(fee=None, timestamp=None, error="Invalid timestamp: must not be in the past")
        if not self.MIN_EFFORT <= execution_effort <= self.MAX_EFFORT:
            return FeeEstimate(
                fee=None,
                timestamp=None,
                error=f"Invalid execution effort: must be between {self.MIN_EFFORT} and {self.MAX_EFFORT}",
            )

        fee = (self.BASE_FEE + self.EFFORT_FEE * execution_effort) * self.PRIORITY_MULTIPLIER[priority]
        return FeeEstimate(fee=fee.quantize(FEE_QUANTUM), timestamp=timestamp)

    def schedule(
        self,
        payment_id: int,
        timestamp: int,
        priority: Priority,
        execution_effort: int,
    ) -> ScheduleHandle:
        estimate = self.estimate_fee(timestamp, priority, execution_effort)
        if not estimate.ok:
            raise InvalidArgument(estimate.error)

        handle = ScheduleHandle(
            id=self._next_handle,
            payment_id=payment_id,
            timestamp=timestamp,
            priority=priority,
            execution_effort=execution_effort,
            fee=estimate.fee,
        )
        self.handles[handle.id] = handle
        self._next_handle += 1
        return handle


class FlowNativeScheduler:
    """Native scheduler backed by the Flow transaction scheduler via the Flow CLI."""

    def __init__(
        self,
        cli: FlowCli,
        estimate_script: str = "cadence/scripts/EstimateScheduleFee.cdc",
        schedule_transaction: str = "cadence/transactions/ScheduleNativeExecution.cdc",
    ) -> None:
        self.cli = cli
        self.estimate_script = estimate_script
        self.schedule_transaction = schedule_transaction

    def estimate_fee(self, timestamp: int, priority: Priority, execution_effort: int) -> FeeEstimate:
        args = [
            cadence_arg("UFix64", timestamp),
            cadence_arg("UInt8", int(priority)),
            cadence_arg("UInt64", execution_effort),
        ]
        result = self.cli.run(self.cli.script_command(self.estimate_script, args))
        decoded: dict[str, Any] = script_value(result) or {}

        if error := decoded.get("error"):
            return FeeEstimate(fee=None, timestamp=None, error=str(error))

        fee = decoded.get("flowFee")
        estimated_at = decoded.get("timestamp")
        return FeeEstimate(
            fee=Decimal(fee) if fee is not None else None,
            timestamp=int(estimated_at) if estimated_at is not None else None,
        )

    def schedule(
        self,
        payment_id: int,
        timestamp: int,
        priority: Priority,
        execution_effort: int,
    ) -> ScheduleHandle:
        estimate = self.estimate_fee(timestamp, priority, execution_effort)
        if not estimate.ok:
            raise InvalidArgument(estimate.error)

        args = [
            cadence_arg("UInt64", payment_id),
            cadence_arg("UFix64", timestamp),
            cadence_arg("UInt8", int(priority)),
            cadence_arg("UInt64", execution_effort),
        ]
        result = self.cli.run(self.cli.transaction_command(self.schedule_transaction, args))

        scheduled = find_event(result, "Scheduled")
        if not scheduled or "id" not in scheduled:
            raise PermanentError(
                f"Native scheduling of payment {payment_id} sealed without a Scheduled event"
            )

        logger.info(f"Payment {payment_id} registered for native execution, handle {scheduled['id']}")
        return ScheduleHandle(
            id=int(scheduled["id"]),
            payment_id=payment_id,
            timestamp=timestamp,
            priority=priority,
            execution_effort=execution_effort,
            fee=estimate.fee or Decimal(0),
        )
