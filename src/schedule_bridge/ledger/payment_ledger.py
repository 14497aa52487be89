"""
Payment ledger: the destination-side state machine for scheduled payments.

The ledger owns the canonical record of every scheduled payment, its timing
and its execution status. All mutating calls complete or fail synchronously
and a failed call leaves no partial state behind.
"""

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation

from ..clock import Clock, SystemClock
from ..errors import AlreadyExecuted, InvalidArgument, NotFound, NotReady
from ..models import BRIDGE_SENDER, LedgerEvent, OriginKey, ScheduledPayment
from ..scheduler import FeeEstimate, NativeScheduler, Priority
from .readiness import is_ready, seconds_until_ready

logger = logging.getLogger(__name__)

# UFix64 has eight fractional digits and a fixed upper bound
UFIX64_QUANTUM = Decimal("0.00000001")
UFIX64_MAX = Decimal("184467440737.09551615")


def to_ufix64(value: int | str | Decimal, name: str = "value") -> Decimal:
    """Convert a number to a non-negative UFix64-compatible Decimal.

    Raises:
        InvalidArgument: If the value is not a number, negative or out of range
    """
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidArgument(f"{name} must be numeric, got {value!r}") from None

    if not amount.is_finite() or amount < 0:
        raise InvalidArgument(f"{name} must be non-negative, got {value}")
    if amount > UFIX64_MAX:
        raise InvalidArgument(f"{name} exceeds UFix64 range, got {value}")
    if amount != amount.quantize(UFIX64_QUANTUM):
        raise InvalidArgument(f"{name} has more than 8 fractional digits, got {value}")
    return amount.quantize(UFIX64_QUANTUM)


@dataclass(frozen=True, slots=True)
class ExecutionEstimate:
    """Read-only readiness preview for a scheduled payment."""
    payment_id: int
    ready: bool
    executed: bool
    scheduled_time: int
    seconds_remaining: int
    fee: FeeEstimate | None = None


class PaymentLedger:
    """Destination ledger holding scheduled payments.

    Identifiers come from a counter advanced only inside mutating calls,
    which the host ledger serializes; no additional locking is required.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        native_scheduler: NativeScheduler | None = None,
        transfer: Callable[[ScheduledPayment], None] | None = None,
        priority: Priority = Priority.MEDIUM,
        execution_effort: int = 1000,
    ) -> None:
        """
        Initialize the ledger.

        Args:
            clock: Destination ledger clock (system time when omitted)
            native_scheduler: Optional native execution capability
            transfer: Optional transfer primitive run before a payment is marked executed
            priority: Priority used when registering with the native scheduler
            execution_effort: Execution effort used with the native scheduler
        """
        self.clock = clock or SystemClock()
        self.native_scheduler = native_scheduler
        self.transfer = transfer
        self.priority = priority
        self.execution_effort = execution_effort

        self._payments: dict[int, ScheduledPayment] = {}
        self._origin_index: dict[OriginKey, int] = {}
        self._next_id = 1
        self.events: list[LedgerEvent] = []

    @property
    def next_id(self) -> int:
        return self._next_id

    def schedule_payment(
        self,
        recipient: str,
        amount: int | str | Decimal,
        delay_seconds: int | str | Decimal,
        origin_key: OriginKey | None = None,
    ) -> int:
        """
        Schedule a payment to become executable after ``delay_seconds``.

        When ``origin_key`` was already used, the id of the existing payment
        is returned and nothing is stored or emitted.

        Returns:
            The payment id

        Raises:
            InvalidArgument: On an empty recipient or a negative amount or delay
        """
        if not recipient:
            raise InvalidArgument("recipient must not be empty")
        value = to_ufix64(amount, "amount")
        delay = to_ufix64(delay_seconds, "delaySeconds")

        if origin_key is not None and (existing := self._origin_index.get(origin_key)) is not None:
            logger.info(f"Origin {origin_key} already scheduled as payment {existing}, ignoring replay")
            return existing

        now = self.clock.now()
        payment_id = self._next_id
        # a payment is never ready before now + delay
        scheduled_time = now + math.ceil(delay)

        handle = None
        if self.native_scheduler is not None:
            handle = self.native_scheduler.schedule(
                payment_id=payment_id,
                timestamp=scheduled_time,
                priority=self.priority,
                execution_effort=self.execution_effort,
            ).id

        self._payments[payment_id] = ScheduledPayment(
            id=payment_id,
            sender=BRIDGE_SENDER,
            recipient=recipient,
            amount=value,
            scheduled_time=scheduled_time,
            created_at=now,
            origin_key=origin_key,
            handle=handle,
        )
        if origin_key is not None:
            self._origin_index[origin_key] = payment_id
        self._next_id += 1

        self.events.append(LedgerEvent("PaymentScheduled", {
            "id": payment_id,
            "recipient": recipient,
            "amount": value,
            "scheduledTime": scheduled_time,
            "originKey": str(origin_key) if origin_key else None,
        }))
        logger.info(f"Payment {payment_id} scheduled: {value} to {recipient} at {scheduled_time}")
        return payment_id

    def execute_payment(self, payment_id: int) -> None:
        """
        Execute a scheduled payment once its scheduled time has been reached.

        Raises:
            NotFound: If no payment has this id
            AlreadyExecuted: If the payment was already executed
            NotReady: If the scheduled time has not been reached
        """
        payment = self._payments.get(payment_id)
        if payment is None:
            raise NotFound("Payment", payment_id)
        if payment.executed:
            raise AlreadyExecuted(payment_id)

        now = self.clock.now()
        if not is_ready(payment, now):
            raise NotReady(payment_id, payment.scheduled_time, now)

        # Transfer runs first so that a failed transfer leaves the payment unexecuted
        if self.transfer is not None:
            self.transfer(replace(payment))

        payment.executed = True
        payment.executed_at = now
        self.events.append(LedgerEvent("PaymentExecuted", {"id": payment_id, "success": True}))
        logger.info(f"Payment {payment_id} executed at {now}")

    def get_scheduled_payment(self, payment_id: int) -> ScheduledPayment | None:
        payment = self._payments.get(payment_id)
        return replace(payment) if payment else None

    def get_all_scheduled_payments(self) -> dict[int, ScheduledPayment]:
        return {payment_id: replace(payment) for payment_id, payment in self._payments.items()}

    def find_by_origin_key(self, origin_key: OriginKey) -> ScheduledPayment | None:
        payment_id = self._origin_index.get(origin_key)
        return self.get_scheduled_payment(payment_id) if payment_id is not None else None

    def ready_payments(self) -> list[int]:
        """Ids of payments that are executable right now."""
        now = self.clock.now()
        return [
            payment_id for payment_id, payment in self._payments.items()
            if not payment.executed and is_ready(payment, now)
        ]

    def estimate(self, payment_id: int) -> ExecutionEstimate:
        """
        Preview whether a payment can be executed, without side effects.

        Callers can poll this instead of speculatively calling
        ``execute_payment`` and handling ``NotReady``.

        Raises:
            NotFound: If no payment has this id
        """
        payment = self._payments.get(payment_id)
        if payment is None:
            raise NotFound("Payment", payment_id)

        now = self.clock.now()
        fee = None
        if self.native_scheduler is not None and not payment.executed:
            fee = self.native_scheduler.estimate_fee(
                max(payment.scheduled_time, now), self.priority, self.execution_effort
            )

        return ExecutionEstimate(
            payment_id=payment_id,
            ready=not payment.executed and is_ready(payment, now),
            executed=payment.executed,
            scheduled_time=payment.scheduled_time,
            seconds_remaining=seconds_until_ready(payment, now),
            fee=fee,
        )
