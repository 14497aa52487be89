"""
Destination ledger adapters used by the relay.

The relay only needs one write operation on the destination side, scheduling
a payment for an origin request. ``InMemoryDestination`` drives a local
``PaymentLedger``; ``FlowCliDestination`` sends the Cadence transaction
through the Flow CLI. Both report failures as ``TransientError`` or
``PermanentError``.
"""

import logging
from decimal import Decimal
from typing import Protocol

from ..errors import InvalidArgument, PermanentError
from ..ledger.payment_ledger import PaymentLedger
from ..models import OriginKey
from .flow_cli import FlowCli, cadence_arg, find_event, script_value

logger = logging.getLogger(__name__)


class DestinationLedger(Protocol):
    async def schedule_payment(
        self,
        recipient: str,
        amount: int | Decimal,
        delay_seconds: int,
        origin_key: OriginKey,
    ) -> int:
        ...


class InMemoryDestination:
    """Destination adapter over an in-process ``PaymentLedger``."""

    def __init__(self, ledger: PaymentLedger) -> None:
        self.ledger = ledger

    async def schedule_payment(
        self,
        recipient: str,
        amount: int | Decimal,
        delay_seconds: int,
        origin_key: OriginKey,
    ) -> int:
        try:
            return self.ledger.schedule_payment(recipient, amount, delay_seconds, origin_key=origin_key)
        except InvalidArgument as e:
            raise PermanentError(f"Payment ledger rejected origin {origin_key}: {e}") from e


class FlowCliDestination:
    """Destination adapter that schedules payments on Flow through the Flow CLI."""

    def __init__(
        self,
        cli: FlowCli,
        schedule_transaction: str = "cadence/transactions/SchedulePaymentFromOrigin.cdc",
        lookup_script: str = "cadence/scripts/GetPaymentByOrigin.cdc",
    ) -> None:
        """
        Initialize the adapter.

        Args:
            cli: Configured Flow CLI wrapper
            schedule_transaction: Transaction taking origin address, origin id,
                recipient, amount and delay
            lookup_script: Script returning the payment id for an origin key, or nil
        """
        self.cli = cli
        self.schedule_transaction = schedule_transaction
        self.lookup_script = lookup_script

    async def schedule_payment(
        self,
        recipient: str,
        amount: int | Decimal,
        delay_seconds: int,
        origin_key: OriginKey,
    ) -> int:
        """
        Submit the schedule transaction and return the destination payment id.

        Raises:
            TransientError: If the CLI timed out or the access node was unreachable
            PermanentError: If the transaction was rejected or no id can be found
        """
        args = [
            cadence_arg("String", origin_key.contract_address),
            cadence_arg("UInt64", origin_key.origin_id),
            cadence_arg("String", recipient),
            cadence_arg("UFix64", Decimal(amount)),
            cadence_arg("UFix64", delay_seconds),
        ]
        result = await self.cli.run_async(self.cli.transaction_command(self.schedule_transaction, args))

        if result.get("id"):
            logger.debug(f"Flow transaction {result['id']} sealed for origin {origin_key}")

        scheduled = find_event(result, "PaymentScheduled")
        if scheduled and scheduled.get("id") is not None:
            return int(scheduled["id"])

        # A replayed origin key seals without an event; read the existing id back
        payment_id = await self.lookup_payment_id(origin_key)
        if payment_id is None:
            raise PermanentError(
                f"Schedule transaction for origin {origin_key} sealed without a PaymentScheduled event"
            )
        logger.info(f"Origin {origin_key} was already scheduled as payment {payment_id}")
        return payment_id

    async def lookup_payment_id(self, origin_key: OriginKey) -> int | None:
        """Return the payment id recorded for an origin key, or None."""
        args = [
            cadence_arg("String", origin_key.contract_address),
            cadence_arg("UInt64", origin_key.origin_id),
        ]
        result = await self.cli.run_async(self.cli.script_command(self.lookup_script, args))
        value = script_value(result)
        return int(value) if value is not None else None
