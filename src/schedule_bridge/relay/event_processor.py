"""
Event processor for ScheduleRequested logs.

This module turns raw origin-chain logs into typed events, drops the ones the
relay already delivered or is delivering, and hands the rest to the payment
submitter. Submission itself lives in ``submitter``.
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from web3 import Web3
from web3.types import EventData

from ..models import ScheduleRequestedEvent
from .cursor import RelayCursor

logger = logging.getLogger(__name__)

REQUIRED_ARGS = ("originId", "recipient", "amount", "delaySeconds")


class EventProcessor:
    """Parses and deduplicates ScheduleRequested events."""

    def __init__(
        self,
        cursor: RelayCursor,
        enqueue: Callable[[ScheduleRequestedEvent], Awaitable[None]],
    ) -> None:
        """Initialize the event processor.

        Args:
            cursor: Shared relay cursor holding the seen and in-flight keys
            enqueue: Coroutine that queues an event for submission
        """
        self.cursor = cursor
        self.enqueue = enqueue

        self.received = 0
        self.duplicates = 0
        self.malformed = 0
        self.enqueued = 0

    async def process_schedule_requested(self, event: EventData) -> ScheduleRequestedEvent | None:
        """
        Process a ScheduleRequested event from the origin chain.

        Args:
            event: The ScheduleRequested event data

        Returns:
            ScheduleRequestedEvent if it was queued for submission, None if
            skipped as a duplicate or malformed
        """
        self.received += 1
        try:
            parsed = self.parse_event(event)
        except (KeyError, TypeError, ValueError) as e:
            self.malformed += 1
            logger.warning(f"Skipping malformed ScheduleRequested log: {e}")
            return None

        if not await self.cursor.claim(parsed.dedup_key):
            self.duplicates += 1
            logger.debug(f"Skipping already relayed {parsed}")
            return None

        logger.info(
            f"ScheduleRequested detected - TX: {parsed.transaction_hash[:10]}... "
            f"block={parsed.block_number} origin_id={parsed.origin_id}"
        )

        try:
            await self.enqueue(parsed)
        except BaseException:
            await self.cursor.release(parsed.dedup_key)
            raise

        self.enqueued += 1
        return parsed

    @staticmethod
    def parse_event(event: EventData) -> ScheduleRequestedEvent:
        """
        Build a typed event from a raw log.

        Raises:
            ValueError: If the transaction hash or a required argument is missing
        """
        match event.get('transactionHash'):
            case None:
                raise ValueError("event missing transaction hash")
            case bytes() as tx_hash_bytes:
                tx_hash = Web3.to_hex(tx_hash_bytes)
            case str() as tx_hash_str:
                tx_hash = tx_hash_str.lower() if tx_hash_str.startswith("0x") else "0x" + tx_hash_str.lower()
            case other:
                raise ValueError(f"unexpected transaction hash type: {type(other).__name__}")

        args: Mapping[str, Any] = event.get('args') or {}
        if missing := [name for name in REQUIRED_ARGS if name not in args]:
            raise ValueError(f"event missing args: {', '.join(missing)}")

        return ScheduleRequestedEvent(
            origin_id=int(args['originId']),
            recipient=str(args['recipient']),
            amount=int(args['amount']),
            delay_seconds=int(args['delaySeconds']),
            timestamp=int(args.get('timestamp', 0)),
            requester=str(args.get('requester', '0x0')),
            transaction_hash=tx_hash,
            block_number=int(event.get('blockNumber', 0)),
            log_index=int(event.get('logIndex', 0)),
            contract_address=str(event.get('address', '')),
        )

    def get_stats(self) -> dict[str, int]:
        """
        Get current processor statistics.

        Returns:
            Dictionary with event counters
        """
        return {
            'received': self.received,
            'duplicates': self.duplicates,
            'malformed': self.malformed,
            'enqueued': self.enqueued,
        }
