"""
Origin emitter: the origin-side schedule request contract.

Accepts schedule requests, assigns origin ids and keeps an append-only event
log. Every mutating call is one origin transaction mined into its own block,
and the log is served in web3 ``EventData`` shape so the relay reads this
emitter and a deployed contract through the same code path.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any

from web3 import Web3
from web3.datastructures import AttributeDict
from web3.types import HexBytes

from ..clock import Clock, SystemClock
from ..errors import (
    AlreadyBridged,
    ArgumentLengthMismatch,
    BridgeError,
    InvalidArgument,
    NotFound,
    Unauthorized,
)
from ..models import ScheduleRequest

logger = logging.getLogger(__name__)

SCHEDULE_REQUESTED = "ScheduleRequested"
SCHEDULE_BRIDGED = "ScheduleBridged"


@dataclass(frozen=True, slots=True)
class BatchItemResult:
    """Outcome of one element of a batch request."""
    index: int
    origin_id: int | None = None
    error: BridgeError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class OriginEmitter:
    """In-process origin ledger contract with a simulated block chain."""

    def __init__(
        self,
        relay_identity: str,
        clock: Clock | None = None,
        address: str | None = None,
        start_block: int = 0,
    ) -> None:
        """
        Initialize the emitter.

        Args:
            relay_identity: The only identity allowed to call mark_bridged
            clock: Origin ledger clock
            address: Contract address (derived deterministically when omitted)
            start_block: Block height before the first transaction
        """
        self.relay_identity = relay_identity
        self.clock = clock or SystemClock()
        self.address = Web3.to_checksum_address(
            address or "0x" + Web3.keccak(text="ScheduleEmitter").hex()[-40:]
        )

        self._requests: dict[int, ScheduleRequest] = {}
        self._next_origin_id = 1
        self._block_number = start_block
        self._nonce = 0
        self._logs: list[AttributeDict] = []

    @property
    def block_number(self) -> int:
        return self._block_number

    @property
    def request_count(self) -> int:
        return len(self._requests)

    def request_schedule(
        self,
        recipient: str,
        amount: int,
        delay_seconds: int,
        requester: str,
    ) -> int:
        """
        Record a schedule request and emit ScheduleRequested.

        Returns:
            The assigned origin id

        Raises:
            InvalidArgument: If recipient is empty or amount/delay are not positive
        """
        self._validate(recipient, amount, delay_seconds)
        tx_hash, block_number = self._new_transaction()
        return self._store_request(recipient, amount, delay_seconds, requester, tx_hash, block_number, 0)

    def request_schedule_batch(
        self,
        recipients: list[str],
        amounts: list[int],
        delays: list[int],
        requester: str,
    ) -> list[BatchItemResult]:
        """
        Record several schedule requests in one transaction.

        Elements are processed independently: a rejected element is reported
        in its result and does not undo the elements stored before it.

        Raises:
            ArgumentLengthMismatch: If the arrays differ in length or are empty
        """
        if not recipients or not len(recipients) == len(amounts) == len(delays):
            raise ArgumentLengthMismatch(
                f"Batch arrays must be non-empty and equal in length: "
                f"{len(recipients)} recipients, {len(amounts)} amounts, {len(delays)} delays"
            )

        tx_hash, block_number = self._new_transaction()
        results: list[BatchItemResult] = []
        log_index = 0
        for index, (recipient, amount, delay) in enumerate(zip(recipients, amounts, delays)):
            try:
                self._validate(recipient, amount, delay)
            except InvalidArgument as e:
                logger.warning(f"Batch element {index} rejected: {e}")
                results.append(BatchItemResult(index=index, error=e))
                continue

            origin_id = self._store_request(recipient, amount, delay, requester, tx_hash, block_number, log_index)
            log_index += 1
            results.append(BatchItemResult(index=index, origin_id=origin_id))

        return results

    def mark_bridged(self, origin_id: int, caller: str) -> None:
        """
        Flag a request as bridged and emit ScheduleBridged.

        Raises:
            Unauthorized: If caller is not the relay identity
            NotFound: If the origin id is unknown
            AlreadyBridged: If the request is already bridged (no event is emitted)
        """
        if caller.lower() != self.relay_identity.lower():
            raise Unauthorized(f"{caller} is not the authorized relay")

        request = self._requests.get(origin_id)
        if request is None:
            raise NotFound("Schedule request", origin_id)
        if request.bridged:
            raise AlreadyBridged(origin_id)

        request.bridged = True
        tx_hash, block_number = self._new_transaction()
        self._emit(SCHEDULE_BRIDGED, {"originId": origin_id}, tx_hash, block_number, 0)
        logger.info(f"Schedule request {origin_id} marked as bridged")

    def get_request(self, origin_id: int) -> ScheduleRequest | None:
        request = self._requests.get(origin_id)
        return replace(request) if request else None

    def get_all_requests(self) -> dict[int, ScheduleRequest]:
        return {origin_id: replace(request) for origin_id, request in self._requests.items()}

    def pending_requests(self) -> list[ScheduleRequest]:
        """Requests the relay has not yet confirmed."""
        return [replace(request) for request in self._requests.values() if not request.bridged]

    def get_logs(
        self,
        from_block: int,
        to_block: int,
        event_name: str = SCHEDULE_REQUESTED,
    ) -> list[AttributeDict]:
        """Return logs of one event type emitted in ``[from_block, to_block]``."""
        return [
            log for log in self._logs
            if log["event"] == event_name and from_block <= log["blockNumber"] <= to_block
        ]

    def reorg(self, depth: int) -> None:
        """
        Simulate a chain reorganisation of the last ``depth`` blocks.

        Transactions in the dropped blocks are re-included in new blocks with
        the same transaction hashes, as happens when a reorged transaction is
        picked up again from the mempool.
        """
        fork_point = self._block_number - depth
        dropped = [log for log in self._logs if log["blockNumber"] > fork_point]
        kept = [log for log in self._logs if log["blockNumber"] <= fork_point]

        remined: list[AttributeDict] = []
        block_for_tx: dict[bytes, int] = {}
        for log in dropped:
            tx_hash = bytes(log["transactionHash"])
            if tx_hash not in block_for_tx:
                self._block_number += 1
                block_for_tx[tx_hash] = self._block_number
            remined.append(AttributeDict({**log, "blockNumber": block_for_tx[tx_hash]}))

        self._logs = kept + remined
        logger.info(f"Reorg of depth {depth}: {len(dropped)} logs re-included up to block {self._block_number}")

    @staticmethod
    def _validate(recipient: str, amount: int, delay_seconds: int) -> None:
        if not recipient:
            raise InvalidArgument("recipient must not be empty")
        if amount <= 0:
            raise InvalidArgument(f"amount must be positive, got {amount}")
        if delay_seconds <= 0:
            raise InvalidArgument(f"delaySeconds must be positive, got {delay_seconds}")

    def _store_request(
        self,
        recipient: str,
        amount: int,
        delay_seconds: int,
        requester: str,
        tx_hash: HexBytes,
        block_number: int,
        log_index: int,
    ) -> int:
        origin_id = self._next_origin_id
        self._next_origin_id += 1
        now = self.clock.now()

        self._requests[origin_id] = ScheduleRequest(
            origin_id=origin_id,
            recipient=recipient,
            amount=amount,
            delay_seconds=delay_seconds,
            requester=requester,
            created_at=now,
        )
        self._emit(
            SCHEDULE_REQUESTED,
            {
                "originId": origin_id,
                "recipient": recipient,
                "amount": amount,
                "delaySeconds": delay_seconds,
                "timestamp": now,
                "requester": requester,
            },
            tx_hash,
            block_number,
            log_index,
        )
        logger.info(f"Schedule request {origin_id}: {amount} to {recipient} after {delay_seconds}s")
        return origin_id

    def _new_transaction(self) -> tuple[HexBytes, int]:
        self._nonce += 1
        self._block_number += 1
        tx_hash = HexBytes(Web3.keccak(text=f"{self.address}:{self._nonce}"))
        return tx_hash, self._block_number

    def _emit(
        self,
        event_name: str,
        args: dict[str, Any],
        tx_hash: HexBytes,
        block_number: int,
        log_index: int,
    ) -> None:
        self._logs.append(AttributeDict({
            "event": event_name,
            "args": AttributeDict(args),
            "address": self.address,
            "transactionHash": tx_hash,
            "blockNumber": block_number,
            "logIndex": log_index,
        }))
