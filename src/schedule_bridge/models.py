"""
Shared data models for the schedule bridge.

This module contains the records held by both ledgers and the typed event
the relay builds from raw origin-chain logs.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, NamedTuple

# Sender recorded on every payment created through the bridge
BRIDGE_SENDER = "bridge"


class OriginKey(NamedTuple):
    """Idempotency key identifying one origin request across both ledgers."""

    contract_address: str
    origin_id: int

    @classmethod
    def of(cls, contract_address: str, origin_id: int) -> "OriginKey":
        return cls(contract_address.lower(), int(origin_id))

    def __str__(self) -> str:
        return f"{self.contract_address}#{self.origin_id}"


@dataclass(slots=True)
class ScheduleRequest:
    """A schedule request stored by the origin emitter.

    Attributes:
        origin_id: Identifier assigned by the emitter, starting at 1
        recipient: Destination-ledger address, kept opaque on the origin side
        amount: Amount in origin-ledger base units
        delay_seconds: Delay applied by the destination ledger's clock
        requester: Origin identity that submitted the request
        created_at: Origin ledger timestamp of the request
        bridged: Set once the relay confirms submission
    """
    origin_id: int
    recipient: str
    amount: int
    delay_seconds: int
    requester: str
    created_at: int
    bridged: bool = False


@dataclass(slots=True)
class ScheduledPayment:
    """A payment record held by the payment ledger."""
    id: int
    sender: str
    recipient: str
    amount: Decimal
    scheduled_time: int
    executed: bool = False
    created_at: int = 0
    executed_at: int | None = None
    origin_key: OriginKey | None = None
    handle: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "sender": self.sender,
            "recipient": self.recipient,
            "amount": str(self.amount),
            "scheduled_time": self.scheduled_time,
            "executed": self.executed,
            "created_at": self.created_at,
            "executed_at": self.executed_at,
            "origin_key": str(self.origin_key) if self.origin_key else None,
            "handle": self.handle,
        }


@dataclass(frozen=True, slots=True)
class LedgerEvent:
    """An event emitted by the payment ledger."""
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ScheduleRequestedEvent:
    """Represents a ScheduleRequested event observed on the origin chain.

    Attributes:
        origin_id: Identifier assigned by the origin emitter
        recipient: Destination-ledger recipient address
        amount: Amount in origin base units
        delay_seconds: Requested delay
        timestamp: Origin ledger timestamp of the request
        requester: Origin address that made the request
        transaction_hash: Hash of the transaction that emitted the event
        block_number: Block number where the event was emitted
        log_index: Index of the log entry in the block
        contract_address: Address of the emitting contract
    """

    origin_id: int
    recipient: str
    amount: int
    delay_seconds: int
    timestamp: int
    requester: str
    transaction_hash: str
    block_number: int
    log_index: int
    contract_address: str

    def __str__(self) -> str:
        return (
            f"ScheduleRequested(origin_id={self.origin_id}, "
            f"recipient={self.recipient}, amount={self.amount}, "
            f"delay={self.delay_seconds}s, tx={self.transaction_hash[:10]}...)"
        )

    @property
    def dedup_key(self) -> tuple[str, int]:
        """Key used by the relay to submit each origin event at most once."""
        return (self.transaction_hash, self.origin_id)

    @property
    def origin_key(self) -> OriginKey:
        return OriginKey.of(self.contract_address, self.origin_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "origin_id": self.origin_id,
            "recipient": self.recipient,
            "amount": self.amount,
            "delay_seconds": self.delay_seconds,
            "timestamp": self.timestamp,
            "requester": self.requester,
            "transaction_hash": self.transaction_hash,
            "block_number": self.block_number,
            "log_index": self.log_index,
            "contract_address": self.contract_address,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScheduleRequestedEvent":
        return cls(
            origin_id=int(data["origin_id"]),
            recipient=data["recipient"],
            amount=int(data["amount"]),
            delay_seconds=int(data["delay_seconds"]),
            timestamp=int(data["timestamp"]),
            requester=data["requester"],
            transaction_hash=data["transaction_hash"],
            block_number=int(data["block_number"]),
            log_index=int(data["log_index"]),
            contract_address=data["contract_address"],
        )
