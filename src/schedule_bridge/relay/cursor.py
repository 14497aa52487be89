"""
Relay cursor: the relay's record of what it has already delivered.

Live polling and rescans both consult the cursor before enqueueing an event,
so the check-and-claim of a dedup key happens under one ``asyncio.Lock``.
A key is ``in_flight`` while a worker submits it and moves to ``seen`` once
the destination ledger returned a payment id.

Events whose submission kept failing transiently are ``parked`` with their
full payload, and origin ids whose ``markBridged`` is still outstanding are
kept in ``pending_marks``. Both are persisted and retried regardless of how
far the listener has moved past the originating block.
"""

import asyncio
import json
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Any

from ..models import OriginKey, ScheduleRequestedEvent

logger = logging.getLogger(__name__)

DedupKey = tuple[str, int]


class RelayCursor:
    """Bounded, lock-guarded dedup state with optional JSON persistence."""

    MAX_SEEN: int = 100_000
    SCHEMA_VERSION = "2"

    def __init__(self, last_processed_block: int | None = None, max_seen: int = MAX_SEEN) -> None:
        """
        Initialize the cursor.

        Args:
            last_processed_block: Last origin block fully handed to the relay
            max_seen: Capacity of the seen set before the oldest keys are evicted
        """
        self.last_processed_block = last_processed_block
        self.max_seen = max_seen

        # OrderedDict gives O(1) membership and oldest-first eviction
        self.seen: OrderedDict[DedupKey, None] = OrderedDict()
        self.in_flight: set[DedupKey] = set()
        self.mappings: OrderedDict[str, int] = OrderedDict()
        self.parked: OrderedDict[DedupKey, ScheduleRequestedEvent] = OrderedDict()
        self.pending_marks: OrderedDict[int, None] = OrderedDict()

        self._lock = asyncio.Lock()

    async def claim(self, key: DedupKey) -> bool:
        """
        Reserve a dedup key for submission.

        A parked key may be claimed again; it leaves the parked set.

        Returns:
            False if the key was already delivered or is being submitted
        """
        async with self._lock:
            if key in self.seen or key in self.in_flight:
                return False
            self.parked.pop(key, None)
            self.in_flight.add(key)
            return True

    async def commit(self, key: DedupKey, origin_key: OriginKey, payment_id: int) -> None:
        """Record a successful submission and the origin-to-payment mapping."""
        async with self._lock:
            self.in_flight.discard(key)
            self.parked.pop(key, None)
            self._track_seen(key)
            self.mappings[str(origin_key)] = payment_id
            while len(self.mappings) > self.max_seen:
                self.mappings.popitem(last=False)

    async def release(self, key: DedupKey) -> None:
        """Give up a claim without marking the key seen."""
        async with self._lock:
            self.in_flight.discard(key)

    async def park(self, event: ScheduleRequestedEvent) -> None:
        """Give up a claim but keep the event for a later retry."""
        async with self._lock:
            self.in_flight.discard(event.dedup_key)
            if event.dedup_key not in self.seen:
                self.parked[event.dedup_key] = event

    async def claim_parked(self) -> list[ScheduleRequestedEvent]:
        """Claim every parked event that is not already being submitted."""
        async with self._lock:
            claimed = []
            for key in list(self.parked):
                if key in self.seen or key in self.in_flight:
                    continue
                claimed.append(self.parked.pop(key))
                self.in_flight.add(key)
            return claimed

    def defer_mark(self, origin_id: int) -> None:
        self.pending_marks[origin_id] = None

    def clear_mark(self, origin_id: int) -> None:
        self.pending_marks.pop(origin_id, None)

    def is_seen(self, key: DedupKey) -> bool:
        return key in self.seen

    def payment_for(self, origin_key: OriginKey) -> int | None:
        return self.mappings.get(str(origin_key))

    def _track_seen(self, key: DedupKey) -> None:
        if key in self.seen:
            self.seen.move_to_end(key)
            return
        if len(self.seen) >= self.max_seen:
            self.seen.popitem(last=False)
        self.seen[key] = None

    def snapshot(self) -> dict[str, Any]:
        """
        Get a summary of the cursor state.

        Returns:
            Dictionary with cursor metrics
        """
        return {
            "last_processed_block": self.last_processed_block,
            "seen": len(self.seen),
            "in_flight": len(self.in_flight),
            "mappings": len(self.mappings),
            "parked": len(self.parked),
            "pending_marks": len(self.pending_marks),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_processed_block": self.last_processed_block,
            "seen": [[tx_hash, origin_id] for tx_hash, origin_id in self.seen],
            "mappings": dict(self.mappings),
            "parked": [event.to_dict() for event in self.parked.values()],
            "pending_marks": list(self.pending_marks),
            "schema_version": self.SCHEMA_VERSION,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], max_seen: int = MAX_SEEN) -> "RelayCursor":
        """Rebuild a cursor; version 1 files have no parked events or pending marks."""
        cursor = cls(last_processed_block=data.get("last_processed_block"), max_seen=max_seen)
        for tx_hash, origin_id in data.get("seen", []):
            cursor._track_seen((str(tx_hash), int(origin_id)))
        for origin_key, payment_id in data.get("mappings", {}).items():
            cursor.mappings[origin_key] = int(payment_id)
        for item in data.get("parked", []):
            event = ScheduleRequestedEvent.from_dict(item)
            cursor.parked[event.dedup_key] = event
        for origin_id in data.get("pending_marks", []):
            cursor.defer_mark(int(origin_id))
        return cursor

    def save(self, path: str | Path) -> None:
        """Write the cursor to ``path`` atomically. In-flight claims are not persisted."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        tmp.write_text(json.dumps(self.to_dict(), indent=2))
        tmp.replace(target)
        logger.info(f"Relay cursor saved to {target} at block {self.last_processed_block}")

    @classmethod
    def load(cls, path: str | Path, max_seen: int = MAX_SEEN) -> "RelayCursor":
        """Load a cursor from ``path``, or start fresh when the file does not exist."""
        source = Path(path)
        if not source.exists():
            logger.info(f"No relay cursor at {source}, starting fresh")
            return cls(max_seen=max_seen)

        cursor = cls.from_dict(json.loads(source.read_text()), max_seen=max_seen)
        logger.info(
            f"Relay cursor loaded from {source}: block {cursor.last_processed_block}, "
            f"{len(cursor.seen)} seen keys, {len(cursor.parked)} parked events"
        )
        return cursor
