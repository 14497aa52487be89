"""
Polling-based event listener utility for origin-chain event monitoring.

"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

from web3.types import EventData

EventCallback = Callable[[EventData], Awaitable[Any]]


class EventSource(Protocol):
    """Anything that can report a chain head and serve logs for a block range."""

    @property
    def block_number(self) -> int:
        ...

    def get_logs(self, from_block: int, to_block: int) -> Sequence[EventData]:
        ...


class PollingEventListener:
    """
    Utility for polling blockchain events from an event source.

    Runs a live poll that follows the chain head and, independently, a
    periodic rescan of the most recent blocks that catches events the live
    poll missed (dropped requests, restarts, reorganisations).
    """

    MAX_BLOCK_RANGE = 1000  # blocks per get_logs request

    def __init__(
        self,
        source: EventSource,
        event_name: str,
        lookback_blocks: int = 100,
        rescan_window: int = 100,
        start_block: int | None = None,
    ):
        """
        Initialize the polling event listener.

        Args:
            source: Event source to poll
            event_name: Name of the event, for logging
            lookback_blocks: Number of blocks to look back on startup
            rescan_window: Number of recent blocks re-read by each rescan
            start_block: Last block processed by a previous run, if known
        """
        self.source = source
        self.event_name = event_name
        self.lookback_blocks = lookback_blocks
        self.rescan_window = rescan_window

        # State tracking
        self.last_processed_block: int | None = start_block
        self.is_running = False
        self.rescans_completed = 0

        # Setup logging
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def _get_logs(self, from_block: int, to_block: int) -> list[EventData]:
        """Fetch logs in bounded chunks, ordered by (block, log index)."""
        events: list[EventData] = []
        chunk_start = from_block
        while chunk_start <= to_block:
            chunk_end = min(chunk_start + self.MAX_BLOCK_RANGE - 1, to_block)
            events.extend(self.source.get_logs(chunk_start, chunk_end))
            chunk_start = chunk_end + 1
        return sorted(events, key=lambda e: (e["blockNumber"], e["logIndex"]))

    async def _dispatch(self, events: list[EventData], callback: EventCallback) -> None:
        for event in events:
            await callback(event)

    async def initial_sync(self, callback: EventCallback) -> None:
        """
        Perform initial sync to catch up on recent events.

        A resumed listener re-reads ``lookback_blocks`` before its saved
        position; a fresh one starts ``lookback_blocks`` before the head.

        Args:
            callback: Async function to call for each event found
        """
        try:
            current_block = self.source.block_number
            anchor = current_block if self.last_processed_block is None else min(
                self.last_processed_block, current_block
            )
            from_block = max(0, anchor - self.lookback_blocks)

            self.logger.info(
                f"Initial sync for {self.event_name} events "
                f"from block {from_block} to {current_block}"
            )

            events = self._get_logs(from_block, current_block)

            if events:
                self.logger.info(f"Found {len(events)} historical {self.event_name} events")
                await self._dispatch(events, callback)
            else:
                self.logger.info(f"No historical {self.event_name} events found")

            self.last_processed_block = current_block

        except Exception as e:
            self.logger.error(f"Error during initial sync: {e}")
            raise

    async def poll_for_events(self, callback: EventCallback) -> None:
        """
        Poll for new events since last processed block.

        Args:
            callback: Async function to call for each new event
        """
        try:
            current_block = self.source.block_number

            # Skip if no new blocks
            if self.last_processed_block is not None and current_block <= self.last_processed_block:
                return

            from_block = (
                self.last_processed_block + 1
                if self.last_processed_block is not None
                else current_block
            )

            events = self._get_logs(from_block, current_block)

            if events:
                self.logger.info(
                    f"Found {len(events)} new {self.event_name} events "
                    f"in blocks {from_block}-{current_block}"
                )
                await self._dispatch(events, callback)

            self.last_processed_block = current_block

        except Exception as e:
            self.logger.error(f"Error polling for events: {e}")
            # Don't update last_processed_block on error

    async def rescan(self, callback: EventCallback) -> int:
        """
        Re-read the last ``rescan_window`` blocks and dispatch every event found.

        Does not move ``last_processed_block``; duplicates are expected and
        must be absorbed by the callback.

        Returns:
            Number of events dispatched
        """
        current_block = self.source.block_number
        from_block = max(0, current_block - self.rescan_window)

        events = self._get_logs(from_block, current_block)
        self.logger.debug(
            f"Rescan of blocks {from_block}-{current_block} found {len(events)} {self.event_name} events"
        )
        await self._dispatch(events, callback)
        self.rescans_completed += 1
        return len(events)

    async def start_polling(self, callback: EventCallback, interval: float = 30) -> None:
        """
        Start polling for events at the specified interval.

        Args:
            callback: Async function to call when events are received
            interval: Polling interval in seconds
        """
        if self.is_running:
            self.logger.warning("Polling already running")
            return

        self.is_running = True
        self.logger.info(f"Starting polling for {self.event_name} events every {interval} seconds")

        await self.initial_sync(callback)

        while self.is_running:
            try:
                await asyncio.sleep(interval)
                await self.poll_for_events(callback)
            except asyncio.CancelledError:
                self.logger.info("Polling cancelled")
                break
            except Exception as e:
                self.logger.error(f"Error in polling loop: {e}")
                await asyncio.sleep(interval)

    async def start_rescanning(self, callback: EventCallback, interval: float = 60) -> None:
        """
        Periodically rescan the recent block window until stopped.

        Args:
            callback: Async function to call for each event found
            interval: Seconds between rescans
        """
        self.logger.info(
            f"Starting rescans of the last {self.rescan_window} blocks every {interval} seconds"
        )
        while True:
            try:
                await asyncio.sleep(interval)
                if not self.is_running:
                    break
                await self.rescan(callback)
            except asyncio.CancelledError:
                self.logger.info("Rescanning cancelled")
                break
            except Exception as e:
                self.logger.error(f"Error during rescan: {e}")

    async def stop(self) -> None:
        """Stop the polling loop."""
        self.logger.info(f"Stopping polling for {self.event_name} events")
        self.is_running = False

    def get_status(self) -> dict[str, Any]:
        """
        Get current status of the polling listener.

        Returns:
            Dictionary with status information
        """
        return {
            "is_running": self.is_running,
            "last_processed_block": self.last_processed_block,
            "event_name": self.event_name,
            "rescan_window": self.rescan_window,
            "rescans_completed": self.rescans_completed,
        }
