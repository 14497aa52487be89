"""
Payment submission for relayed schedule requests.

A fixed pool of workers reads events from one queue, so at most
``max_in_flight`` destination transactions are outstanding at any time.
Each event is scheduled on the destination ledger with its origin key, then
confirmed back on the origin ledger with ``markBridged``.

Transient failures are never dropped: after ``retry_count`` retries the event
is parked in the cursor (or its origin id kept as a pending mark) and the
relay's retry task resubmits it, however old its block is.
"""

import asyncio
import logging

from ..clients.destination import DestinationLedger
from ..clients.origin import OriginBridgeMarker
from ..errors import AlreadyBridged, BridgeError, PermanentError, TransientError
from ..models import ScheduleRequestedEvent
from .alerts import OperatorAlerts
from .cursor import RelayCursor

logger = logging.getLogger(__name__)


class PaymentSubmitter:
    """Bounded worker pool submitting events to the destination ledger."""

    def __init__(
        self,
        destination: DestinationLedger,
        cursor: RelayCursor,
        origin_marker: OriginBridgeMarker | None = None,
        alerts: OperatorAlerts | None = None,
        max_in_flight: int = 4,
        retry_count: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
        submit_timeout: float = 60.0,
    ) -> None:
        """
        Initialize the submitter.

        Args:
            destination: Destination ledger adapter
            cursor: Shared relay cursor
            origin_marker: Adapter confirming requests on the origin ledger (None skips markBridged)
            alerts: Operator channel for permanent failures
            max_in_flight: Number of concurrent submission workers
            retry_count: Retries after the first attempt before an event is parked
            retry_base_delay: Backoff before the first retry, doubled each time
            retry_max_delay: Upper bound on a single backoff
            submit_timeout: Seconds allowed per destination attempt
        """
        self.destination = destination
        self.cursor = cursor
        self.origin_marker = origin_marker
        self.alerts = alerts or OperatorAlerts()
        self.max_in_flight = max_in_flight
        self.retry_count = retry_count
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.submit_timeout = submit_timeout

        self.queue: asyncio.Queue[ScheduleRequestedEvent] = asyncio.Queue()
        self.workers: list[asyncio.Task] = []

        self.submitted = 0
        self.permanent_failures = 0
        self.transient_exhausted = 0
        self.mark_failures = 0
        self.marks_deferred = 0

    async def enqueue(self, event: ScheduleRequestedEvent) -> None:
        await self.queue.put(event)

    def start(self) -> list[asyncio.Task]:
        """Start the worker pool."""
        if self.workers:
            return self.workers
        self.workers = [
            asyncio.create_task(self._worker(index), name=f"submitter-{index}")
            for index in range(self.max_in_flight)
        ]
        logger.info(f"Started {self.max_in_flight} submission workers")
        return self.workers

    async def _worker(self, index: int) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self.submit(event)
            except asyncio.CancelledError:
                await self.cursor.park(event)
                raise
            except Exception as e:
                # submit classifies every expected failure; anything else must not kill the worker
                logger.error(f"Worker {index} failed on {event}: {e}", exc_info=True)
                await self.cursor.park(event)
            finally:
                self.queue.task_done()

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self.retry_base_delay * 2 ** (attempt - 1), self.retry_max_delay)

    async def submit(self, event: ScheduleRequestedEvent) -> int | None:
        """
        Deliver one claimed event.

        Returns:
            The destination payment id, or None if the event was parked for a
            later retry or rejected permanently
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                payment_id = await asyncio.wait_for(
                    self.destination.schedule_payment(
                        event.recipient,
                        event.amount,
                        event.delay_seconds,
                        event.origin_key,
                    ),
                    timeout=self.submit_timeout,
                )
                break
            except asyncio.TimeoutError:
                error: BridgeError = TransientError(
                    f"schedulePayment for origin {event.origin_id} timed out after {self.submit_timeout}s"
                )
            except TransientError as e:
                error = e
            except PermanentError as e:
                await self._give_up_permanent(event, e, attempt)
                return None

            if attempt > self.retry_count:
                self.transient_exhausted += 1
                logger.warning(
                    f"Parking origin {event.origin_id} after {attempt} attempts: {error}; "
                    f"the retry task will resubmit it"
                )
                await self.cursor.park(event)
                return None

            delay = self.backoff(attempt)
            logger.warning(
                f"Transient failure for origin {event.origin_id} (attempt {attempt}): {error}; "
                f"retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)

        await self.cursor.commit(event.dedup_key, event.origin_key, payment_id)
        self.submitted += 1
        logger.info(f"Relayed origin_id={event.origin_id} -> payment id={payment_id}")

        await self._mark_bridged(event.origin_id)
        return payment_id

    async def _give_up_permanent(self, event: ScheduleRequestedEvent, error: PermanentError, attempts: int) -> None:
        self.permanent_failures += 1
        await self.cursor.release(event.dedup_key)
        await self.alerts.report(event, error, attempts)

    async def _mark_bridged(self, origin_id: int) -> bool:
        """
        Confirm a relayed request on the origin ledger.

        Returns:
            False if the mark is still outstanding and was left in
            ``cursor.pending_marks``
        """
        if self.origin_marker is None:
            return True

        attempt = 0
        while True:
            attempt += 1
            try:
                await self.origin_marker.mark_bridged(origin_id)
                self.cursor.clear_mark(origin_id)
                return True
            except AlreadyBridged:
                logger.debug(f"Origin {origin_id} was already marked bridged")
                self.cursor.clear_mark(origin_id)
                return True
            except TransientError as e:
                error = e
            except BridgeError as e:
                self.mark_failures += 1
                self.cursor.clear_mark(origin_id)
                logger.warning(f"markBridged({origin_id}) failed: {e}")
                return True

            if attempt > self.retry_count:
                self.marks_deferred += 1
                self.cursor.defer_mark(origin_id)
                logger.warning(f"markBridged({origin_id}) deferred after {attempt} attempts: {error}")
                return False

            await asyncio.sleep(self.backoff(attempt))

    async def retry_parked(self) -> int:
        """
        Requeue every parked event and retry every pending ``markBridged``.

        Returns:
            Number of events requeued
        """
        events = await self.cursor.claim_parked()
        for event in events:
            await self.enqueue(event)
        if events:
            logger.info(f"Requeued {len(events)} parked events")

        for origin_id in list(self.cursor.pending_marks):
            await self._mark_bridged(origin_id)
        return len(events)

    async def drain(self, timeout: float) -> bool:
        """
        Wait until every queued event has been handled.

        Returns:
            True if the queue drained before ``timeout``
        """
        try:
            await asyncio.wait_for(self.queue.join(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"{self.queue.qsize()} queued events not drained within {timeout}s")
            return False

    async def stop(self) -> None:
        """Cancel the workers. Cancelled and still queued events are parked."""
        for task in self.workers:
            task.cancel()
        await asyncio.gather(*self.workers, return_exceptions=True)
        self.workers = []

        while not self.queue.empty():
            event = self.queue.get_nowait()
            await self.cursor.park(event)
            self.queue.task_done()

    def get_stats(self) -> dict[str, int]:
        """
        Get current submitter statistics.

        Returns:
            Dictionary with queue and outcome counters
        """
        return {
            'queued': self.queue.qsize(),
            'workers': len(self.workers),
            'submitted': self.submitted,
            'permanent_failures': self.permanent_failures,
            'transient_exhausted': self.transient_exhausted,
            'mark_failures': self.mark_failures,
            'marks_deferred': self.marks_deferred,
        }
