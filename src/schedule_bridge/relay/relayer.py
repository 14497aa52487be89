"""
Schedule relay implementation.

This module contains the relay service that follows ScheduleRequested events
on the origin chain, rescans recent blocks for anything the live poll missed,
and feeds the payment submitter. It owns task lifecycle and graceful shutdown.
"""

import asyncio
import logging
from typing import Any

from ..clients.destination import DestinationLedger, FlowCliDestination, InMemoryDestination
from ..clients.flow_cli import FlowCli
from ..clients.origin import OriginBridgeMarker, Web3EventSource, Web3OriginMarker
from ..clock import SystemClock
from ..config import RelayerConfig
from ..ledger.payment_ledger import PaymentLedger
from ..scheduler import InMemoryNativeScheduler
from ..utils.contract_utility import ContractUtility
from ..utils.polling_event_listener import EventSource, PollingEventListener
from .alerts import OperatorAlerts
from .cursor import RelayCursor
from .event_processor import EventProcessor
from .submitter import PaymentSubmitter

logger = logging.getLogger(__name__)


class ScheduleRelayer:
    """
    Relay service that orchestrates event monitoring and payment submission.

    This class focuses on coordination and lifecycle management, delegating
    parsing and dedup to the EventProcessor and delivery to the PaymentSubmitter.
    """

    STATUS_LOG_INTERVAL = 30  # seconds
    EVENT_NAME = "ScheduleRequested"

    def __init__(
        self,
        config: RelayerConfig,
        event_source: EventSource,
        destination: DestinationLedger,
        origin_marker: OriginBridgeMarker | None = None,
        cursor: RelayCursor | None = None,
        alerts: OperatorAlerts | None = None,
    ):
        """
        Initialize the relay.

        Args:
            config: Relay configuration
            event_source: Origin chain source of ScheduleRequested logs
            destination: Destination ledger adapter
            origin_marker: Adapter for markBridged (None skips the confirmation)
            cursor: Relay cursor (loaded from ``config.cursor_path`` when omitted)
            alerts: Operator channel (built from ``config.alert_webhook_url`` when omitted)
        """
        self.config = config
        self.running = False
        monitoring = config.monitoring

        if cursor is None:
            cursor = RelayCursor.load(config.cursor_path) if config.cursor_path else RelayCursor()
        self.cursor = cursor
        self.alerts = alerts or OperatorAlerts(webhook_url=config.alert_webhook_url)

        self.submitter = PaymentSubmitter(
            destination=destination,
            cursor=self.cursor,
            origin_marker=origin_marker,
            alerts=self.alerts,
            max_in_flight=monitoring.max_in_flight,
            retry_count=monitoring.retry_count,
            retry_base_delay=monitoring.retry_base_delay,
            retry_max_delay=monitoring.retry_max_delay,
            submit_timeout=monitoring.submit_timeout,
        )
        self.event_processor = EventProcessor(cursor=self.cursor, enqueue=self.submitter.enqueue)
        self.listener = PollingEventListener(
            source=event_source,
            event_name=self.EVENT_NAME,
            lookback_blocks=monitoring.lookback_blocks,
            rescan_window=monitoring.rescan_window,
            start_block=self.cursor.last_processed_block,
        )

        # Async coordination
        self.shutdown_event = asyncio.Event()

    @classmethod
    def from_config(cls, config: RelayerConfig) -> "ScheduleRelayer":
        """
        Wire the relay to the real origin chain and, unless dry-run, to Flow.

        Args:
            config: Relay configuration

        Returns:
            Configured ScheduleRelayer instance
        """
        contract_util = ContractUtility(
            rpc_url=config.origin_chain.rpc_url,
            secret="" if config.dry_run else config.origin_chain.private_key,
        )
        event_source = Web3EventSource(
            w3=contract_util.w3,
            contract_address=config.origin_chain.contract_address,
            abi=contract_util.get_contract_abi("ScheduleEmitter"),
            event_name=cls.EVENT_NAME,
        )

        match config.dry_run:
            case True:
                clock = SystemClock()
                ledger = PaymentLedger(clock=clock, native_scheduler=InMemoryNativeScheduler(clock))
                destination: DestinationLedger = InMemoryDestination(ledger)
                origin_marker: OriginBridgeMarker | None = None
                logger.info("DRY RUN: payments go to an in-memory ledger, markBridged is skipped")
            case False:
                cli = FlowCli(
                    network=config.destination.network,
                    signer=config.destination.signer,
                    config_path=config.destination.config_path,
                    timeout=config.monitoring.submit_timeout,
                )
                destination = FlowCliDestination(
                    cli=cli,
                    schedule_transaction=config.destination.schedule_transaction,
                    lookup_script=config.destination.lookup_script,
                )
                origin_marker = Web3OriginMarker(
                    contract_util=contract_util,
                    contract_address=config.origin_chain.contract_address,
                )

        return cls(config, event_source=event_source, destination=destination, origin_marker=origin_marker)

    @classmethod
    def from_env(cls, dry_run: bool = False) -> "ScheduleRelayer":
        """
        Create a ScheduleRelayer instance from environment variables.

        Args:
            dry_run: Run against an in-memory destination ledger

        Returns:
            Configured ScheduleRelayer instance

        Raises:
            ValueError: If required environment variables are missing
        """
        config = RelayerConfig.from_env(dry_run=dry_run)
        config.log_config()
        return cls.from_config(config)

    async def rescan(self) -> int:
        """
        Run one rescan pass over the recent block window, then requeue parked
        events and retry outstanding markBridged calls.

        Returns:
            Number of events dispatched or requeued
        """
        found = await self.listener.rescan(self.event_processor.process_schedule_requested)
        return found + await self.submitter.retry_parked()

    async def _retry_parked_loop(self) -> None:
        """Resubmit parked events every rescan interval while running."""
        interval = self.config.monitoring.rescan_interval
        while self.running:
            await asyncio.sleep(interval)
            try:
                await self.submitter.retry_parked()
            except Exception as e:
                logger.error(f"Error retrying parked events: {e}", exc_info=True)

    def get_status(self) -> dict[str, Any]:
        return {
            'listener': self.listener.get_status(),
            'processor': self.event_processor.get_stats(),
            'submitter': self.submitter.get_stats(),
            'cursor': self.cursor.snapshot(),
            'alerts': self.alerts.get_stats(),
        }

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await asyncio.sleep(self.STATUS_LOG_INTERVAL)
            submitter = self.submitter.get_stats()
            cursor = self.cursor.snapshot()
            logger.info(
                f"Status: block {cursor['last_processed_block']}, "
                f"{submitter['queued']} queued, {cursor['in_flight']} in flight, "
                f"{submitter['submitted']} relayed, {cursor['parked']} parked, "
                f"{submitter['permanent_failures']} failed"
            )

    async def _check_task_health(self, tasks: dict[str, asyncio.Task]) -> bool:
        """Check if any critical task has failed."""
        for name, task in tasks.items():
            if task.done() and name not in ("status", "retry"):  # these end normally on stop
                try:
                    await task
                except asyncio.CancelledError:
                    logger.error(f"{name} task was cancelled")
                except Exception as e:
                    logger.error(f"{name} task failed: {e}", exc_info=True)
                return False
        return True

    async def _cleanup_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        """Stop listening, drain submissions, cancel stragglers and save the cursor."""
        # Stop accepting new events
        await self.listener.stop()
        for name, task in tasks.items():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass  # Expected when cancelling
                except Exception as e:
                    logger.error(f"{name} task failed during shutdown: {e}")

        # Let queued and in-flight submissions finish within the deadline
        timeout = self.config.monitoring.shutdown_timeout
        logger.info(f"Draining submissions (up to {timeout}s)...")
        await self.submitter.drain(timeout)
        await self.submitter.stop()

        self.cursor.last_processed_block = self.listener.last_processed_block
        if self.config.cursor_path:
            try:
                self.cursor.save(self.config.cursor_path)
            except OSError as e:
                logger.error(f"Failed to save relay cursor: {e}")

    async def run(self) -> None:
        """Main event loop for the relay service."""
        self.running = True
        monitoring = self.config.monitoring
        logger.info("Schedule relay starting...")
        logger.info(f"Polling interval: {monitoring.polling_interval}s")
        logger.info(f"Rescan: every {monitoring.rescan_interval}s over {monitoring.rescan_window} blocks")

        tasks: dict[str, asyncio.Task] = {}
        try:
            self.submitter.start()
            callback = self.event_processor.process_schedule_requested

            tasks = {
                "live": asyncio.create_task(
                    self.listener.start_polling(callback=callback, interval=monitoring.polling_interval)
                ),
                "rescan": asyncio.create_task(
                    self.listener.start_rescanning(callback=callback, interval=monitoring.rescan_interval)
                ),
                "retry": asyncio.create_task(self._retry_parked_loop()),
                "status": asyncio.create_task(self._periodic_status_logger()),
            }
            for index, worker in enumerate(self.submitter.workers):
                tasks[f"worker-{index}"] = worker

            logger.info("Event monitoring started, waiting for ScheduleRequested events...")

            # Wait until shutdown or task failure
            while self.running:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass  # Continue running

                if not await self._check_task_health(tasks):
                    logger.error("Critical task failure, shutting down")
                    break

        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise
        finally:
            self.running = False
            # Workers are stopped by the submitter after draining
            for index in range(len(self.submitter.workers)):
                tasks.pop(f"worker-{index}", None)
            await self._cleanup_tasks(tasks)
            logger.info("Schedule relay stopped")

    def stop(self) -> None:
        """Stop the relay service."""
        self.running = False
        self.shutdown_event.set()
