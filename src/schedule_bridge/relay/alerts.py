"""Operator channel for submissions the relay gave up on."""

import json
import logging
import time
from collections import OrderedDict, deque
from dataclasses import asdict, dataclass
from typing import Any

import httpx

from ..models import ScheduleRequestedEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FailureReport:
    """A permanent submission failure awaiting operator attention."""
    origin_id: int
    transaction_hash: str
    recipient: str
    amount: int
    delay_seconds: int
    error: str
    attempts: int
    reported_at: float

    @classmethod
    def from_event(cls, event: ScheduleRequestedEvent, error: Exception, attempts: int) -> "FailureReport":
        return cls(
            origin_id=event.origin_id,
            transaction_hash=event.transaction_hash,
            recipient=event.recipient,
            amount=event.amount,
            delay_seconds=event.delay_seconds,
            error=f"{type(error).__name__}: {error}",
            attempts=attempts,
            reported_at=time.time(),
        )


class OperatorAlerts:
    """
    Collects permanent failures, logs them and optionally forwards them to a webhook.

    Webhook delivery is best effort: a failed POST is logged and the report
    stays available through ``reports``. Each dedup key is reported once;
    repeated failures of the same event are only counted.
    """

    MAX_REPORTS: int = 1_000

    def __init__(self, webhook_url: str | None = None, timeout: float = 10.0, max_reports: int = MAX_REPORTS):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.reports: deque[FailureReport] = deque(maxlen=max_reports)
        self.delivered = 0
        self.delivery_failures = 0
        self.suppressed = 0
        self.max_reports = max_reports
        self._reported: OrderedDict[tuple[str, int], None] = OrderedDict()

    async def report(self, event: ScheduleRequestedEvent, error: Exception, attempts: int) -> FailureReport | None:
        """
        Record a permanent failure.

        Returns:
            The new report, or None if this event was already reported
        """
        if event.dedup_key in self._reported:
            self.suppressed += 1
            logger.debug(f"Origin {event.origin_id} already reported to operators: {error}")
            return None
        self._reported[event.dedup_key] = None
        while len(self._reported) > self.max_reports:
            self._reported.popitem(last=False)

        failure = FailureReport.from_event(event, error, attempts)
        self.reports.append(failure)

        logger.error(
            f"OPERATOR ATTENTION: origin_id={failure.origin_id} tx={failure.transaction_hash[:10]}... "
            f"failed permanently after {attempts} attempt(s): {failure.error}"
        )

        if self.webhook_url:
            await self._post(asdict(failure))
        return failure

    async def _post(self, payload: dict[str, Any]) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                logger.debug(f"Posting alert to {self.webhook_url}: {json.dumps(payload)}")
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()
            self.delivered += 1
        except httpx.HTTPError as e:
            self.delivery_failures += 1
            logger.warning(f"Alert webhook delivery failed: {e}")

    def get_stats(self) -> dict[str, int]:
        return {
            'reports': len(self.reports),
            'delivered': self.delivered,
            'delivery_failures': self.delivery_failures,
            'suppressed': self.suppressed,
        }
