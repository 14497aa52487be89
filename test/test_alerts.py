#!/usr/bin/env python3
"""Tests for OperatorAlerts.

This module tests failure reporting, the bounded report history and
best-effort webhook delivery.
"""

import unittest
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import httpx

from schedule_bridge.errors import PermanentError
from schedule_bridge.models import ScheduleRequestedEvent
from schedule_bridge.relay.alerts import FailureReport, OperatorAlerts

WEBHOOK = "https://alerts.example.com/hook"


def make_event(origin_id: int = 1) -> ScheduleRequestedEvent:
    return ScheduleRequestedEvent(
        origin_id=origin_id,
        recipient="0xabc",
        amount=10,
        delay_seconds=60,
        timestamp=0,
        requester="0x2222222222222222222222222222222222222222",
        transaction_hash="0x" + "ef" * 32,
        block_number=3,
        log_index=0,
        contract_address="0x85BfE05492aFC3D04Ff3B2ca6771ACF6f853d90d",
    )


class TestOperatorAlerts(unittest.IsolatedAsyncioTestCase):
    """Test cases for OperatorAlerts."""

    def setUp(self):
        self.event = make_event()
        self.error = PermanentError("pre-condition failed: recipient not found")

    async def test_report_without_webhook(self):
        """Reports are kept and logged when no webhook is configured."""
        alerts = OperatorAlerts()

        with self.assertLogs("schedule_bridge.relay.alerts", level="ERROR") as logs:
            failure = await alerts.report(self.event, self.error, attempts=1)

        assert isinstance(failure, FailureReport)
        assert failure.origin_id == 1
        assert failure.error == "PermanentError: pre-condition failed: recipient not found"
        assert list(alerts.reports) == [failure]
        assert "OPERATOR ATTENTION" in logs.output[0]
        assert alerts.get_stats() == {'reports': 1, 'delivered': 0, 'delivery_failures': 0, 'suppressed': 0}

    async def test_history_is_bounded(self):
        alerts = OperatorAlerts(max_reports=2)

        for origin_id in range(1, 4):
            await alerts.report(make_event(origin_id), self.error, attempts=1)

        assert [r.origin_id for r in alerts.reports] == [2, 3]

    @patch('schedule_bridge.relay.alerts.httpx.AsyncClient')
    async def test_webhook_delivery(self, mock_client_class):
        """Test the report is posted as JSON."""
        mock_client = AsyncMock()
        mock_response = MagicMock()
        mock_response.raise_for_status = MagicMock()
        mock_client.post = AsyncMock(return_value=mock_response)
        mock_client_class.return_value.__aenter__.return_value = mock_client

        alerts = OperatorAlerts(webhook_url=WEBHOOK, timeout=5.0)
        await alerts.report(self.event, self.error, attempts=2)

        mock_client_class.assert_called_once_with(timeout=5.0)
        url, = mock_client.post.call_args[0]
        payload = mock_client.post.call_args[1]['json']
        assert url == WEBHOOK
        assert payload['origin_id'] == 1
        assert payload['transaction_hash'] == self.event.transaction_hash
        assert payload['attempts'] == 2
        assert alerts.delivered == 1

    @patch('schedule_bridge.relay.alerts.httpx.AsyncClient')
    async def test_webhook_http_error_is_not_raised(self, mock_client_class):
        """Test a failing webhook is counted but does not propagate."""
        mock_client = AsyncMock()
        mock_response = MagicMock()
        mock_response.raise_for_status = MagicMock(side_effect=httpx.HTTPStatusError(
            "Server error", request=Mock(), response=Mock()
        ))
        mock_client.post = AsyncMock(return_value=mock_response)
        mock_client_class.return_value.__aenter__.return_value = mock_client

        alerts = OperatorAlerts(webhook_url=WEBHOOK)
        await alerts.report(self.event, self.error, attempts=1)

        assert alerts.delivered == 0
        assert alerts.delivery_failures == 1
        assert len(alerts.reports) == 1

    @patch('schedule_bridge.relay.alerts.httpx.AsyncClient')
    async def test_webhook_connection_error(self, mock_client_class):
        mock_client = AsyncMock()
        mock_client.post = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
        mock_client_class.return_value.__aenter__.return_value = mock_client

        alerts = OperatorAlerts(webhook_url=WEBHOOK)
        await alerts.report(self.event, self.error, attempts=1)

        assert alerts.delivery_failures == 1

    @patch('schedule_bridge.relay.alerts.httpx.AsyncClient')
    async def test_same_event_is_reported_once(self, mock_client_class):
        """Test a rescanned, rejected event does not alert operators again."""
        mock_client = AsyncMock()
        mock_client.post = AsyncMock(return_value=MagicMock())
        mock_client_class.return_value.__aenter__.return_value = mock_client

        alerts = OperatorAlerts(webhook_url=WEBHOOK)
        first = await alerts.report(self.event, self.error, attempts=1)
        second = await alerts.report(self.event, self.error, attempts=1)
        other = await alerts.report(make_event(2), self.error, attempts=1)

        assert first is not None
        assert second is None
        assert other is not None
        assert mock_client.post.await_count == 2
        assert alerts.get_stats()['suppressed'] == 1
        assert [r.origin_id for r in alerts.reports] == [1, 2]


if __name__ == '__main__':
    unittest.main()
