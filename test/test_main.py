#!/usr/bin/env python3
"""Tests for the command line entry point."""

import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from schedule_bridge.main import main, parse_args


class TestParseArgs:
    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            args = parse_args([])

        assert args.dry_run is False
        assert args.log_level == "INFO"

    def test_flags(self):
        args = parse_args(["--dry-run", "--log-level", "debug"])

        assert args.dry_run is True
        assert args.log_level == "DEBUG"

    def test_log_level_from_env(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "WARNING"}, clear=True):
            assert parse_args([]).log_level == "WARNING"

    def test_rejects_unknown_level(self):
        with pytest.raises(SystemExit):
            parse_args(["--log-level", "LOUD"])


class TestMain:
    """Tests for startup and exit codes."""

    @pytest.mark.asyncio
    async def test_configuration_error_exits(self):
        with patch("schedule_bridge.main.ScheduleRelayer.from_env", side_effect=ValueError("ORIGIN_RPC_URL missing")):
            with pytest.raises(SystemExit) as exc_info:
                await main(["--dry-run"])

        assert exc_info.value.code == 1

    @pytest.mark.asyncio
    async def test_runs_relayer(self):
        relayer = MagicMock()
        relayer.run = AsyncMock()
        with patch("schedule_bridge.main.ScheduleRelayer.from_env", return_value=relayer) as from_env:
            await main(["--dry-run"])

        from_env.assert_called_once_with(dry_run=True)
        relayer.run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unexpected_error_exits(self):
        relayer = MagicMock()
        relayer.run = AsyncMock(side_effect=RuntimeError("boom"))
        with patch("schedule_bridge.main.ScheduleRelayer.from_env", return_value=relayer):
            with pytest.raises(SystemExit) as exc_info:
                await main([])

        assert exc_info.value.code == 1
