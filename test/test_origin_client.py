#!/usr/bin/env python3
"""Tests for the origin chain adapters."""

from unittest.mock import MagicMock

import pytest
from web3 import Web3
from web3.exceptions import ContractCustomError, ContractLogicError, TimeExhausted
from web3.types import HexBytes

from schedule_bridge.clients.origin import (
    ALREADY_BRIDGED_SELECTOR,
    InMemoryOriginMarker,
    Web3EventSource,
    Web3OriginMarker,
)
from schedule_bridge.errors import AlreadyBridged, PermanentError, TransientError, Unauthorized
from schedule_bridge.utils.contract_utility import ContractUtility

from conftest import ALICE, RELAY

CONTRACT = "0x85BfE05492aFC3D04Ff3B2ca6771ACF6f853d90d"
TX_HASH = HexBytes("0x" + "01" * 32)


@pytest.fixture
def contract_util():
    util = MagicMock()
    util.can_sign = True
    util.w3.eth.wait_for_transaction_receipt.return_value = {"status": 1, "blockNumber": 5}
    util.get_contract.return_value.functions.markBridged.return_value.transact.return_value = TX_HASH
    return util


def transact_mock(contract_util):
    return contract_util.get_contract.return_value.functions.markBridged.return_value.transact


class TestWeb3OriginMarker:
    """Tests for markBridged submission and error mapping."""

    def test_requires_signing_utility(self, contract_util):
        contract_util.can_sign = False
        with pytest.raises(ValueError, match="signing"):
            Web3OriginMarker(contract_util, CONTRACT)

    @pytest.mark.asyncio
    async def test_success(self, contract_util):
        marker = Web3OriginMarker(contract_util, CONTRACT, receipt_timeout=7)

        await marker.mark_bridged(3)

        contract_util.get_contract.assert_called_once_with(CONTRACT, "ScheduleEmitter")
        contract_util.get_contract.return_value.functions.markBridged.assert_called_once_with(3)
        contract_util.w3.eth.wait_for_transaction_receipt.assert_called_once_with(TX_HASH, timeout=7)

    @pytest.mark.asyncio
    async def test_already_bridged_revert(self, contract_util):
        transact_mock(contract_util).side_effect = ContractCustomError(
            message="execution reverted",
            data="0x" + ALREADY_BRIDGED_SELECTOR + "00" * 31 + "03",
        )
        marker = Web3OriginMarker(contract_util, CONTRACT)

        with pytest.raises(AlreadyBridged):
            await marker.mark_bridged(3)

    @pytest.mark.asyncio
    async def test_other_custom_error_is_permanent(self, contract_util):
        transact_mock(contract_util).side_effect = ContractCustomError(message="execution reverted", data="0xdeadbeef")
        marker = Web3OriginMarker(contract_util, CONTRACT)

        with pytest.raises(PermanentError):
            await marker.mark_bridged(3)

    @pytest.mark.asyncio
    async def test_logic_error_is_permanent(self, contract_util):
        transact_mock(contract_util).side_effect = ContractLogicError("execution reverted: Unauthorized")
        marker = Web3OriginMarker(contract_util, CONTRACT)

        with pytest.raises(PermanentError, match="reverted"):
            await marker.mark_bridged(3)

    @pytest.mark.asyncio
    async def test_receipt_timeout_is_transient(self, contract_util):
        contract_util.w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("no receipt")
        marker = Web3OriginMarker(contract_util, CONTRACT)

        with pytest.raises(TransientError):
            await marker.mark_bridged(3)

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self, contract_util):
        transact_mock(contract_util).side_effect = ConnectionRefusedError("refused")
        marker = Web3OriginMarker(contract_util, CONTRACT)

        with pytest.raises(TransientError):
            await marker.mark_bridged(3)

    @pytest.mark.asyncio
    async def test_failed_receipt_is_permanent(self, contract_util):
        contract_util.w3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "blockNumber": 5}
        marker = Web3OriginMarker(contract_util, CONTRACT)

        with pytest.raises(PermanentError, match="status=0"):
            await marker.mark_bridged(3)

    def test_selector(self):
        assert ALREADY_BRIDGED_SELECTOR == Web3.keccak(text="AlreadyBridged(uint256)")[:4].hex().removeprefix("0x")
        assert len(ALREADY_BRIDGED_SELECTOR) == 8


class TestInMemoryOriginMarker:
    @pytest.mark.asyncio
    async def test_marks_as_relay(self, emitter):
        origin_id = emitter.request_schedule("0xabc", 1, 1, requester=ALICE)

        await InMemoryOriginMarker(emitter, RELAY).mark_bridged(origin_id)

        assert emitter.get_request(origin_id).bridged is True
        with pytest.raises(AlreadyBridged):
            await InMemoryOriginMarker(emitter, RELAY).mark_bridged(origin_id)

    @pytest.mark.asyncio
    async def test_wrong_identity(self, emitter):
        origin_id = emitter.request_schedule("0xabc", 1, 1, requester=ALICE)

        with pytest.raises(Unauthorized):
            await InMemoryOriginMarker(emitter, ALICE).mark_bridged(origin_id)


class TestWeb3EventSource:
    """Tests for the log source over a deployed emitter."""

    @pytest.fixture
    def abi(self):
        return ContractUtility.get_contract_abi("ScheduleEmitter")

    def test_get_logs_uses_block_range(self, abi):
        w3 = MagicMock()
        w3.eth.block_number = 42
        event_obj = w3.eth.contract.return_value.events.ScheduleRequested
        event_obj.get_logs.return_value = ["log"]

        source = Web3EventSource(w3, CONTRACT.lower(), abi)

        assert source.contract_address == CONTRACT
        assert source.block_number == 42
        assert source.get_logs(10, 20) == ["log"]
        event_obj.get_logs.assert_called_once_with(from_block=10, to_block=20)

    def test_abi_declares_events(self, abi):
        events = {entry["name"] for entry in abi if entry["type"] == "event"}
        assert {"ScheduleRequested", "ScheduleBridged"} <= events

    def test_unknown_event(self, abi):
        w3 = Web3(Web3.HTTPProvider("http://localhost:8545"))

        with pytest.raises(ValueError, match="not found"):
            Web3EventSource(w3, CONTRACT, abi, event_name="Missing")
