#!/usr/bin/env python3
"""Tests for the origin emitter."""

import pytest
from web3 import Web3

from schedule_bridge.errors import (
    AlreadyBridged,
    ArgumentLengthMismatch,
    InvalidArgument,
    NotFound,
    Unauthorized,
)
from schedule_bridge.ledger import OriginEmitter

from conftest import ALICE, RELAY


class TestRequestSchedule:
    """Tests for single schedule requests."""

    def test_assigns_increasing_origin_ids(self, emitter):
        """Origin ids start at 1 and increase by one per request."""
        first = emitter.request_schedule("0xabc", 10, 60, requester=ALICE)
        second = emitter.request_schedule("0xdef", 5, 30, requester=ALICE)

        assert (first, second) == (1, 2)
        assert emitter.request_count == 2

    def test_stores_unbridged_request(self, emitter, origin_clock):
        origin_id = emitter.request_schedule("0xabc", 10, 60, requester=ALICE)

        request = emitter.get_request(origin_id)
        assert request.recipient == "0xabc"
        assert request.amount == 10
        assert request.delay_seconds == 60
        assert request.requester == ALICE
        assert request.created_at == origin_clock.now()
        assert request.bridged is False

    def test_emits_schedule_requested_log(self, emitter, origin_clock):
        """Each request is its own transaction in its own block."""
        emitter.request_schedule("0xabc", 10, 60, requester=ALICE)

        logs = emitter.get_logs(0, emitter.block_number)
        assert len(logs) == 1
        log = logs[0]
        assert log["event"] == "ScheduleRequested"
        assert log["blockNumber"] == 1
        assert log["logIndex"] == 0
        assert log["address"] == emitter.address
        assert dict(log["args"]) == {
            "originId": 1,
            "recipient": "0xabc",
            "amount": 10,
            "delaySeconds": 60,
            "timestamp": origin_clock.now(),
            "requester": ALICE,
        }

    def test_transaction_hashes_are_distinct(self, emitter):
        emitter.request_schedule("0xabc", 10, 60, requester=ALICE)
        emitter.request_schedule("0xabc", 10, 60, requester=ALICE)

        hashes = {bytes(log["transactionHash"]) for log in emitter.get_logs(0, emitter.block_number)}
        assert len(hashes) == 2

    def test_address_is_checksummed(self, emitter):
        assert Web3.is_checksum_address(emitter.address)

    @pytest.mark.parametrize("recipient,amount,delay", [
        ("", 10, 60),
        ("0xabc", 0, 60),
        ("0xabc", -5, 60),
        ("0xabc", 10, 0),
        ("0xabc", 10, -1),
    ])
    def test_rejects_invalid_input_without_side_effects(self, emitter, recipient, amount, delay):
        with pytest.raises(InvalidArgument):
            emitter.request_schedule(recipient, amount, delay, requester=ALICE)

        assert emitter.request_count == 0
        assert emitter.block_number == 0
        assert emitter.get_logs(0, 10) == []

    def test_recipient_is_opaque(self, emitter):
        """The origin side never parses the destination address."""
        origin_id = emitter.request_schedule("not-even-hex", 1, 1, requester=ALICE)
        assert emitter.get_request(origin_id).recipient == "not-even-hex"


class TestMarkBridged:
    """Tests for the relay confirmation call."""

    def test_marks_request_and_emits_event(self, emitter):
        origin_id = emitter.request_schedule("0xabc", 10, 60, requester=ALICE)

        emitter.mark_bridged(origin_id, caller=RELAY)

        assert emitter.get_request(origin_id).bridged is True
        bridged_logs = emitter.get_logs(0, emitter.block_number, "ScheduleBridged")
        assert len(bridged_logs) == 1
        assert bridged_logs[0]["args"]["originId"] == origin_id

    def test_caller_check_ignores_case(self, origin_clock):
        relay = "0xAbCdEf0000000000000000000000000000000001"
        emitter = OriginEmitter(relay_identity=relay, clock=origin_clock)
        origin_id = emitter.request_schedule("0xabc", 10, 60, requester=ALICE)

        emitter.mark_bridged(origin_id, caller=relay.lower())

        assert emitter.get_request(origin_id).bridged is True

    def test_second_call_fails_without_second_event(self, emitter):
        origin_id = emitter.request_schedule("0xabc", 10, 60, requester=ALICE)
        emitter.mark_bridged(origin_id, caller=RELAY)
        block_after_first = emitter.block_number

        with pytest.raises(AlreadyBridged) as exc_info:
            emitter.mark_bridged(origin_id, caller=RELAY)

        assert exc_info.value.origin_id == origin_id
        assert emitter.block_number == block_after_first
        assert len(emitter.get_logs(0, emitter.block_number, "ScheduleBridged")) == 1

    def test_unauthorized_caller(self, emitter):
        origin_id = emitter.request_schedule("0xabc", 10, 60, requester=ALICE)

        with pytest.raises(Unauthorized):
            emitter.mark_bridged(origin_id, caller=ALICE)

        assert emitter.get_request(origin_id).bridged is False

    def test_unknown_origin_id(self, emitter):
        with pytest.raises(NotFound) as exc_info:
            emitter.mark_bridged(42, caller=RELAY)
        assert exc_info.value.identifier == 42

    def test_authorization_checked_before_existence(self, emitter):
        with pytest.raises(Unauthorized):
            emitter.mark_bridged(42, caller=ALICE)

    def test_pending_requests_excludes_bridged(self, emitter):
        first = emitter.request_schedule("0xabc", 10, 60, requester=ALICE)
        second = emitter.request_schedule("0xdef", 10, 60, requester=ALICE)
        emitter.mark_bridged(first, caller=RELAY)

        assert [request.origin_id for request in emitter.pending_requests()] == [second]


class TestRequestScheduleBatch:
    """Tests for batch requests."""

    def test_mismatched_lengths_create_nothing(self, emitter):
        with pytest.raises(ArgumentLengthMismatch):
            emitter.request_schedule_batch(["0xa", "0xb"], [1, 2, 3], [10, 10], requester=ALICE)

        assert emitter.request_count == 0
        assert emitter.block_number == 0

    def test_empty_batch_is_rejected(self, emitter):
        with pytest.raises(ArgumentLengthMismatch):
            emitter.request_schedule_batch([], [], [], requester=ALICE)

    def test_length_mismatch_is_an_invalid_argument(self):
        assert issubclass(ArgumentLengthMismatch, InvalidArgument)

    def test_batch_shares_one_transaction(self, emitter):
        results = emitter.request_schedule_batch(["0xa", "0xb"], [1, 2], [10, 20], requester=ALICE)

        assert [result.origin_id for result in results] == [1, 2]
        assert all(result.ok for result in results)

        logs = emitter.get_logs(0, emitter.block_number)
        assert {log["blockNumber"] for log in logs} == {1}
        assert [log["logIndex"] for log in logs] == [0, 1]
        assert len({bytes(log["transactionHash"]) for log in logs}) == 1

    def test_invalid_element_does_not_roll_back_others(self, emitter):
        results = emitter.request_schedule_batch(
            ["0xa", "", "0xc"], [1, 2, 3], [10, 10, 10], requester=ALICE
        )

        assert results[0].origin_id == 1
        assert results[1].origin_id is None
        assert isinstance(results[1].error, InvalidArgument)
        assert results[2].origin_id == 2
        assert emitter.request_count == 2


class TestEventLog:
    """Tests for log reads and simulated reorganisations."""

    def test_get_logs_filters_by_block_range(self, emitter):
        for _ in range(3):
            emitter.request_schedule("0xabc", 10, 60, requester=ALICE)

        assert [log["args"]["originId"] for log in emitter.get_logs(2, 3)] == [2, 3]
        assert emitter.get_logs(4, 10) == []

    def test_reorg_reincludes_logs_with_same_tx_hash(self, emitter):
        emitter.request_schedule("0xabc", 10, 60, requester=ALICE)
        emitter.request_schedule("0xdef", 10, 60, requester=ALICE)
        original = emitter.get_logs(2, 2)[0]

        emitter.reorg(depth=1)

        assert emitter.get_logs(2, 2) == []
        moved = emitter.get_logs(3, 3)
        assert len(moved) == 1
        assert moved[0]["transactionHash"] == original["transactionHash"]
        assert moved[0]["args"]["originId"] == 2
        assert emitter.block_number == 3

    def test_get_request_returns_copy(self, emitter):
        origin_id = emitter.request_schedule("0xabc", 10, 60, requester=ALICE)

        emitter.get_request(origin_id).bridged = True

        assert emitter.get_request(origin_id).bridged is False
        assert emitter.get_request(99) is None
