"""Shared fixtures for the schedule bridge tests."""

import pytest

from schedule_bridge.clock import ManualClock
from schedule_bridge.ledger import OriginEmitter, PaymentLedger

T0 = 1_700_000_000
RELAY = "0x1111111111111111111111111111111111111111"
ALICE = "0x2222222222222222222222222222222222222222"


@pytest.fixture
def origin_clock():
    return ManualClock(start=T0 - 500)


@pytest.fixture
def clock():
    """Destination ledger clock, deliberately not in sync with the origin clock."""
    return ManualClock(start=T0)


@pytest.fixture
def emitter(origin_clock):
    return OriginEmitter(relay_identity=RELAY, clock=origin_clock)


@pytest.fixture
def ledger(clock):
    return PaymentLedger(clock=clock)
