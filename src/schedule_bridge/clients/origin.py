"""
Origin chain adapters used by the relay.

``Web3EventSource`` serves ScheduleRequested logs of a deployed emitter to the
polling listener, and the bridge markers confirm a relayed request back on
the origin side, either on a local ``OriginEmitter`` or through a signed
``markBridged`` transaction.
"""

import asyncio
import logging
from collections.abc import Sequence
from typing import Any, Protocol

from web3 import Web3
from web3.contract import Contract
from web3.exceptions import (
    ContractCustomError,
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
)
from web3.types import EventData, HexBytes, TxReceipt

from ..errors import AlreadyBridged, PermanentError, TransientError
from ..ledger.origin_emitter import OriginEmitter
from ..utils.contract_utility import ContractUtility

logger = logging.getLogger(__name__)

ALREADY_BRIDGED_SELECTOR = Web3.keccak(text="AlreadyBridged(uint256)")[:4].hex().removeprefix("0x")


class OriginBridgeMarker(Protocol):
    async def mark_bridged(self, origin_id: int) -> None:
        ...


class InMemoryOriginMarker:
    """Marks requests bridged on an in-process emitter as the relay identity."""

    def __init__(self, emitter: OriginEmitter, identity: str) -> None:
        self.emitter = emitter
        self.identity = identity

    async def mark_bridged(self, origin_id: int) -> None:
        self.emitter.mark_bridged(origin_id, caller=self.identity)


class Web3OriginMarker:
    """Sends ``markBridged`` to the deployed emitter with the relay's key."""

    def __init__(
        self,
        contract_util: ContractUtility,
        contract_address: str,
        receipt_timeout: int = 60,
    ) -> None:
        """
        Initialize the marker.

        Args:
            contract_util: Signing contract utility for the origin chain
            contract_address: Address of the ScheduleEmitter contract
            receipt_timeout: Seconds to wait for the transaction receipt
        """
        if not contract_util.can_sign:
            raise ValueError("Web3OriginMarker requires a signing ContractUtility")

        self.contract_util = contract_util
        self.contract: Contract = contract_util.get_contract(contract_address, "ScheduleEmitter")
        self.receipt_timeout = receipt_timeout

    async def mark_bridged(self, origin_id: int) -> None:
        """
        Confirm an origin request as bridged.

        Raises:
            AlreadyBridged: If the contract reverted with AlreadyBridged
            TransientError: On RPC connection failures or receipt timeouts
            PermanentError: On any other revert or a failed receipt
        """
        try:
            receipt = await asyncio.to_thread(self._send_mark_bridged, origin_id)
        except ContractCustomError as e:
            if _error_data(e).startswith(ALREADY_BRIDGED_SELECTOR):
                raise AlreadyBridged(origin_id) from e
            raise PermanentError(f"markBridged({origin_id}) reverted: {e}") from e
        except ContractLogicError as e:
            raise PermanentError(f"markBridged({origin_id}) reverted: {e}") from e
        except (TimeExhausted, ProviderConnectionError, OSError) as e:
            raise TransientError(f"markBridged({origin_id}) did not complete: {e}") from e

        if (status := receipt.get("status", 0)) != 1:
            raise PermanentError(f"markBridged({origin_id}) failed with status={status}")

        logger.info(f"markBridged({origin_id}) confirmed in block {receipt['blockNumber']}")

    def _send_mark_bridged(self, origin_id: int) -> TxReceipt:
        tx_hash: HexBytes = self.contract.functions.markBridged(origin_id).transact()
        logger.debug(f"markBridged({origin_id}) sent: {Web3.to_hex(tx_hash)}")
        return self.contract_util.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)


class Web3EventSource:
    """Event source over one event of a deployed contract."""

    def __init__(
        self,
        w3: Web3,
        contract_address: str,
        abi: list[dict[str, Any]],
        event_name: str = "ScheduleRequested",
    ) -> None:
        self.w3 = w3
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.contract = w3.eth.contract(address=self.contract_address, abi=abi)

        if not hasattr(self.contract.events, event_name):
            raise ValueError(f"Event {event_name} not found in contract ABI")
        self.event_obj = getattr(self.contract.events, event_name)

    @property
    def block_number(self) -> int:
        return self.w3.eth.block_number

    def get_logs(self, from_block: int, to_block: int) -> Sequence[EventData]:
        return self.event_obj.get_logs(from_block=from_block, to_block=to_block)


def _error_data(error: ContractCustomError) -> str:
    data = error.data if isinstance(error.data, str) else str(error.message or "")
    return data.lower().removeprefix("0x")
