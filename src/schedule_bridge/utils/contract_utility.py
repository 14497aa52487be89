import json
from pathlib import Path
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.contract import Contract
from web3.middleware import SignAndSendRawMiddlewareBuilder


class ContractUtility:
    """
    Utility for origin-chain contract interaction and ABI loading.

    Can be used in two modes:
    1. Signing mode: Initialize with RPC URL and secret so the relay can send transactions
    2. Read-only mode: Initialize with RPC URL only for reading logs and state
    """

    def __init__(self, rpc_url: str, secret: str = "", request_timeout: int = 30) -> None:
        """
        Initialize the ContractUtility.

        Args:
            rpc_url: RPC URL for the origin network (required)
            secret: Private key of the relay identity (optional - read-only mode without it)
            request_timeout: HTTP request timeout in seconds
        """
        if not rpc_url:
            raise ValueError("RPC URL is required")

        self.rpc_url = rpc_url
        self.w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": request_timeout}))
        self.account: LocalAccount | None = None

        if secret:
            self._add_signing_middleware(secret)

    @property
    def can_sign(self) -> bool:
        return self.account is not None

    def _add_signing_middleware(self, secret: str) -> None:
        """
        Add signing middleware to the existing Web3 instance.

        Args:
            secret: Private key for signing transactions
        """
        if not secret:
            raise ValueError("Private key is required for signing transactions")

        self.account = Account.from_key(secret)
        self.w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(self.account))
        self.w3.eth.default_account = self.account.address

    def get_contract(self, address: str, contract_name: str) -> Contract:
        """Bind a deployed contract by address using its bundled ABI."""
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(address),
            abi=self.get_contract_abi(contract_name),
        )

    @staticmethod
    def get_contract_abi(contract_name: str) -> list[dict[str, Any]]:
        """Fetches ABI of the given contract from the bundled contracts folder.

        Args:
            contract_name: Name of the contract (without .json extension)

        Returns:
            List of ABI dictionaries for the contract

        Raises:
            FileNotFoundError: If the contract file doesn't exist
            json.JSONDecodeError: If the contract file is invalid JSON
        """
        contract_path: Path = (
            Path(__file__).parent.parent / "contracts" / f"{contract_name}.json"
        ).resolve()

        with contract_path.open() as file:
            contract_data: dict[str, Any] = json.load(file)

        return contract_data["abi"]
