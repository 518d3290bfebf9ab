import json
from pathlib import Path
from typing import Any

from web3 import Web3


class ContractUtility:
    """
    Utility for EVM connectivity and ABI loading.

    Signing is not configured here: transactions are signed explicitly by the
    chain's Signer so that nonce assignment stays under its lock.
    """

    def __init__(self, rpc_url: str, request_timeout: int = 30) -> None:
        """
        Initialize the ContractUtility.

        Args:
            rpc_url: RPC URL for the network (required)
            request_timeout: HTTP request timeout in seconds
        """
        if not rpc_url:
            raise ValueError("RPC URL is required")

        self.rpc_url = rpc_url
        provider = (
            Web3.LegacyWebSocketProvider(self.rpc_url)
            if self.rpc_url.startswith(("ws:", "wss:"))
            else Web3.HTTPProvider(self.rpc_url, request_kwargs={'timeout': request_timeout})
        )
        self.w3 = Web3(provider)

    def get_contract(self, contract_name: str, address: str) -> Any:
        """Bind the named ABI to a contract address."""
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
            Path(__file__).parent.parent
            / "contracts"
            / f"{contract_name}.json"
        ).resolve()

        with contract_path.open() as file:
            contract_data: dict[str, Any] = json.load(file)

        return contract_data["abi"]
