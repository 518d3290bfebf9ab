"""
Signer abstraction for chain accounts.

A Signer owns the key for one chain account and the lock that serializes
signing and broadcasting for it: sequence/nonce assignment is not safe under
concurrent submission from the same account.
"""

import asyncio
import logging

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .config import SignerConfig
from .errors import ConfigError
from .utils.rofl_utility import RoflUtility

logger = logging.getLogger(__name__)


class Signer:
    """Key custody plus a single mutual-exclusion boundary for one account."""

    def __init__(self, chain_name: str, private_key: str) -> None:
        """
        Initialize the Signer.

        Args:
            chain_name: Chain this signer submits to (used in logs)
            private_key: secp256k1 private key as hex, with or without 0x
        """
        self.chain_name = chain_name
        self._private_key = private_key.removeprefix("0x")
        self.lock = asyncio.Lock()
        self._account: LocalAccount = Account.from_key(bytes.fromhex(self._private_key))

    @classmethod
    async def from_config(
        cls,
        chain_name: str,
        config: SignerConfig,
        rofl_util: RoflUtility | None = None,
    ) -> "Signer":
        """
        Create a Signer from its configuration.

        Local keys come from the document or the environment. ROFL keys are
        fetched from the application daemon, which must be available.

        Raises:
            ConfigError: If the key cannot be resolved
        """
        if config.uses_rofl:
            if rofl_util is None:
                raise ConfigError(
                    f"Chain '{chain_name}' uses a ROFL key but ROFL utilities are disabled (local mode)"
                )
            logger.debug(f"Fetching key '{config.rofl_key_id}' for {chain_name} from ROFL...")
            private_key = await rofl_util.fetch_key(config.rofl_key_id)
        else:
            private_key = config.resolve_local_key()

        signer = cls(chain_name, private_key)
        logger.info(f"Signer for {chain_name} ready: {signer.address}")
        return signer

    @property
    def address(self) -> str:
        """EVM address of the account."""
        return self._account.address

    @property
    def account(self) -> LocalAccount:
        return self._account

    @property
    def key_bytes(self) -> bytes:
        """Raw private key, for chain-native wallets built on the same key."""
        return bytes.fromhex(self._private_key)

    def __repr__(self) -> str:
        return f"Signer(chain={self.chain_name!r}, address={self.address})"
