#!/usr/bin/env python3
"""Chain adapters: the send/query capability surface for each chain.

Two variants share the same surface:

- EvmContractAdapter: transfers go through a UCS01 relay contract on an EVM chain.
- CosmosNativeAdapter: transfers are ICS-20 MsgTransfer messages on a Cosmos SDK chain.

The set is closed; build_adapter() picks the variant from the chain's
transfer module. Both variants hold the signer's lock across
sign-and-broadcast, and report every failure as BroadcastError.
"""

import asyncio
import hashlib
import logging
from typing import Any, Protocol

from cosmpy.aerial.client import LedgerClient, NetworkConfig
from cosmpy.aerial.client.utils import prepare_and_broadcast_basic_transaction
from cosmpy.aerial.tx import Transaction, TxFee
from cosmpy.aerial.wallet import LocalWallet
from cosmpy.crypto.address import Address
from cosmpy.crypto.keypairs import PrivateKey
from cosmpy.protos.cosmos.base.v1beta1.coin_pb2 import Coin
from cosmpy.protos.ibc.applications.transfer.v1.tx_pb2 import MsgTransfer
from web3 import Web3
from web3.contract import Contract
from web3.contract.contract import ContractFunction
from web3.exceptions import ContractLogicError

from .config import ChainConfig, ContractModule, CosmosConnection, EvmConnection, NativeModule
from .errors import BroadcastError
from .signer import Signer
from .utils.contract_utility import ContractUtility

logger = logging.getLogger(__name__)

ICS20_VERSION = b"ics20-1"
MAX_UINT256 = 2**256 - 1


class ChainAdapter(Protocol):
    """Capability surface shared by every adapter variant."""

    chain: ChainConfig

    async def send(
        self,
        source_channel: str,
        receiver: str,
        denom: str,
        amount: int,
        memo: str | None = None,
        timeout_timestamp: int = 0,
        via: str | None = None,
    ) -> str: ...

    async def query_outstanding(self, channel: str, denom: str) -> int: ...

    async def query_balance(self, denom: str) -> int: ...


def encode_receiver(receiver: str) -> bytes:
    """Receiver as relay-contract bytes: hex addresses decoded, others UTF-8."""
    if receiver.startswith("0x"):
        return Web3.to_bytes(hexstr=receiver)
    return receiver.encode()


def escrow_address_bytes(port: str, channel: str) -> bytes:
    """ICS-20 escrow account for a port/channel (first 20 bytes of the sha256 preimage hash)."""
    preimage = ICS20_VERSION + b"\x00" + f"{port}/{channel}".encode()
    return hashlib.sha256(preimage).digest()[:20]


class EvmContractAdapter:
    """Contract-mediated transfers through the UCS01 relay contract."""

    RELAY_CONTRACT = "UCS01Relay"
    TOKEN_CONTRACT = "ERC20"
    APPROVAL_TIMEOUT = 120

    def __init__(
        self,
        chain: ChainConfig,
        signer: Signer,
        contract_util: ContractUtility | None = None,
        request_timeout: int = 30,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            chain: Chain configuration (EVM connection, contract module)
            signer: Signer shared by every interaction sending from this chain
            contract_util: Pre-built web3 utility (created from the chain when omitted)
            request_timeout: HTTP request timeout in seconds
        """
        if not isinstance(chain.connection, EvmConnection) or not isinstance(
            chain.transfer_module, ContractModule
        ):
            raise ValueError(f"Chain '{chain.name}' is not a contract-mediated EVM chain")

        self.chain = chain
        self.signer = signer
        self.connection: EvmConnection = chain.connection
        self.contract_util = contract_util or ContractUtility(self.connection.rpc_url, request_timeout)
        self.w3: Web3 = self.contract_util.w3
        self.relay_address: str = chain.transfer_module.address
        self._chain_id: int | None = self.connection.chain_id
        self._relays: dict[str, Contract] = {}
        self._tokens: dict[str, Contract] = {}

    def _relay(self, address: str | None = None) -> Contract:
        address = Web3.to_checksum_address(address or self.relay_address)
        if address not in self._relays:
            self._relays[address] = self.contract_util.get_contract(self.RELAY_CONTRACT, address)
        return self._relays[address]

    def _token(self, address: str) -> Contract:
        address = Web3.to_checksum_address(address)
        if address not in self._tokens:
            self._tokens[address] = self.contract_util.get_contract(self.TOKEN_CONTRACT, address)
        return self._tokens[address]

    def _get_chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = self.w3.eth.chain_id
        return self._chain_id

    def _estimate_gas(self, function: ContractFunction) -> int:
        gas = function.estimate_gas({'from': self.signer.address})
        if gas > self.connection.gas_limit:
            raise BroadcastError(
                f"{self.chain.name}: estimated gas {gas} exceeds limit {self.connection.gas_limit}"
            )
        return gas

    def _submit(self, function: ContractFunction, nonce: int) -> str:
        account = self.signer.account
        tx = function.build_transaction({
            'from': account.address,
            'nonce': nonce,
            'gas': self._estimate_gas(function),
            'chainId': self._get_chain_id(),
        })
        signed = account.sign_transaction(tx)
        return Web3.to_hex(self.w3.eth.send_raw_transaction(signed.raw_transaction))

    def _ensure_allowance(self, token: str, spender: str, amount: int, nonce: int) -> int:
        """Approve the relay for token when its allowance is below amount.

        Returns the nonce to use for the next transaction.
        """
        contract = self._token(token)
        if contract.functions.allowance(self.signer.address, spender).call() >= amount:
            return nonce

        tx_hash = self._submit(contract.functions.approve(spender, MAX_UINT256), nonce)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.APPROVAL_TIMEOUT)
        if receipt['status'] != 1:
            raise BroadcastError(f"{self.chain.name}: approval of {token} reverted in {tx_hash}")
        logger.info(f"{self.chain.name}: approved {spender} for {token} in {tx_hash}")
        return nonce + 1

    def _sign_and_send(
        self,
        relay: Contract,
        source_channel: str,
        receiver: bytes,
        token: str,
        amount: int,
        memo: str,
        timeout_timestamp: int,
    ) -> str:
        nonce = self.w3.eth.get_transaction_count(self.signer.address, "pending")
        nonce = self._ensure_allowance(token, relay.address, amount, nonce)

        transfer = relay.functions.send(
            source_channel,
            receiver,
            [(token, amount)],
            memo,
            (0, 0),
            timeout_timestamp,
        )
        try:
            transfer.call({'from': self.signer.address})
        except ContractLogicError as e:
            raise BroadcastError(f"{self.chain.name}: transfer would revert: {e}") from e
        return self._submit(transfer, nonce)

    async def send(
        self,
        source_channel: str,
        receiver: str,
        denom: str,
        amount: int,
        memo: str | None = None,
        timeout_timestamp: int = 0,
        via: str | None = None,
    ) -> str:
        """
        Send tokens through the relay contract.

        The relay is approved for the token first when its allowance is too
        low, and the call is simulated before anything is broadcast.

        Args:
            source_channel: Channel on this chain
            receiver: Receiver on the destination chain
            denom: ERC20 token address
            amount: Amount in base units
            memo: Optional memo (relay "extension")
            timeout_timestamp: Packet timeout in nanoseconds since epoch
            via: Relay contract overriding the chain's transfer module

        Returns:
            Transaction hash (0x-prefixed hex)

        Raises:
            BroadcastError: On encoding, simulated revert, gas above the limit,
                signing or RPC failure
        """
        try:
            token = Web3.to_checksum_address(denom)
            receiver_bytes = encode_receiver(receiver)
            relay = self._relay(via)
        except ValueError as e:
            raise BroadcastError(f"{self.chain.name}: invalid transfer parameters: {e}") from e

        async with self.signer.lock:
            try:
                tx_hash = await asyncio.to_thread(
                    self._sign_and_send,
                    relay,
                    source_channel,
                    receiver_bytes,
                    token,
                    amount,
                    memo or "",
                    timeout_timestamp,
                )
            except BroadcastError:
                raise
            except Exception as e:
                raise BroadcastError(f"{self.chain.name}: {type(e).__name__}: {e}") from e

        logger.info(f"{self.chain.name}: sent {amount} {denom} over {source_channel} in {tx_hash}")
        return tx_hash

    async def query_outstanding(self, channel: str, denom: str) -> int:
        """Amount of denom currently outstanding (escrowed) on channel."""
        relay = self._relay()
        token = Web3.to_checksum_address(denom)
        return await asyncio.to_thread(relay.functions.getOutstanding(channel, token).call)

    async def query_balance(self, denom: str) -> int:
        """Signer's balance of the ERC20 token denom."""
        token = self._token(denom)
        return await asyncio.to_thread(token.functions.balanceOf(self.signer.address).call)


class CosmosNativeAdapter:
    """Native ICS-20 transfers on a Cosmos SDK chain."""

    def __init__(
        self,
        chain: ChainConfig,
        signer: Signer,
        client: LedgerClient | None = None,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            chain: Chain configuration (Cosmos connection, native module)
            signer: Signer shared by every interaction sending from this chain
            client: Pre-built ledger client (created from the chain when omitted)
        """
        if not isinstance(chain.connection, CosmosConnection) or not isinstance(
            chain.transfer_module, NativeModule
        ):
            raise ValueError(f"Chain '{chain.name}' is not a native-module Cosmos chain")

        self.chain = chain
        self.signer = signer
        self.connection: CosmosConnection = chain.connection
        self.port: str = chain.transfer_module.port
        self.client = client or LedgerClient(NetworkConfig(
            chain_id=self.connection.chain_id,
            url=self.connection.rpc_url,
            fee_minimum_gas_price=self.connection.gas_price,
            fee_denomination=self.connection.fee_denom,
            staking_denomination=self.connection.fee_denom,
        ))
        self.wallet = LocalWallet(PrivateKey(signer.key_bytes), prefix=self.connection.bech32_prefix)

    @property
    def address(self) -> str:
        return str(self.wallet.address())

    def _build_transfer(
        self,
        port: str,
        source_channel: str,
        receiver: str,
        denom: str,
        amount: int,
        memo: str | None,
        timeout_timestamp: int,
    ) -> MsgTransfer:
        fields: dict[str, Any] = {
            "source_port": port,
            "source_channel": source_channel,
            "token": Coin(denom=denom, amount=str(amount)),
            "sender": self.address,
            "receiver": receiver,
            "timeout_timestamp": timeout_timestamp,
        }
        if memo:
            fields["memo"] = memo
        return MsgTransfer(**fields)

    def _sign_and_broadcast(self, msg: MsgTransfer) -> str:
        tx = Transaction()
        tx.add_message(msg)
        submitted = prepare_and_broadcast_basic_transaction(
            self.client,
            tx,
            self.wallet,
            fee=TxFee(gas_limit=self.connection.gas_limit),
        )
        return submitted.tx_hash

    async def send(
        self,
        source_channel: str,
        receiver: str,
        denom: str,
        amount: int,
        memo: str | None = None,
        timeout_timestamp: int = 0,
        via: str | None = None,
    ) -> str:
        """
        Send tokens with an ICS-20 MsgTransfer.

        Args:
            source_channel: Channel on this chain
            receiver: Receiver on the destination chain
            denom: Bank denom
            amount: Amount in base units
            memo: Optional packet memo (e.g. forwarding instructions)
            timeout_timestamp: Packet timeout in nanoseconds since epoch
            via: Transfer port overriding the chain's native module port

        Returns:
            Transaction hash (hex)

        Raises:
            BroadcastError: On encoding, signing or RPC failure
        """
        try:
            msg = self._build_transfer(
                via or self.port, source_channel, receiver, denom, amount, memo, timeout_timestamp
            )
        except (ValueError, TypeError) as e:
            raise BroadcastError(f"{self.chain.name}: invalid transfer parameters: {e}") from e

        async with self.signer.lock:
            try:
                tx_hash = await asyncio.to_thread(self._sign_and_broadcast, msg)
            except Exception as e:
                raise BroadcastError(f"{self.chain.name}: {type(e).__name__}: {e}") from e

        logger.info(f"{self.chain.name}: sent {amount} {denom} over {source_channel} in {tx_hash}")
        return tx_hash

    async def query_outstanding(self, channel: str, denom: str) -> int:
        """Balance of denom held by the channel's ICS-20 escrow account."""
        escrow = Address(escrow_address_bytes(self.port, channel), self.connection.bech32_prefix)
        return await asyncio.to_thread(self.client.query_bank_balance, escrow, denom)

    async def query_balance(self, denom: str) -> int:
        """Signer's bank balance of denom."""
        return await asyncio.to_thread(self.client.query_bank_balance, self.wallet.address(), denom)


def build_adapter(chain: ChainConfig, signer: Signer, request_timeout: int = 30) -> ChainAdapter:
    """Create the adapter variant matching the chain's transfer module."""
    match chain.transfer_module:
        case ContractModule():
            return EvmContractAdapter(chain, signer, request_timeout=request_timeout)
        case NativeModule():
            return CosmosNativeAdapter(chain, signer)
        case _:
            raise ValueError(f"Unsupported transfer module for chain '{chain.name}'")
