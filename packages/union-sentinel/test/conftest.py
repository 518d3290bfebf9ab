"""Shared fixtures for the Union Sentinel tests."""

import copy

import pytest

from union_sentinel.config import (
    Endpoint,
    Ics20Protocol,
    Interaction,
    Ucs01Protocol,
)
from union_sentinel.models import ForwardInstruction, Transfer, TransferRecord, TransferState

PRIVATE_KEY = "0x" + "11" * 32
RELAY_ADDRESS = "0x1234567890123456789012345678901234567890"
TOKEN_ADDRESS = "0x00000000000000000000000000000000000000aa"
EVM_RECEIVER = "0x5555555555555555555555555555555555555555"

RAW_CONFIG = {
    "interval_unit_seconds": 1,
    "chains": {
        "sepolia": {
            "enabled": True,
            "connection": {"evm": {"rpc_url": "https://rpc.sepolia.example", "chain_id": 11155111}},
            "signer": {"private_key": PRIVATE_KEY},
            "transfer_module": {"contract": {"address": RELAY_ADDRESS}},
        },
        "union": {
            "enabled": True,
            "connection": {
                "cosmos": {
                    "rpc_url": "rest+https://rest.union.example",
                    "chain_id": "union-testnet-8",
                    "bech32_prefix": "union",
                    "fee_denom": "muno",
                }
            },
            "signer": {"private_key_env": "UNION_SIGNER_KEY"},
            "transfer_module": "native",
        },
        "stargaze": {
            "enabled": False,
            "connection": {
                "cosmos": {
                    "rpc_url": "rest+https://rest.stargaze.example",
                    "chain_id": "elgafar-1",
                    "bech32_prefix": "stars",
                    "fee_denom": "ustars",
                }
            },
            "signer": {"rofl_key_id": "sentinel-stargaze"},
            "transfer_module": "native",
        },
    },
    "interactions": [
        {
            "source": {"chain": "union", "channel": "channel-0"},
            "destination": {"chain": "sepolia", "channel": "channel-1"},
            "protocol": {"ics20": {"receivers": [EVM_RECEIVER]}},
            "memo": "",
            "sending_memo_probability": 0,
            "denoms": ["muno"],
            "send_packet_interval": 50,
            "expect_full_cycle": 35,
            "amount_min": 1,
            "amount_max": 3,
        }
    ],
}


@pytest.fixture
def raw_config():
    """A fresh, valid configuration document."""
    return copy.deepcopy(RAW_CONFIG)


@pytest.fixture
def make_interaction():
    """Factory for Interaction objects with sensible defaults."""
    def _make(**overrides) -> Interaction:
        fields = {
            "source": Endpoint("union", "channel-0"),
            "destination": Endpoint("sepolia", "channel-1"),
            "protocol": Ics20Protocol(receivers=(EVM_RECEIVER,)),
            "memo": "",
            "sending_memo_probability": 0.0,
            "denoms": ("muno",),
            "send_packet_interval": 50,
            "expect_full_cycle": 35,
            "amount_min": 1,
            "amount_max": 3,
        }
        fields.update(overrides)
        return Interaction(**fields)
    return _make


@pytest.fixture
def ucs01_interaction(make_interaction):
    return make_interaction(
        source=Endpoint("sepolia", "channel-1"),
        destination=Endpoint("union", "channel-0"),
        protocol=Ucs01Protocol(receivers=("union1receiver",)),
        denoms=(TOKEN_ADDRESS,),
    )


@pytest.fixture
def make_broadcast_transfer(make_interaction):
    """Factory for transfers already in the Broadcast state."""
    counter = iter(range(1, 10_000))

    def _make(interaction=None, dispatched_at=1000.0, expected_forwards=0, **overrides) -> Transfer:
        transfer = Transfer(
            interaction=interaction or make_interaction(),
            denom="muno",
            amount=1,
            receiver=EVM_RECEIVER,
            memo=None,
            expected_forwards=expected_forwards,
            dispatched_at=dispatched_at,
            **overrides,
        )
        transfer.tx_hash = f"0x{next(counter):064x}"
        transfer.transition(TransferState.BROADCAST)
        return transfer
    return _make


def make_record(forwards=0):
    """Base lookup row with `forwards` identical forward instructions."""
    forward = ForwardInstruction(None, "channel-0", None, "channel-9", "elgafar-1", "stars1x")
    return TransferRecord(
        source_transaction_hash="0xabc",
        sender="union1x",
        receiver=EVM_RECEIVER,
        source_chain_id="union-testnet-8",
        source_channel_id="channel-0",
        source_sequence="1",
        destination_chain_id="11155111",
        destination_channel_id="channel-1",
        destination_sequence=None,
        source_timestamp=None,
        destination_timestamp=None,
        forwards=(forward,) * forwards,
    )
