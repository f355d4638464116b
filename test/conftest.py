"""Shared fixtures for the root propagator tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from hexbytes import HexBytes
from web3 import Web3

from root_propagator.ledger import MessageLedger
from root_propagator.models import RelayMessage
from root_propagator.utils.contract_utility import ContractUtility

STATE_BRIDGE = Web3.to_checksum_address("0x" + "5b" * 20)
SENDER = STATE_BRIDGE
DESTINATION = Web3.to_checksum_address("0x85bfe05492afc3d04ff3b2ca6771acf6f853d90d")
PRIVATE_KEY = "0x" + "11" * 32


def message_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def make_message(n: int = 1, **overrides) -> RelayMessage:
    fields = dict(
        message_hash=message_hash(n),
        message_sender=SENDER,
        destination=DESTINATION,
        fee=0,
        value=0,
        nonce=n,
        calldata=b"\xfb\xb0\x2b\x8f" + b"\x00" * 32,
        block_number=100 + n,
        transaction_hash="0x" + f"{n:064x}".replace("0", "a"),
    )
    fields.update(overrides)
    return RelayMessage(**fields)


def make_message_sent_event(message: RelayMessage, log_index: int = 0) -> dict:
    return {
        "event": "MessageSent",
        "args": {
            "_from": message.message_sender,
            "_to": message.destination,
            "_fee": message.fee,
            "_value": message.value,
            "_nonce": message.nonce,
            "_calldata": message.calldata,
            "_messageHash": HexBytes(message.message_hash),
        },
        "blockNumber": message.block_number,
        "logIndex": log_index,
        "transactionHash": HexBytes(message.transaction_hash),
    }


def make_inbox_event(hashes: list[str], block_number: int = 500) -> dict:
    return {
        "event": "L1L2MessageHashesAddedToInbox",
        "args": {"messageHashes": [HexBytes(h) for h in hashes]},
        "blockNumber": block_number,
        "logIndex": 0,
        "transactionHash": HexBytes("0x" + "cd" * 32),
    }


def make_tree_changed_event(post_root: int, block_number: int = 200) -> dict:
    return {
        "event": "TreeChanged",
        "args": {"preRoot": post_root - 1, "kind": 0, "postRoot": post_root},
        "blockNumber": block_number,
        "logIndex": 0,
        "transactionHash": HexBytes("0x" + "ef" * 32),
    }


async def _passthrough(operation, label):
    return await operation()


@pytest.fixture
def ledger(tmp_path):
    """A fresh SQLite ledger per test."""
    ledger = MessageLedger.from_path(tmp_path / "messages.db")
    ledger.connect()
    yield ledger
    ledger.close()


@pytest.fixture
def mock_gateway():
    """A ChainGateway stand-in whose retry runs the operation once."""
    gateway = MagicMock()
    gateway.name = "L2"
    gateway.endpoint = "https://rpc.test"
    gateway.retry = AsyncMock(side_effect=_passthrough)
    gateway.current_height = AsyncMock(return_value=1000)
    gateway.query_logs = AsyncMock(return_value=[])
    gateway.call = AsyncMock()
    gateway.estimate_gas = AsyncMock(return_value=100_000)
    gateway.send_transaction = AsyncMock(return_value="0x" + "ab" * 32)
    gateway.wait_for_receipt = AsyncMock(return_value={"status": 1, "blockNumber": 1234})
    gateway.replay_revert = AsyncMock(return_value=None)
    return gateway


@pytest.fixture
def contract_util():
    return ContractUtility()
