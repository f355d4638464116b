#!/usr/bin/env python3
"""Tests for EventProcessor decoding."""

import pytest
from hexbytes import HexBytes

from conftest import (
    make_inbox_event,
    make_message,
    make_message_sent_event,
    make_tree_changed_event,
    message_hash,
)
from root_propagator.event_processor import EventProcessor
from root_propagator.exceptions import DecodeError
from root_propagator.models import MessageStatus


@pytest.fixture
def processor():
    return EventProcessor()


class TestDecodeMessageSent:
    """Tests for MessageSent decoding."""

    def test_decodes_all_fields(self, processor):
        message = make_message(7, fee=10**18, value=5)

        decoded = processor.decode_message_sent(make_message_sent_event(message))

        assert decoded == message
        assert decoded.status == MessageStatus.PENDING
        assert processor.get_stats() == {"decoded": 1, "failed": 0}

    def test_lowercase_addresses_are_checksummed(self, processor):
        message = make_message(1)
        event = make_message_sent_event(message)
        event["args"]["_to"] = message.destination.lower()

        assert processor.decode_message_sent(event).destination == message.destination

    def test_string_transaction_hash(self, processor):
        message = make_message(1)
        event = make_message_sent_event(message)
        event["transactionHash"] = message.transaction_hash

        assert processor.decode_message_sent(event).transaction_hash == message.transaction_hash

    def test_missing_field_raises_decode_error(self, processor):
        event = make_message_sent_event(make_message(1))
        del event["args"]["_nonce"]

        with pytest.raises(DecodeError, match="MessageSent"):
            processor.decode_message_sent(event)
        assert processor.get_stats()["failed"] == 1

    def test_missing_transaction_hash(self, processor):
        event = make_message_sent_event(make_message(1))
        event["transactionHash"] = None

        with pytest.raises(DecodeError, match="transaction hash"):
            processor.decode_message_sent(event)

    def test_invalid_address(self, processor):
        event = make_message_sent_event(make_message(1))
        event["args"]["_from"] = "not-an-address"

        with pytest.raises(DecodeError):
            processor.decode_message_sent(event)


class TestDecodeInboxBatch:
    """Tests for L1L2MessageHashesAddedToInbox decoding."""

    def test_decodes_hashes(self, processor):
        hashes = [message_hash(1), message_hash(2)]

        batch = processor.decode_inbox_batch(make_inbox_event(hashes, block_number=42))

        assert batch.message_hashes == tuple(hashes)
        assert batch.block_number == 42
        assert batch.transaction_hash == "0x" + "cd" * 32

    def test_empty_batch(self, processor):
        assert processor.decode_inbox_batch(make_inbox_event([])).message_hashes == ()

    def test_missing_hashes(self, processor):
        event = make_inbox_event([])
        event["args"] = {}

        with pytest.raises(DecodeError):
            processor.decode_inbox_batch(event)


class TestDecodeTreeChanged:
    """Tests for TreeChanged decoding."""

    def test_decodes_roots(self, processor):
        tree_changed = processor.decode_tree_changed(make_tree_changed_event(0x1234, block_number=9))

        assert tree_changed.pre_root == 0x1233
        assert tree_changed.post_root == 0x1234
        assert tree_changed.kind == 0
        assert tree_changed.block_number == 9

    def test_missing_block_number(self, processor):
        event = make_tree_changed_event(1)
        event["blockNumber"] = None

        with pytest.raises(DecodeError, match="block number"):
            processor.decode_tree_changed(event)

    def test_bad_transaction_hash_type(self, processor):
        event = make_tree_changed_event(1)
        event["transactionHash"] = 12345

        with pytest.raises(DecodeError, match="Unexpected transaction hash type"):
            processor.decode_tree_changed(event)

    def test_hexbytes_hash_is_prefixed(self, processor):
        event = make_tree_changed_event(1)
        event["transactionHash"] = HexBytes("0x" + "01" * 32)

        assert processor.decode_tree_changed(event).transaction_hash == "0x" + "01" * 32
