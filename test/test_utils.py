#!/usr/bin/env python3
"""Tests for the retry policy, revert classifier and small helpers."""

import pytest
from hexbytes import HexBytes
from web3.exceptions import ContractLogicError

from root_propagator.exceptions import (
    NonRetryableRevertError,
    RangeTooLargeError,
    RetryableRevertError,
    RevertError,
    RpcError,
    UnderpricedTransactionError,
    UnpredictableGasError,
)
from root_propagator.utils.contract_utility import ContractUtility
from root_propagator.utils.hex_utility import to_bytes32, to_hex_string
from root_propagator.utils.retry_policy import RetryPolicy
from root_propagator.utils.revert_classifier import (
    ERROR_STRING_SELECTOR,
    RevertClassifier,
    error_selector,
    extract_selector,
)


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_linear_backoff(self):
        assert RetryPolicy(max_attempts=4, base_delay=2.0).delays() == [2.0, 4.0, 6.0]

    def test_transport_errors_retried_up_to_max_attempts(self):
        policy = RetryPolicy(max_attempts=3)

        assert policy.should_retry(1, RpcError("down")) is True
        assert policy.should_retry(2, RpcError("down")) is True
        assert policy.should_retry(3, RpcError("down")) is False

    @pytest.mark.parametrize("error", [
        NonRetryableRevertError("reverted"),
        RetryableRevertError("rate limited"),
        UnpredictableGasError("reverted", RetryableRevertError("rate limited")),
        RangeTooLargeError("too wide"),
        UnderpricedTransactionError("underpriced"),
        ValueError("bug"),
    ])
    def test_other_errors_not_retried(self, error):
        assert RetryPolicy().should_retry(1, error) is False


class TestRevertClassifier:
    """Tests for selector based revert classification."""

    def test_error_selector(self):
        assert error_selector("Error(string)") == ERROR_STRING_SELECTOR

    @pytest.mark.parametrize("data, expected", [
        ("0x08c379a0" + "00" * 64, "0x08c379a0"),
        ("08C379A0", "0x08c379a0"),
        (HexBytes("0x4e487b71" + "00" * 32), "0x4e487b71"),
        ({"data": "0xdeadbeef"}, "0xdeadbeef"),
        ("0x", None),
        (None, None),
    ])
    def test_extract_selector(self, data, expected):
        assert extract_selector(ContractLogicError("execution reverted", data=data)) == expected

    def test_configured_selector_is_retryable(self):
        classifier = RevertClassifier(["RateLimitExceeded(uint256)"])
        selector = error_selector("RateLimitExceeded(uint256)")

        revert = classifier.classify(ContractLogicError("execution reverted", data=selector + "00" * 32))

        assert isinstance(revert, RetryableRevertError)
        assert revert.retryable is True
        assert revert.selector == selector
        assert "RateLimitExceeded(uint256)" in str(revert)

    def test_message_text_is_ignored(self):
        classifier = RevertClassifier(["RateLimitExceeded(uint256)"])

        revert = classifier.classify(ContractLogicError("execution reverted: RateLimitExceeded", data=None))

        assert isinstance(revert, NonRetryableRevertError)
        assert "no revert data" in str(revert)

    def test_unknown_selector_is_permanent(self):
        revert = RevertClassifier(()).classify(ContractLogicError("execution reverted", data="0x12345678"))

        assert isinstance(revert, NonRetryableRevertError)
        assert "unknown error 0x12345678" in str(revert)

    def test_classified_errors_pass_through(self):
        original = RetryableRevertError("already classified")

        assert RevertClassifier(()).classify(original) is original
        assert isinstance(original, RevertError)


class TestHexUtility:
    """Tests for hex conversion helpers."""

    @pytest.mark.parametrize("value", [
        HexBytes("0xABCD"),
        b"\xab\xcd",
        "0xABCD",
        "abcd",
    ])
    def test_to_hex_string(self, value):
        assert to_hex_string(value) == "0xabcd"

    def test_to_hex_string_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_hex_string("0xnothex")
        with pytest.raises(ValueError):
            to_hex_string(1234)

    def test_to_bytes32(self):
        assert to_bytes32("0x" + "01" * 32) == b"\x01" * 32

        with pytest.raises(ValueError, match="Expected 32 bytes"):
            to_bytes32("0x01")


class TestContractUtility:
    """Tests for ContractUtility."""

    @pytest.mark.parametrize("name, entry", [
        ("L1MessageService", "MessageSent"),
        ("L2MessageService", "claimMessage"),
        ("L2MessageService", "inboxL1L2MessageStatus"),
        ("LineaStateBridge", "propagateRoot"),
        ("WorldIDIdentityManager", "TreeChanged"),
        ("L2WorldIDBridge", "latestRoot"),
    ])
    def test_shipped_abis(self, name, entry):
        abi = ContractUtility().get_contract_abi(name)

        assert entry in {item.get("name") for item in abi}

    def test_missing_abi(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ContractUtility(tmp_path).get_contract_abi("Missing")

    def test_load_account(self):
        account = ContractUtility.load_account("0x" + "11" * 32)

        assert account.address.startswith("0x")
        assert len(account.address) == 42

    def test_load_account_requires_key(self):
        with pytest.raises(ValueError, match="Private key is required"):
            ContractUtility.load_account("")
