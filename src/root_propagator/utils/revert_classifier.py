"""
Classification of contract reverts by error selector.

Reverts are never classified by their message text. The 4-byte selector of
the revert data is looked up in a configured set of transient errors; anything
else, including reverts without data, is treated as permanent.
"""

import logging
from collections.abc import Iterable
from typing import Any

from web3 import Web3

from ..exceptions import NonRetryableRevertError, RetryableRevertError, RevertError

logger = logging.getLogger(__name__)

ERROR_STRING_SELECTOR = "0x08c379a0"  # Error(string)
PANIC_SELECTOR = "0x4e487b71"  # Panic(uint256)


def error_selector(signature: str) -> str:
    """Compute the 0x-prefixed 4-byte selector of a Solidity error signature."""
    return Web3.to_hex(Web3.keccak(text=signature)[:4])


def extract_selector(error: BaseException) -> str | None:
    """
    Pull the revert selector out of a web3 contract error.

    Args:
        error: Typically a ContractLogicError or ContractCustomError

    Returns:
        Lowercase 0x-prefixed selector, or None if the error carries no revert data
    """
    data: Any = getattr(error, "data", None)
    if isinstance(data, dict):
        data = data.get("data")
    if isinstance(data, (bytes, bytearray)):
        data = "0x" + bytes(data).hex()
    if not isinstance(data, str):
        return None
    if not data.startswith("0x"):
        data = "0x" + data
    if len(data) < 10:
        return None
    return data[:10].lower()


class RevertClassifier:
    """Splits reverts into retryable and non-retryable by selector."""

    def __init__(self, retryable_signatures: Iterable[str]) -> None:
        """
        Initialize the classifier.

        Args:
            retryable_signatures: Error signatures such as ``RateLimitExceeded(uint256)``
        """
        self.retryable: dict[str, str] = {
            error_selector(signature): signature for signature in retryable_signatures
        }
        self.known: dict[str, str] = {
            ERROR_STRING_SELECTOR: "Error(string)",
            PANIC_SELECTOR: "Panic(uint256)",
            **self.retryable,
        }

    def describe(self, selector: str | None) -> str:
        if selector is None:
            return "no revert data"
        return self.known.get(selector, f"unknown error {selector}")

    def classify(self, error: BaseException) -> RevertError:
        """
        Wrap a web3 revert into a RetryableRevertError or NonRetryableRevertError.

        Args:
            error: The exception raised by web3

        Returns:
            The classified revert; unclassified reverts are non-retryable
        """
        if isinstance(error, RevertError):
            return error

        selector = extract_selector(error)
        reason = getattr(error, "message", None) or str(error)
        message = f"{reason} ({self.describe(selector)})"
        if selector in self.retryable:
            return RetryableRevertError(message, selector=selector)
        return NonRetryableRevertError(message, selector=selector)
