"""
Exception hierarchy for the root propagator.

Transport problems, reverts, decode failures and storage failures are kept
apart so callers can decide per class whether to retry, skip or abort.
"""


class RelayerError(Exception):
    """Base class for all relayer errors."""


class ConfigError(RelayerError, ValueError):
    """Invalid or missing configuration. Fatal at startup."""


class RpcError(RelayerError):
    """Transport-level failure talking to a JSON-RPC endpoint."""

    def __init__(self, message: str, endpoint: str | None = None) -> None:
        super().__init__(message)
        self.endpoint = endpoint


class RangeTooLargeError(RpcError):
    """The endpoint refused a log query because the block span is too wide."""


class UnderpricedTransactionError(RpcError):
    """The node rejected a transaction because its fees are too low."""


class ReceiptTimeoutError(RelayerError):
    """No receipt arrived for a submitted transaction within the bounded wait."""

    def __init__(self, tx_hash: str, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout}s waiting for receipt of {tx_hash}")
        self.tx_hash = tx_hash
        self.timeout = timeout


class RevertError(RelayerError):
    """A contract call reverted.

    Attributes:
        selector: 4-byte error selector as 0x-prefixed hex, None if the node
            returned no revert data
        retryable: Whether the revert is a transient on-chain condition
    """

    retryable = False

    def __init__(self, message: str, selector: str | None = None) -> None:
        super().__init__(message)
        self.selector = selector


class RetryableRevertError(RevertError):
    retryable = True


class NonRetryableRevertError(RevertError):
    retryable = False


class UnpredictableGasError(RelayerError):
    """Gas estimation failed because the call would revert.

    Must not be retried blindly; the wrapped revert says why.
    """

    def __init__(self, message: str, revert: RevertError) -> None:
        super().__init__(message)
        self.revert = revert

    @property
    def retryable(self) -> bool:
        return self.revert.retryable


class DecodeError(RelayerError):
    """A log could not be decoded into a domain event."""


class PersistenceError(RelayerError):
    """The message ledger could not complete an operation."""


class IllegalStatusTransition(RelayerError):
    """A ledger status change would move a message backwards."""

    def __init__(self, message_hash: str, current: str, requested: str) -> None:
        super().__init__(
            f"Illegal status transition for {message_hash}: {current} -> {requested}"
        )
        self.message_hash = message_hash
        self.current = current
        self.requested = requested
