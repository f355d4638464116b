"""
Retry policy shared by every RPC call site.

The policy is pure: it only answers how many attempts are allowed and how long
to wait before the next one. The chain gateway applies it.
"""

from dataclasses import dataclass

from ..exceptions import RangeTooLargeError, RpcError, UnderpricedTransactionError


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded retries with linear backoff.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Seconds to wait after the first failure; the n-th retry
            waits ``base_delay * n``
    """
    max_attempts: int = 3
    base_delay: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return self.base_delay * attempt

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        """Whether another attempt is allowed after ``error`` on ``attempt``."""
        if attempt >= self.max_attempts:
            return False
        # Narrower ranges and bumped fees are handled by the callers themselves
        if isinstance(error, (RangeTooLargeError, UnderpricedTransactionError)):
            return False
        return isinstance(error, RpcError)

    def delays(self) -> list[float]:
        return [self.delay_for(attempt) for attempt in range(1, self.max_attempts)]
