"""
Chain gateway: the relayer's only path to a JSON-RPC endpoint.

Wraps an AsyncWeb3 connection with endpoint failover, bounded timeouts,
typed errors and transaction signing. Contracts are described by address and
ABI on every call so a rotation to a new endpoint needs no rebinding.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import aiohttp
from eth_account.datastructures import SignedTransaction
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
    Web3RPCError,
)
from web3.types import EventData, TxReceipt

from ..exceptions import (
    RangeTooLargeError,
    ReceiptTimeoutError,
    RelayerError,
    RevertError,
    RpcError,
    UnderpricedTransactionError,
    UnpredictableGasError,
)
from .retry_policy import RetryPolicy
from .revert_classifier import RevertClassifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors that mean the endpoint itself is unusable
CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    ProviderConnectionError,
    aiohttp.ClientError,
    asyncio.TimeoutError,
    ConnectionError,
    OSError,
)

RANGE_ERROR_CODES = {-32005}
RANGE_ERROR_MARKERS = (
    "block range",
    "range is too large",
    "range too large",
    "query returned more than",
    "response size exceeded",
    "too many blocks",
)
UNDERPRICED_MARKERS = (
    "underpriced",
    "fee too low",
    "less than block base fee",
    "max fee per gas less than",
)
ALREADY_KNOWN_MARKERS = ("already known", "known transaction")


def bump_fees(fee_hints: dict[str, int], percent: int) -> dict[str, int]:
    """Raise every fee field by ``percent``, rounding up by at least one wei."""
    return {
        key: max(value * (100 + percent) // 100, value + 1)
        for key, value in fee_hints.items()
    }


def _rpc_error_details(error: Web3RPCError) -> tuple[int | None, str]:
    response = getattr(error, "rpc_response", None) or {}
    detail = response.get("error") if isinstance(response, dict) else None
    if isinstance(detail, dict):
        return detail.get("code"), str(detail.get("message", error))
    return None, str(error)


class ChainGateway:
    """
    Async access to one chain through a round-robin list of RPC endpoints.

    Any connection failure rotates to the next endpoint and re-issues the
    call there; each endpoint is tried at most once per call.
    """

    RECEIPT_POLL_LATENCY = 2.0  # seconds

    def __init__(
        self,
        name: str,
        rpc_urls: Sequence[str],
        account: LocalAccount | None = None,
        request_timeout: float = 30,
        receipt_timeout: float = 180,
        retry_policy: RetryPolicy | None = None,
        revert_classifier: RevertClassifier | None = None,
        fee_bump_percent: int = 15,
    ) -> None:
        """
        Initialize the gateway.

        Args:
            name: Chain label used in logs
            rpc_urls: HTTP(S) JSON-RPC endpoints, first one preferred
            account: Signing account, required for transactions
            request_timeout: Upper bound in seconds for a single RPC call
            receipt_timeout: Upper bound in seconds for a confirmation wait
            retry_policy: Policy applied by ``retry``
            revert_classifier: Splits reverts into retryable and permanent
            fee_bump_percent: Fee increase applied to underpriced resubmissions
        """
        if not rpc_urls:
            raise ValueError(f"{name} gateway needs at least one RPC URL")

        self.name = name
        self.rpc_urls = list(rpc_urls)
        self.account = account
        self.request_timeout = request_timeout
        self.receipt_timeout = receipt_timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.revert_classifier = revert_classifier or RevertClassifier(())
        self.fee_bump_percent = fee_bump_percent

        self._endpoint_index = 0
        # One client per endpoint, reused across rotations
        self._clients: dict[str, AsyncWeb3] = {}
        self.rotations = 0

    @property
    def endpoint(self) -> str:
        return self.rpc_urls[self._endpoint_index]

    @property
    def w3(self) -> AsyncWeb3:
        endpoint = self.endpoint
        if endpoint not in self._clients:
            self._clients[endpoint] = self._make_web3(endpoint)
        return self._clients[endpoint]

    def _make_web3(self, url: str) -> AsyncWeb3:
        return AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(url))

    def _rotate(self, failed_endpoint: str) -> None:
        # Another task may already have moved past the failed endpoint
        if self.endpoint != failed_endpoint:
            return
        self._endpoint_index = (self._endpoint_index + 1) % len(self.rpc_urls)
        self.rotations += 1
        logger.warning(f"[{self.name}] Switched RPC endpoint {failed_endpoint} -> {self.endpoint}")

    def _require_account(self) -> LocalAccount:
        if self.account is None:
            raise RelayerError(f"{self.name} gateway has no signing account")
        return self.account

    def _translate_rpc_error(self, label: str, endpoint: str, error: Web3RPCError) -> RpcError:
        code, message = _rpc_error_details(error)
        lowered = message.lower()
        text = f"[{self.name}] {label} rejected by {endpoint}: {message}"
        if code in RANGE_ERROR_CODES or any(marker in lowered for marker in RANGE_ERROR_MARKERS):
            return RangeTooLargeError(text, endpoint=endpoint)
        if any(marker in lowered for marker in UNDERPRICED_MARKERS):
            return UnderpricedTransactionError(text, endpoint=endpoint)
        return RpcError(text, endpoint=endpoint)

    async def _execute(
        self,
        label: str,
        operation: Callable[[AsyncWeb3], Awaitable[T]],
        timeout: float | None = None,
    ) -> T:
        """
        Run one RPC operation with a timeout, failing over across endpoints.

        Contract reverts and JSON-RPC error responses are not connection
        problems and are never re-issued on another endpoint.

        Raises:
            RpcError: If every endpoint failed or the node returned an error
            ContractLogicError: If the call reverted (translated by callers)
        """
        timeout = timeout or self.request_timeout
        failures: list[str] = []

        for _ in range(len(self.rpc_urls)):
            endpoint = self.endpoint
            try:
                return await asyncio.wait_for(operation(self.w3), timeout=timeout)
            except (ContractLogicError, BadFunctionCallOutput, TimeExhausted):
                raise
            except Web3RPCError as e:
                raise self._translate_rpc_error(label, endpoint, e) from e
            except CONNECTION_ERRORS as e:
                failures.append(f"{endpoint}: {e!r}")
                logger.warning(f"[{self.name}] {label} failed on {endpoint}: {e!r}")
                self._rotate(endpoint)

        raise RpcError(
            f"[{self.name}] {label} failed on all {len(self.rpc_urls)} endpoints: "
            + "; ".join(failures)
        )

    async def retry(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        """
        Apply the retry policy to a whole operation.

        Only transport errors are retried; reverts and unpredictable gas
        propagate on the first occurrence.
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except RelayerError as e:
                if not self.retry_policy.should_retry(attempt, e):
                    raise
                delay = self.retry_policy.delay_for(attempt)
                logger.warning(
                    f"[{self.name}] {label} failed (attempt {attempt}/{self.retry_policy.max_attempts}): "
                    f"{e}. Retrying in {delay}s"
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def current_height(self) -> int:
        return await self._execute("block_number", lambda w3: w3.eth.block_number)

    async def query_logs(
        self,
        address: str,
        abi: list[dict[str, Any]],
        event_name: str,
        from_block: int,
        to_block: int,
        argument_filters: dict[str, Any] | None = None,
    ) -> list[EventData]:
        """
        Fetch decoded logs of one event over an inclusive block range.

        Returns:
            Events sorted by block number and log index

        Raises:
            RangeTooLargeError: If the endpoint refuses the span
            RpcError: On transport failure
        """
        async def _get_logs(w3: AsyncWeb3) -> list[EventData]:
            contract = w3.eth.contract(address=address, abi=abi)
            event = getattr(contract.events, event_name)
            return await event.get_logs(
                from_block=from_block,
                to_block=to_block,
                argument_filters=argument_filters,
            )

        logs = await self._execute(f"get_logs {event_name} {from_block}-{to_block}", _get_logs)
        return sorted(logs, key=lambda log: (log["blockNumber"], log["logIndex"]))

    async def call(
        self,
        address: str,
        abi: list[dict[str, Any]],
        fn_name: str,
        *args: Any,
    ) -> Any:
        """Call a view function.

        Raises:
            RevertError: If the call reverted or returned nothing
        """
        async def _call(w3: AsyncWeb3) -> Any:
            contract = w3.eth.contract(address=address, abi=abi)
            return await getattr(contract.functions, fn_name)(*args).call()

        try:
            return await self._execute(f"call {fn_name}", _call)
        except (ContractLogicError, BadFunctionCallOutput) as e:
            raise self.revert_classifier.classify(e) from e

    async def estimate_gas(
        self,
        address: str,
        abi: list[dict[str, Any]],
        fn_name: str,
        *args: Any,
        value: int = 0,
    ) -> int:
        """Estimate gas for a state-changing call from the signing account.

        Raises:
            UnpredictableGasError: If the call would revert
        """
        sender = self._require_account().address

        async def _estimate(w3: AsyncWeb3) -> int:
            contract = w3.eth.contract(address=address, abi=abi)
            return await getattr(contract.functions, fn_name)(*args).estimate_gas(
                {"from": sender, "value": value}
            )

        try:
            return await self._execute(f"estimate_gas {fn_name}", _estimate)
        except (ContractLogicError, BadFunctionCallOutput) as e:
            revert = self.revert_classifier.classify(e)
            raise UnpredictableGasError(
                f"[{self.name}] Gas estimation for {fn_name} reverted: {revert}", revert
            ) from e

    async def fee_hints(self) -> dict[str, int]:
        """EIP-1559 fee fields, or a legacy gas price on chains without a base fee."""
        async def _fees(w3: AsyncWeb3) -> dict[str, int]:
            block = await w3.eth.get_block("latest")
            base_fee = block.get("baseFeePerGas")
            if base_fee is None:
                return {"gasPrice": await w3.eth.gas_price}
            priority_fee = await w3.eth.max_priority_fee
            return {
                "maxFeePerGas": 2 * base_fee + priority_fee,
                "maxPriorityFeePerGas": priority_fee,
            }

        return await self._execute("fee_hints", _fees)

    async def send_transaction(
        self,
        address: str,
        abi: list[dict[str, Any]],
        fn_name: str,
        *args: Any,
        gas: int,
        value: int = 0,
        fee_hints: dict[str, int] | None = None,
    ) -> str:
        """
        Sign and broadcast a contract call.

        If the node rejects the transaction as underpriced the fees are bumped
        and the transaction is rebuilt, up to the retry policy's attempt limit.

        Returns:
            Transaction hash as 0x-prefixed hex
        """
        hints = fee_hints or await self.fee_hints()
        attempts = self.retry_policy.max_attempts

        for attempt in range(1, attempts + 1):
            signed = await self._build_and_sign(address, abi, fn_name, args, gas, value, hints)
            try:
                tx_hash = await self._broadcast(signed, fn_name)
            except UnderpricedTransactionError as e:
                if attempt == attempts:
                    raise
                hints = bump_fees(hints, self.fee_bump_percent)
                logger.warning(
                    f"[{self.name}] {fn_name} underpriced ({e}), "
                    f"resubmitting with fees {hints} (attempt {attempt + 1}/{attempts})"
                )
                continue

            logger.info(f"[{self.name}] Sent {fn_name} tx_hash={tx_hash} gas={gas} value={value}")
            return tx_hash

        raise AssertionError("unreachable")

    async def _build_and_sign(
        self,
        address: str,
        abi: list[dict[str, Any]],
        fn_name: str,
        args: tuple[Any, ...],
        gas: int,
        value: int,
        fee_hints: dict[str, int],
    ) -> SignedTransaction:
        account = self._require_account()

        async def _build(w3: AsyncWeb3) -> SignedTransaction:
            contract = w3.eth.contract(address=address, abi=abi)
            nonce = await w3.eth.get_transaction_count(account.address, "pending")
            chain_id = await w3.eth.chain_id
            tx = await getattr(contract.functions, fn_name)(*args).build_transaction({
                "from": account.address,
                "value": value,
                "gas": gas,
                "nonce": nonce,
                "chainId": chain_id,
                **fee_hints,
            })
            return account.sign_transaction(tx)

        return await self._execute(f"build {fn_name}", _build)

    async def _broadcast(self, signed: SignedTransaction, fn_name: str) -> str:
        tx_hash = Web3.to_hex(signed.hash)
        try:
            await self._execute(
                f"send {fn_name}",
                lambda w3: w3.eth.send_raw_transaction(signed.raw_transaction),
            )
        except RpcError as e:
            # The same signed bytes reached the node through an earlier endpoint
            if any(marker in str(e).lower() for marker in ALREADY_KNOWN_MARKERS):
                logger.info(f"[{self.name}] {fn_name} tx_hash={tx_hash} already known to node")
                return tx_hash
            raise
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        """Wait for one confirmation of a transaction.

        Raises:
            ReceiptTimeoutError: If no receipt arrives within ``receipt_timeout``
        """
        try:
            return await self._execute(
                f"receipt {tx_hash}",
                lambda w3: w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=self.receipt_timeout, poll_latency=self.RECEIPT_POLL_LATENCY
                ),
                timeout=self.receipt_timeout + self.request_timeout,
            )
        except TimeExhausted as e:
            raise ReceiptTimeoutError(tx_hash, self.receipt_timeout) from e

    async def replay_revert(
        self,
        address: str,
        abi: list[dict[str, Any]],
        fn_name: str,
        *args: Any,
        value: int = 0,
        block_identifier: int | str = "latest",
    ) -> RevertError | None:
        """
        Re-execute a call with eth_call to recover why a mined transaction reverted.

        Returns:
            The classified revert, or None if the call no longer reverts
        """
        sender = self._require_account().address

        async def _replay(w3: AsyncWeb3) -> Any:
            contract = w3.eth.contract(address=address, abi=abi)
            return await getattr(contract.functions, fn_name)(*args).call(
                {"from": sender, "value": value},
                block_identifier=block_identifier,
            )

        try:
            await self._execute(f"replay {fn_name}", _replay)
        except (ContractLogicError, BadFunctionCallOutput) as e:
            return self.revert_classifier.classify(e)
        return None

    async def close(self) -> None:
        """Disconnect every provider opened so far."""
        clients, self._clients = self._clients, {}
        for endpoint, w3 in clients.items():
            try:
                await w3.provider.disconnect()
            except CONNECTION_ERRORS as e:
                logger.warning(f"[{self.name}] Error closing connection to {endpoint}: {e!r}")

    def get_status(self) -> dict[str, Any]:
        return {
            "chain": self.name,
            "endpoint": self.endpoint,
            "endpoints": len(self.rpc_urls),
            "rotations": self.rotations,
        }
