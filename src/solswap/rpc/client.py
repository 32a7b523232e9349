"""Minimal async Solana JSON-RPC client.

Speaks raw JSON-RPC over a shared httpx client instead of pulling in a full
SDK; only the handful of methods the swap pipeline needs are wrapped.
Transaction bytes are always exchanged base64 encoded.
"""

import asyncio
import base64
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from solders.hash import Hash
from solders.pubkey import Pubkey

from solswap.errors import Expired, RpcError, UpstreamError

logger = logging.getLogger(__name__)

# Ordered weakest to strongest
COMMITMENT_LEVELS = ("processed", "confirmed", "finalized")


def commitment_reached(status: Optional[str], target: str) -> bool:
    """Check whether a reported confirmation status satisfies ``target``."""
    if status not in COMMITMENT_LEVELS:
        return False
    return COMMITMENT_LEVELS.index(status) >= COMMITMENT_LEVELS.index(target)


@dataclass(frozen=True)
class BlockhashInfo:
    blockhash: Hash
    last_valid_block_height: int


@dataclass(frozen=True)
class AccountInfo:
    owner: Pubkey
    data: bytes
    lamports: int = 0


@dataclass
class SimulationResult:
    """Outcome of simulateTransaction."""

    err: Optional[Any] = None
    logs: list[str] = field(default_factory=list)
    units_consumed: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.err is None


@dataclass(frozen=True)
class SignatureStatus:
    err: Optional[Any]
    confirmation_status: Optional[str]
    slot: Optional[int] = None


class SolanaRpcClient:
    """Solana JSON-RPC client bound to one endpoint."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        url: str,
        commitment: str = "confirmed",
        poll_interval: float = 1.0,
    ):
        """Initialize RPC client.

        Args:
            http: Shared HTTP client
            url: RPC endpoint URL
            commitment: Default commitment for reads and confirmation
            poll_interval: Seconds between confirmation polls
        """
        self.http = http
        self.url = url
        self.commitment = commitment
        self.poll_interval = poll_interval
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: Optional[list] = None) -> Any:
        """Perform one JSON-RPC call and return its ``result``.

        Raises:
            RpcError: The node answered with a JSON-RPC error object
            UpstreamError: Transport failure, non-200 status or garbage body
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        try:
            response = await self.http.post(self.url, json=payload)
        except httpx.HTTPError as e:
            logger.warning(f"Solana RPC {method} transport error: {e}")
            raise UpstreamError(f"Solana RPC {method} failed: {e}") from e

        if response.status_code != 200:
            logger.warning(f"Solana RPC {method} HTTP {response.status_code}: {response.text[:200]}")
            raise UpstreamError(f"Solana RPC {method} returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamError(f"Solana RPC {method} returned invalid JSON") from e

        if not isinstance(body, dict):
            raise UpstreamError(f"Solana RPC {method} returned unexpected payload")
        if body.get("error"):
            error = body["error"]
            if isinstance(error, dict):
                raise RpcError(method, error.get("code"), str(error.get("message", error)), error.get("data"))
            raise RpcError(method, None, str(error))
        if "result" not in body:
            raise UpstreamError(f"Solana RPC {method} response has no result")
        return body["result"]

    async def get_latest_blockhash(self, commitment: Optional[str] = None) -> BlockhashInfo:
        result = await self._call(
            "getLatestBlockhash", [{"commitment": commitment or self.commitment}]
        )
        try:
            value = result["value"]
            return BlockhashInfo(
                blockhash=Hash.from_string(value["blockhash"]),
                last_valid_block_height=int(value["lastValidBlockHeight"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(f"Malformed getLatestBlockhash result: {e}") from e

    async def get_block_height(self, commitment: Optional[str] = None) -> int:
        result = await self._call("getBlockHeight", [{"commitment": commitment or self.commitment}])
        try:
            return int(result)
        except (TypeError, ValueError) as e:
            raise UpstreamError(f"Malformed getBlockHeight result: {result!r}") from e

    @staticmethod
    def _parse_account(raw: Any) -> Optional[AccountInfo]:
        if raw is None:
            return None
        try:
            data, encoding = raw["data"]
            if encoding != "base64":
                raise ValueError(f"unexpected encoding {encoding}")
            return AccountInfo(
                owner=Pubkey.from_string(raw["owner"]),
                data=base64.b64decode(data),
                lamports=int(raw.get("lamports", 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(f"Malformed account info: {e}") from e

    async def get_account_info(self, address: Pubkey) -> Optional[AccountInfo]:
        """Fetch one account, or None when it does not exist."""
        result = await self._call(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self.commitment}],
        )
        if not isinstance(result, dict):
            raise UpstreamError("Malformed getAccountInfo result")
        return self._parse_account(result.get("value"))

    async def get_multiple_accounts(self, addresses: list[Pubkey]) -> list[Optional[AccountInfo]]:
        """Fetch several accounts in one round trip.

        Returns:
            One entry per address, in order; None for accounts that do not exist
        """
        if not addresses:
            return []
        result = await self._call(
            "getMultipleAccounts",
            [[str(a) for a in addresses], {"encoding": "base64", "commitment": self.commitment}],
        )
        values = result.get("value") if isinstance(result, dict) else None
        if not isinstance(values, list) or len(values) != len(addresses):
            raise UpstreamError("Malformed getMultipleAccounts result")
        return [self._parse_account(v) for v in values]

    async def simulate_transaction(self, tx_bytes: bytes) -> SimulationResult:
        """Simulate a signed transaction.

        Signature verification is skipped and the blockhash is replaced by
        the node, so simulation does not depend on blockhash freshness.
        """
        result = await self._call(
            "simulateTransaction",
            [
                base64.b64encode(tx_bytes).decode(),
                {
                    "encoding": "base64",
                    "sigVerify": False,
                    "replaceRecentBlockhash": True,
                    "commitment": self.commitment,
                },
            ],
        )
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, dict):
            raise UpstreamError("Malformed simulateTransaction result")
        return SimulationResult(
            err=value.get("err"),
            logs=list(value.get("logs") or []),
            units_consumed=value.get("unitsConsumed"),
        )

    async def send_raw_transaction(self, tx_bytes: bytes, max_retries: Optional[int] = None) -> str:
        """Broadcast a signed transaction with preflight checks enabled.

        Returns:
            Transaction signature (base58)
        """
        opts = {
            "encoding": "base64",
            "skipPreflight": False,
            "preflightCommitment": self.commitment,
        }
        if max_retries is not None:
            opts["maxRetries"] = max_retries
        result = await self._call("sendTransaction", [base64.b64encode(tx_bytes).decode(), opts])
        if not isinstance(result, str):
            raise UpstreamError("Malformed sendTransaction result")
        logger.info(f"Solana tx broadcast via {self.url.split('?', 1)[0]}: {result}")
        return result

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        result = await self._call(
            "getSignatureStatuses", [[signature], {"searchTransactionHistory": False}]
        )
        values = result.get("value") if isinstance(result, dict) else None
        if not isinstance(values, list) or not values:
            raise UpstreamError("Malformed getSignatureStatuses result")
        raw = values[0]
        if raw is None:
            return None
        return SignatureStatus(
            err=raw.get("err"),
            confirmation_status=raw.get("confirmationStatus"),
            slot=raw.get("slot"),
        )

    async def _read_status(self, signature: str, target: str) -> Optional[SignatureStatus]:
        """Final status for ``signature``, or None while it is still pending.

        Read failures count as pending; the blockhash window bounds the wait.
        """
        try:
            status = await self.get_signature_status(signature)
        except UpstreamError as e:
            logger.warning(f"Status read for {signature} failed, still polling: {e.message}")
            return None
        if status is not None and (
            status.err is not None or commitment_reached(status.confirmation_status, target)
        ):
            return status
        return None

    async def confirm_transaction(
        self,
        signature: str,
        last_valid_block_height: int,
        commitment: Optional[str] = None,
    ) -> SignatureStatus:
        """Wait until ``signature`` reaches ``commitment`` or its blockhash expires.

        A status carrying an ``err`` is returned as soon as it is seen; the
        caller decides what an on-chain failure means. Transient RPC errors
        while polling do not end the wait.

        Raises:
            Expired: Block height passed ``last_valid_block_height`` first
        """
        target = commitment or self.commitment
        while True:
            status = await self._read_status(signature, target)
            if status is not None:
                return status

            try:
                height = await self.get_block_height()
            except UpstreamError as e:
                logger.warning(f"Block height read failed while confirming {signature}: {e.message}")
                height = None

            if height is not None and height > last_valid_block_height:
                # The transaction may have landed between the two reads
                status = await self._read_status(signature, target)
                if status is not None:
                    return status
                logger.warning(
                    f"Blockhash for {signature} expired at height {height} "
                    f"(last valid {last_valid_block_height})"
                )
                raise Expired(
                    "Transaction was not confirmed before its blockhash expired",
                    details={"signature": signature, "last_valid_block_height": last_valid_block_height},
                )

            await asyncio.sleep(self.poll_interval)
