"""Swap service backing the HTTP endpoints.

Translates request contracts into pipeline calls:
- Quotes are fetched from the aggregator and returned verbatim
- Swaps are executed server-side with the key the client supplies, which is
  destroyed once the transaction is signed
- Token account creation transactions signed by the client are broadcast

A swap that has been started always runs to completion, even if the HTTP
caller goes away; the outcome is then only logged.
"""

import asyncio
import logging
from typing import Optional

import httpx
from solders.pubkey import Pubkey

from solswap.config import Settings
from solswap.errors import InvalidRequest, SigningError
from solswap.routing.base import Aggregator, Quote
from solswap.routing.jupiter import JupiterAggregator
from solswap.rpc.client import SolanaRpcClient
from solswap.swap.executor import ExecutionOutcome
from solswap.swap.pipeline import SwapPipeline
from solswap.swap.signer import SigningKey
from solswap.swap.token_accounts import submit_prerequisite_transaction
from solswap.web.contracts.swaps import (
    CreateTokenAccountsRequest,
    QuoteRequest,
    SwapRequest,
)

logger = logging.getLogger(__name__)


def _parse_address(value: str, field: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as e:
        raise InvalidRequest(f"{field} is not a valid Solana address", details={field: value}) from e


def _log_undeliverable(task: "asyncio.Task[ExecutionOutcome]") -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Swap finished after client disconnect with error: {error}")
    else:
        logger.warning(f"Swap finished after client disconnect, outcome undeliverable: {task.result()}")


class SwapService:
    """Entry point for quote, swap and token account operations."""

    def __init__(
        self,
        aggregator: Aggregator,
        rpc: SolanaRpcClient,
        pipeline: SwapPipeline,
        backup_rpc: Optional[SolanaRpcClient] = None,
        token_account_max_retries: int = 5,
    ):
        self.aggregator = aggregator
        self.rpc = rpc
        self.pipeline = pipeline
        self.backup_rpc = backup_rpc
        self.token_account_max_retries = token_account_max_retries

    @classmethod
    def from_settings(cls, http: httpx.AsyncClient, settings: Settings) -> "SwapService":
        """Wire a service against the configured aggregator and RPC endpoints."""
        aggregator = JupiterAggregator(
            http,
            base_url=settings.jupiter_api_url,
            api_key=settings.jupiter_api_key or None,
            default_slippage_bps=settings.default_slippage_bps,
            dynamic_compute_unit_limit=settings.dynamic_compute_unit_limit,
            wrap_and_unwrap_sol=settings.wrap_and_unwrap_sol,
        )
        rpc = SolanaRpcClient(
            http,
            settings.solana_rpc_url,
            commitment=settings.commitment,
            poll_interval=settings.confirm_poll_interval,
        )
        backup_rpc = None
        if settings.solana_backup_rpc_url:
            backup_rpc = SolanaRpcClient(
                http,
                settings.solana_backup_rpc_url,
                commitment=settings.commitment,
                poll_interval=settings.confirm_poll_interval,
            )
        pipeline = SwapPipeline(
            aggregator,
            rpc,
            priority_fee_micro_lamports=settings.priority_fee_micro_lamports,
            send_max_retries=settings.send_max_retries,
            wrap_and_unwrap_sol=settings.wrap_and_unwrap_sol,
            commitment=settings.commitment,
        )
        return cls(
            aggregator,
            rpc,
            pipeline,
            backup_rpc=backup_rpc,
            token_account_max_retries=settings.token_account_max_retries,
        )

    async def get_quote(self, request: QuoteRequest) -> dict:
        """Fetch a quote and return the aggregator payload unchanged."""
        logger.info(
            f"Quote request: {request.amount} {request.input_mint} -> {request.output_mint}"
        )
        quote = await self.aggregator.get_quote(
            request.input_mint,
            request.output_mint,
            request.amount,
            request.slippage_bps,
        )
        return quote.to_api()

    async def execute_swap(self, request: SwapRequest) -> ExecutionOutcome:
        """Execute a quoted swap with the client's key.

        Without ``userPrivateKey`` only the token account check runs for
        ``userPublicKey``; nothing is signed or sent.

        Raises:
            SigningError: Key is malformed or does not match userPublicKey
            InvalidRequest: Quote or recipient cannot be used, or no key was
                given for a swap that is ready to execute
        """
        quote = self.aggregator.quote_from_api(request.quote_response)
        recipient = (
            _parse_address(request.recipient_address, "recipientAddress")
            if request.recipient_address
            else None
        )

        if request.user_private_key is None:
            return await self._check_accounts(quote, request.user_public_key, recipient)

        signing_key = SigningKey.from_base64(request.user_private_key.get_secret_value())
        if request.user_public_key and str(signing_key.pubkey) != request.user_public_key:
            signing_key.destroy()
            raise SigningError(
                "userPrivateKey does not belong to userPublicKey",
                details={"userPublicKey": request.user_public_key},
            )

        logger.info(
            f"Swap request from {signing_key.pubkey}: {quote.in_amount} {quote.input_mint} -> "
            f"{quote.output_mint}" + (f" for {recipient}" if recipient else "")
        )

        task = asyncio.ensure_future(self.pipeline.execute_swap(quote, signing_key, recipient))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.warning(f"Client disconnected during swap from {signing_key.pubkey}, finishing anyway")
            task.add_done_callback(_log_undeliverable)
            raise

    async def _check_accounts(
        self,
        quote: Quote,
        user_public_key: str,
        recipient: Optional[Pubkey],
    ) -> ExecutionOutcome:
        payer = _parse_address(user_public_key, "userPublicKey")
        logger.info(
            f"Token account check for {payer}: {quote.in_amount} {quote.input_mint} -> {quote.output_mint}"
        )
        outcome = await self.pipeline.check_prerequisites(quote, payer, recipient)
        if outcome is None:
            raise InvalidRequest(
                "Token accounts are ready; userPrivateKey is required to execute the swap",
                details={"userPublicKey": user_public_key},
            )
        return outcome

    async def create_token_accounts(self, request: CreateTokenAccountsRequest) -> str:
        """Broadcast a client-signed token account creation transaction."""
        return await submit_prerequisite_transaction(
            self.rpc,
            request.signed_transaction,
            max_retries=self.token_account_max_retries,
            backup_rpc=self.backup_rpc,
        )
