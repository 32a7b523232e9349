"""Swap orchestration pipeline.

Drives one swap attempt from a quote to a final outcome:

    QUOTED -> INSTRUCTIONS_RESOLVED -> PREREQ_MISSING
                                    -> COMPOSED -> SIMULATED_OK -> SUBMITTED -> CONFIRMED
    (any non-terminal state) -> FAILED

Every stage raises typed SwapErrors; the pipeline turns them into a Failed
outcome so callers always get exactly one ExecutionOutcome back. Nothing is
retried: a retry is a new attempt with a fresh quote.
"""

import logging
from typing import Optional

from solders.pubkey import Pubkey

from solswap.errors import SwapError
from solswap.routing.base import Aggregator, InstructionSet, Quote
from solswap.rpc.client import SolanaRpcClient
from solswap.swap.composer import compose
from solswap.swap.executor import (
    Confirmed,
    ExecutionEngine,
    ExecutionOutcome,
    Failed,
    NeedsPrerequisiteAccounts,
)
from solswap.swap.lookup_tables import resolve_lookup_tables
from solswap.swap.signer import SigningKey
from solswap.swap.state import InvalidTransition, SwapAttempt, SwapState
from solswap.swap.token_accounts import PrerequisiteGate, associated_token_address

logger = logging.getLogger(__name__)

__all__ = [
    "InvalidTransition",
    "SwapAttempt",
    "SwapPipeline",
    "SwapState",
]


class SwapPipeline:
    """Composes the aggregator, gate, composer and execution engine."""

    def __init__(
        self,
        aggregator: Aggregator,
        rpc: SolanaRpcClient,
        priority_fee_micro_lamports: int = 0,
        send_max_retries: int = 2,
        wrap_and_unwrap_sol: bool = True,
        commitment: Optional[str] = None,
    ):
        self.aggregator = aggregator
        self.rpc = rpc
        self.priority_fee_micro_lamports = priority_fee_micro_lamports
        self.gate = PrerequisiteGate(rpc, wrap_and_unwrap_sol=wrap_and_unwrap_sol)
        self.engine = ExecutionEngine(rpc, send_max_retries=send_max_retries, commitment=commitment)

    async def execute_swap(
        self,
        quote: Quote,
        signing_key: SigningKey,
        recipient: Optional[Pubkey] = None,
    ) -> ExecutionOutcome:
        """Execute ``quote`` for the owner of ``signing_key``.

        The key is destroyed before this returns, whatever the outcome.

        Args:
            quote: Quote to execute
            signing_key: Payer's key
            recipient: Wallet receiving the output; defaults to the payer

        Returns:
            Confirmed, NeedsPrerequisiteAccounts or Failed
        """
        payer = signing_key.pubkey
        recipient = recipient or payer
        attempt = SwapAttempt(label=f"{quote.input_mint[:6]}->{quote.output_mint[:6]} by {str(payer)[:8]}")

        with signing_key:
            try:
                outcome = await self._run(attempt, quote, signing_key, payer, recipient)
            except SwapError as e:
                logger.warning(f"Swap {attempt.label} failed in {attempt.state.value}: {e.kind}: {e.message}")
                attempt.fail(e.kind)
                return Failed(e)

        if isinstance(outcome, Confirmed):
            attempt.advance(SwapState.CONFIRMED)
        elif isinstance(outcome, Failed):
            logger.warning(f"Swap {attempt.label} failed: {outcome.reason}")
            attempt.fail(outcome.reason)
        return outcome

    async def check_prerequisites(
        self,
        quote: Quote,
        payer: Pubkey,
        recipient: Optional[Pubkey] = None,
    ) -> Optional[ExecutionOutcome]:
        """Resolve instructions for ``payer`` and check its token accounts.

        Needs no key; nothing is signed or sent.

        Returns:
            NeedsPrerequisiteAccounts, Failed, or None when every account exists
        """
        recipient = recipient or payer
        attempt = SwapAttempt(label=f"{quote.input_mint[:6]}->{quote.output_mint[:6]} for {str(payer)[:8]}")
        try:
            _, needs_accounts = await self._resolve(attempt, quote, payer, recipient)
        except SwapError as e:
            logger.warning(f"Account check {attempt.label} failed: {e.kind}: {e.message}")
            attempt.fail(e.kind)
            return Failed(e)
        return needs_accounts

    async def _resolve(
        self,
        attempt: SwapAttempt,
        quote: Quote,
        payer: Pubkey,
        recipient: Pubkey,
    ) -> tuple[InstructionSet, Optional[NeedsPrerequisiteAccounts]]:
        destination = None
        if recipient != payer:
            destination = await associated_token_address(
                self.rpc, recipient, Pubkey.from_string(quote.output_mint)
            )

        instruction_set = await self.aggregator.get_swap_instructions(quote, payer, destination)
        attempt.advance(SwapState.INSTRUCTIONS_RESOLVED)

        check = await self.gate.check_prerequisites(instruction_set, payer, recipient)
        if not check.ok:
            attempt.advance(SwapState.PREREQ_MISSING)
            return instruction_set, NeedsPrerequisiteAccounts(
                unsigned_transaction=check.unsigned_transaction,
                missing_accounts=check.missing,
            )
        return instruction_set, None

    async def _run(
        self,
        attempt: SwapAttempt,
        quote: Quote,
        signing_key: SigningKey,
        payer: Pubkey,
        recipient: Pubkey,
    ) -> ExecutionOutcome:
        instruction_set, needs_accounts = await self._resolve(attempt, quote, payer, recipient)
        if needs_accounts is not None:
            return needs_accounts

        lookup_tables = await resolve_lookup_tables(
            self.rpc, list(instruction_set.lookup_table_addresses)
        )
        blockhash = await self.rpc.get_latest_blockhash()
        envelope = compose(
            payer,
            instruction_set,
            lookup_tables,
            blockhash,
            self.priority_fee_micro_lamports,
        )
        attempt.advance(SwapState.COMPOSED)

        return await self.engine.execute(envelope, signing_key, attempt)
