"""Swap execution engine.

Signs a composed transaction, simulates it, broadcasts it and waits for
confirmation. Each step can end the attempt; nothing is retried here apart
from the RPC node's own bounded rebroadcast.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from solswap.errors import (
    Expired,
    OnChainError,
    RpcError,
    SimulationError,
    SubmissionError,
    SwapError,
    UpstreamError,
)
from solswap.rpc.client import SolanaRpcClient
from solswap.swap.composer import TransactionEnvelope
from solswap.swap.signer import SigningKey
from solswap.swap.state import SwapAttempt, SwapState
from solswap.swap.token_accounts import MissingAccount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Confirmed:
    """Swap landed and reached the requested commitment."""

    signature: str


@dataclass(frozen=True)
class NeedsPrerequisiteAccounts:
    """Swap not attempted; the recipient must create token accounts first."""

    unsigned_transaction: str
    missing_accounts: list[MissingAccount] = field(default_factory=list)


@dataclass(frozen=True)
class Failed:
    """Swap attempt ended with a typed error."""

    error: SwapError
    signature: Optional[str] = None

    @property
    def reason(self) -> str:
        return self.error.kind


ExecutionOutcome = Union[Confirmed, NeedsPrerequisiteAccounts, Failed]


class ExecutionEngine:
    """Sign, simulate, submit and confirm one swap transaction."""

    def __init__(
        self,
        rpc: SolanaRpcClient,
        send_max_retries: int = 2,
        commitment: Optional[str] = None,
    ):
        self.rpc = rpc
        self.send_max_retries = send_max_retries
        self.commitment = commitment

    async def execute(
        self,
        envelope: TransactionEnvelope,
        signing_key: SigningKey,
        attempt: Optional[SwapAttempt] = None,
    ) -> ExecutionOutcome:
        """Run the transaction through to a final outcome.

        The signing key is destroyed as soon as the signature exists, on
        every path out of the signing step.

        Args:
            envelope: Composed transaction
            signing_key: Key of the payer
            attempt: State tracker advanced past simulation and submission

        Returns:
            Confirmed or Failed

        Raises:
            SigningError: Key does not match the payer
            UpstreamError: RPC unreachable during simulation
        """
        try:
            tx = signing_key.sign(envelope.message)
        finally:
            signing_key.destroy()

        signature = str(tx.signatures[0])
        tx_bytes = bytes(tx)

        # Simulate
        simulation = await self.rpc.simulate_transaction(tx_bytes)
        if not simulation.ok:
            logger.warning(
                f"Simulation failed for {signature}: {simulation.err}\n" + "\n".join(simulation.logs)
            )
            return Failed(
                SimulationError(
                    f"Transaction simulation failed: {simulation.err}",
                    details={"err": simulation.err, "logs": simulation.logs},
                )
            )
        logger.info(f"Simulation ok for {signature} ({simulation.units_consumed} CU)")
        if attempt is not None:
            attempt.advance(SwapState.SIMULATED_OK)

        # Submit
        try:
            sent = await self.rpc.send_raw_transaction(tx_bytes, max_retries=self.send_max_retries)
        except RpcError as e:
            logger.error(f"Broadcast rejected for {signature}: {e.message}")
            return Failed(SubmissionError(e.message, details={"code": e.code, "logs": e.logs}))
        except UpstreamError as e:
            logger.error(f"Broadcast failed for {signature}: {e.message}")
            return Failed(SubmissionError(e.message), signature=signature)
        if attempt is not None:
            attempt.advance(SwapState.SUBMITTED)

        # Confirm
        try:
            status = await self.rpc.confirm_transaction(
                sent, envelope.last_valid_block_height, self.commitment
            )
        except Expired as e:
            return Failed(e, signature=sent)

        if status.err is not None:
            logger.warning(f"Transaction {sent} failed on-chain: {status.err}")
            return Failed(
                OnChainError(
                    "Transaction failed on-chain",
                    details={"signature": sent, "err": status.err},
                ),
                signature=sent,
            )

        logger.info(f"Transaction {sent} confirmed ({status.confirmation_status}, slot {status.slot})")
        return Confirmed(signature=sent)
