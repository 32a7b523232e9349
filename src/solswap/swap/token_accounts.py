"""Prerequisite token accounts for a swap.

A swap can only move tokens between associated token accounts (ATAs) that
already exist. Before composing anything the gate checks that the payer
holds an ATA for the input mint and the recipient holds one for the output
mint. When one is missing the swap is not attempted; instead the caller
gets an unsigned transaction that creates the missing accounts, signs it
client side and submits it back through submit_prerequisite_transaction.
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Optional

from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction, VersionedTransaction
from spl.token.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID, WRAPPED_SOL_MINT
from spl.token.instructions import (
    create_idempotent_associated_token_account,
    get_associated_token_address,
)

from solswap.errors import Expired, RpcError, SubmissionError, SwapError, UpstreamError
from solswap.routing.base import InstructionSet
from solswap.rpc.client import SolanaRpcClient

logger = logging.getLogger(__name__)

TOKEN_PROGRAMS = (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID)


async def token_program_for_mint(rpc: SolanaRpcClient, mint: Pubkey) -> Pubkey:
    """Return the token program that owns ``mint``; classic Token when unknown."""
    account = await rpc.get_account_info(mint)
    if account is not None and account.owner == TOKEN_2022_PROGRAM_ID:
        return TOKEN_2022_PROGRAM_ID
    return TOKEN_PROGRAM_ID


async def associated_token_address(rpc: SolanaRpcClient, owner: Pubkey, mint: Pubkey) -> Pubkey:
    program = await token_program_for_mint(rpc, mint)
    return get_associated_token_address(owner, mint, program)


@dataclass(frozen=True)
class MissingAccount:
    """An associated token account that must exist before the swap."""

    mint: Pubkey
    owner: Pubkey
    address: Pubkey
    token_program: Pubkey

    def to_dict(self) -> dict:
        return {
            "mint": str(self.mint),
            "owner": str(self.owner),
            "address": str(self.address),
            "tokenProgram": str(self.token_program),
        }


@dataclass
class PrerequisiteCheck:
    """Result of the prerequisite gate.

    ``unsigned_transaction`` is a base64 legacy transaction creating every
    account in ``missing``; it is only set when something is missing.
    """

    missing: list[MissingAccount] = field(default_factory=list)
    unsigned_transaction: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.missing


class PrerequisiteGate:
    """Checks that the token accounts a swap touches exist."""

    def __init__(self, rpc: SolanaRpcClient, wrap_and_unwrap_sol: bool = True):
        self.rpc = rpc
        self.wrap_and_unwrap_sol = wrap_and_unwrap_sol

    def _is_exempt(self, mint: Pubkey, owner: Pubkey, payer: Pubkey) -> bool:
        # The aggregator opens and closes a temporary wSOL account for the payer only
        return self.wrap_and_unwrap_sol and mint == WRAPPED_SOL_MINT and owner == payer

    async def check_prerequisites(
        self,
        instruction_set: InstructionSet,
        payer: Pubkey,
        recipient: Pubkey,
    ) -> PrerequisiteCheck:
        """Check the payer's input ATA and the recipient's output ATA.

        Mint owners and every candidate ATA (classic and Token-2022
        derivations) are read in a single getMultipleAccounts call; the
        mint's owner then decides which candidate is the real one.

        Args:
            instruction_set: Resolved swap instructions (carries both mints)
            payer: Wallet signing the swap
            recipient: Wallet receiving the output

        Returns:
            PrerequisiteCheck, with an unsigned creation transaction when
            accounts are missing
        """
        wanted: list[tuple[Pubkey, Pubkey]] = []
        for owner, mint_str in (
            (payer, instruction_set.input_mint),
            (recipient, instruction_set.output_mint),
        ):
            mint = Pubkey.from_string(mint_str)
            if self._is_exempt(mint, owner, payer) or (owner, mint) in wanted:
                continue
            wanted.append((owner, mint))

        if not wanted:
            return PrerequisiteCheck()

        mints = list(dict.fromkeys(mint for _, mint in wanted))
        candidates = [
            get_associated_token_address(owner, mint, program)
            for owner, mint in wanted
            for program in TOKEN_PROGRAMS
        ]
        accounts = await self.rpc.get_multiple_accounts(mints + candidates)
        mint_accounts = dict(zip(mints, accounts[: len(mints)]))
        ata_accounts = accounts[len(mints) :]

        missing: list[MissingAccount] = []
        for i, (owner, mint) in enumerate(wanted):
            mint_account = mint_accounts[mint]
            if mint_account is not None and mint_account.owner == TOKEN_2022_PROGRAM_ID:
                program, offset = TOKEN_2022_PROGRAM_ID, 1
            else:
                program, offset = TOKEN_PROGRAM_ID, 0
            index = i * len(TOKEN_PROGRAMS) + offset
            if ata_accounts[index] is None:
                missing.append(
                    MissingAccount(
                        mint=mint,
                        owner=owner,
                        address=candidates[index],
                        token_program=program,
                    )
                )

        if not missing:
            return PrerequisiteCheck()

        logger.info(
            f"Missing {len(missing)} token account(s): "
            + ", ".join(f"{m.address} (mint {m.mint}, owner {m.owner})" for m in missing)
        )
        unsigned = await self.build_create_accounts_transaction(missing, fee_payer=recipient)
        return PrerequisiteCheck(missing=missing, unsigned_transaction=unsigned)

    async def build_create_accounts_transaction(
        self,
        missing: list[MissingAccount],
        fee_payer: Pubkey,
    ) -> str:
        """Build an unsigned legacy transaction creating ``missing``.

        Only idempotent create-ATA instructions go in, so replaying it after
        a partial success is harmless.
        """
        blockhash = await self.rpc.get_latest_blockhash(commitment="finalized")
        instructions = [
            create_idempotent_associated_token_account(
                payer=fee_payer,
                owner=account.owner,
                mint=account.mint,
                token_program_id=account.token_program,
            )
            for account in missing
        ]
        message = Message.new_with_blockhash(instructions, fee_payer, blockhash.blockhash)
        tx = Transaction.new_unsigned(message)
        return base64.b64encode(bytes(tx)).decode()


def decode_signed_transaction(signed_transaction_b64: str) -> VersionedTransaction:
    """Decode a client-signed transaction and check every signature.

    Raises:
        SubmissionError: Not decodable, or a signature is missing or invalid
    """
    try:
        raw = base64.b64decode(signed_transaction_b64, validate=True)
        tx = VersionedTransaction.from_bytes(raw)
    except (binascii.Error, TypeError, ValueError) as e:
        raise SubmissionError("Signed transaction could not be decoded") from e

    required = tx.message.header.num_required_signatures
    if len(tx.signatures) != required:
        raise SubmissionError(
            f"Transaction carries {len(tx.signatures)} signature(s), {required} required"
        )
    results = tx.verify_with_results()
    if not results or not all(results):
        raise SubmissionError("Transaction is missing a valid signature for every required signer")
    return tx


async def _broadcast_and_confirm(rpc: SolanaRpcClient, tx_bytes: bytes, max_retries: int) -> str:
    blockhash = await rpc.get_latest_blockhash()
    signature = await rpc.send_raw_transaction(tx_bytes, max_retries=max_retries)
    status = await rpc.confirm_transaction(signature, blockhash.last_valid_block_height)
    if status.err is not None:
        raise SubmissionError(
            "Token account creation failed on-chain",
            details={"signature": signature, "err": status.err},
        )
    return signature


async def submit_prerequisite_transaction(
    rpc: SolanaRpcClient,
    signed_transaction_b64: str,
    max_retries: int = 5,
    backup_rpc: Optional[SolanaRpcClient] = None,
) -> str:
    """Broadcast a client-signed account creation transaction and confirm it.

    No simulation is done here; preflight on the node covers it. A
    transport-level failure on the primary endpoint is retried once on the
    backup with the same bytes, so the signature cannot fork.

    Args:
        rpc: Primary RPC client
        signed_transaction_b64: Base64 transaction signed by the client
        max_retries: RPC-side rebroadcast budget
        backup_rpc: Optional fallback endpoint

    Returns:
        Confirmed transaction signature

    Raises:
        SubmissionError: Any failure
    """
    tx = decode_signed_transaction(signed_transaction_b64)
    tx_bytes = bytes(tx)
    logger.info(f"Submitting token account transaction {tx.signatures[0]}")

    try:
        return await _broadcast_and_confirm(rpc, tx_bytes, max_retries)
    except RpcError as e:
        raise SubmissionError(e.message, details=e.data) from e
    except Expired as e:
        raise SubmissionError(e.message, details=e.details) from e
    except UpstreamError as e:
        if backup_rpc is None:
            raise SubmissionError(e.message) from e
        logger.warning(f"Primary RPC failed for token account submission, trying backup: {e}")

    try:
        return await _broadcast_and_confirm(backup_rpc, tx_bytes, max_retries)
    except SubmissionError:
        raise
    except SwapError as e:
        raise SubmissionError(e.message, details=e.details) from e
