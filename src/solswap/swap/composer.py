"""Versioned transaction composition.

Turns a resolved InstructionSet into a v0 message for a single payer. This
module does no I/O: the same inputs always produce the same bytes.
"""

import logging
from dataclasses import dataclass

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.compute_budget import set_compute_unit_price
from solders.instruction import Instruction
from solders.message import CompileError, MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from solswap.errors import InstructionResolutionError, TransactionTooLarge
from solswap.routing.base import InstructionSet
from solswap.rpc.client import BlockhashInfo

logger = logging.getLogger(__name__)

MAX_TRANSACTION_SIZE = 1232

COMPUTE_BUDGET_PROGRAM_ID = Pubkey.from_string("ComputeBudget111111111111111111111111111111")
SET_COMPUTE_UNIT_PRICE_TAG = 3


@dataclass(frozen=True)
class TransactionEnvelope:
    """A compiled, still unsigned swap transaction."""

    payer: Pubkey
    blockhash: BlockhashInfo
    instructions: tuple[Instruction, ...]
    lookup_tables: tuple[AddressLookupTableAccount, ...]
    message: MessageV0

    @property
    def last_valid_block_height(self) -> int:
        return self.blockhash.last_valid_block_height


def is_compute_unit_price(ix: Instruction) -> bool:
    return (
        ix.program_id == COMPUTE_BUDGET_PROGRAM_ID
        and len(ix.data) > 0
        and ix.data[0] == SET_COMPUTE_UNIT_PRICE_TAG
    )


def ordered_instructions(
    instruction_set: InstructionSet,
    priority_fee_micro_lamports: int,
) -> list[Instruction]:
    """Final instruction order: our priority fee, remaining compute budget,
    setup, swap, cleanup."""
    instructions = [set_compute_unit_price(priority_fee_micro_lamports)]
    instructions.extend(
        ix for ix in instruction_set.compute_budget_instructions if not is_compute_unit_price(ix)
    )
    instructions.extend(instruction_set.setup_instructions)
    instructions.append(instruction_set.swap_instruction)
    if instruction_set.cleanup_instruction is not None:
        instructions.append(instruction_set.cleanup_instruction)
    return instructions


def serialized_size(message: MessageV0) -> int:
    """Size of the transaction once signed (signature slots included)."""
    placeholders = [Signature.default()] * message.header.num_required_signatures
    return len(bytes(VersionedTransaction.populate(message, placeholders)))


def compose(
    payer: Pubkey,
    instruction_set: InstructionSet,
    lookup_tables: list[AddressLookupTableAccount],
    recent_blockhash: BlockhashInfo,
    priority_fee_micro_lamports: int,
) -> TransactionEnvelope:
    """Compile the swap into a v0 message paid and signed by ``payer``.

    Args:
        payer: Fee payer and only signer
        instruction_set: Aggregator instructions
        lookup_tables: Resolved lookup tables
        recent_blockhash: Blockhash and its last valid height
        priority_fee_micro_lamports: Compute unit price

    Returns:
        TransactionEnvelope

    Raises:
        TransactionTooLarge: Message does not compile or exceeds 1232 bytes
        InstructionResolutionError: Instructions require another signer
    """
    instructions = ordered_instructions(instruction_set, priority_fee_micro_lamports)

    try:
        message = MessageV0.try_compile(
            payer, instructions, lookup_tables, recent_blockhash.blockhash
        )
    except (CompileError, ValueError) as e:
        raise TransactionTooLarge(f"Transaction could not be compiled: {e}") from e

    required = message.header.num_required_signatures
    if required != 1:
        signers = [str(key) for key in message.account_keys[:required]]
        raise InstructionResolutionError(
            f"Swap requires {required} signers, only the payer can sign",
            details={"signers": signers},
        )

    size = serialized_size(message)
    if size > MAX_TRANSACTION_SIZE:
        logger.warning(
            f"Composed transaction is {size} bytes (limit {MAX_TRANSACTION_SIZE}), "
            f"{len(lookup_tables)} lookup table(s)"
        )
        raise TransactionTooLarge(
            f"Transaction is {size} bytes, limit is {MAX_TRANSACTION_SIZE}",
            details={"size": size, "limit": MAX_TRANSACTION_SIZE},
        )

    logger.debug(f"Composed {len(instructions)} instructions into {size} bytes")
    return TransactionEnvelope(
        payer=payer,
        blockhash=recent_blockhash,
        instructions=tuple(instructions),
        lookup_tables=tuple(lookup_tables),
        message=message,
    )
