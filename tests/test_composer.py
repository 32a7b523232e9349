"""Tests for versioned transaction composition."""

import pytest
from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from solswap.errors import InstructionResolutionError, TransactionTooLarge
from solswap.rpc.client import BlockhashInfo
from solswap.swap.composer import (
    MAX_TRANSACTION_SIZE,
    compose,
    is_compute_unit_price,
    serialized_size,
)
from tests.conftest import POOL_ACCOUNT, SWAP_PROGRAM, TEST_BLOCKHASH, make_instruction_set

BLOCKHASH = BlockhashInfo(blockhash=TEST_BLOCKHASH, last_valid_block_height=1_000)
SETUP_PROGRAM = Pubkey(bytes([11] * 32))
CLEANUP_PROGRAM = Pubkey(bytes([12] * 32))


def full_instruction_set(payer: Pubkey):
    return make_instruction_set(
        payer,
        compute_budget_instructions=(set_compute_unit_limit(300_000), set_compute_unit_price(1)),
        setup_instructions=(Instruction(SETUP_PROGRAM, b"\x01", [AccountMeta(payer, True, True)]),),
        cleanup_instruction=Instruction(CLEANUP_PROGRAM, b"\x02", [AccountMeta(payer, True, True)]),
    )


class TestOrdering:
    """Tests for the final instruction order."""

    def test_priority_fee_is_first(self, payer):
        envelope = compose(payer.pubkey(), full_instruction_set(payer.pubkey()), [], BLOCKHASH, 25_000)

        assert envelope.instructions[0] == set_compute_unit_price(25_000)

    def test_aggregator_price_instruction_is_dropped(self, payer):
        """Only our compute unit price survives; the limit is kept."""
        envelope = compose(payer.pubkey(), full_instruction_set(payer.pubkey()), [], BLOCKHASH, 25_000)

        prices = [ix for ix in envelope.instructions if is_compute_unit_price(ix)]
        assert prices == [set_compute_unit_price(25_000)]
        assert envelope.instructions[1] == set_compute_unit_limit(300_000)

    def test_full_order(self, payer):
        envelope = compose(payer.pubkey(), full_instruction_set(payer.pubkey()), [], BLOCKHASH, 1)

        programs = [ix.program_id for ix in envelope.instructions]
        assert programs[2:] == [SETUP_PROGRAM, SWAP_PROGRAM, CLEANUP_PROGRAM]

    def test_no_cleanup(self, payer):
        envelope = compose(payer.pubkey(), make_instruction_set(payer.pubkey()), [], BLOCKHASH, 1)

        assert len(envelope.instructions) == 2
        assert envelope.instructions[-1].program_id == SWAP_PROGRAM


class TestCompilation:
    """Tests for message compilation and limits."""

    def test_deterministic(self, payer):
        """Identical inputs give byte-identical messages."""
        instruction_set = full_instruction_set(payer.pubkey())
        first = compose(payer.pubkey(), instruction_set, [], BLOCKHASH, 5_000)
        second = compose(payer.pubkey(), instruction_set, [], BLOCKHASH, 5_000)

        assert bytes(first.message) == bytes(second.message)

    def test_single_signer_payer_first(self, payer):
        envelope = compose(payer.pubkey(), make_instruction_set(payer.pubkey()), [], BLOCKHASH, 1)

        assert envelope.message.header.num_required_signatures == 1
        assert envelope.message.account_keys[0] == payer.pubkey()
        assert envelope.message.recent_blockhash == TEST_BLOCKHASH
        assert envelope.last_valid_block_height == 1_000

    def test_lookup_table_moves_accounts_out_of_static_keys(self, payer):
        table = AddressLookupTableAccount(key=Pubkey(bytes([40] * 32)), addresses=[POOL_ACCOUNT])
        with_table = compose(payer.pubkey(), make_instruction_set(payer.pubkey()), [table], BLOCKHASH, 1)
        without = compose(payer.pubkey(), make_instruction_set(payer.pubkey()), [], BLOCKHASH, 1)

        assert POOL_ACCOUNT not in with_table.message.account_keys
        assert POOL_ACCOUNT in without.message.account_keys
        assert len(with_table.message.address_table_lookups) == 1

    def test_second_signer_is_rejected(self, payer):
        other = Pubkey(bytes([50] * 32))
        instruction_set = make_instruction_set(
            payer.pubkey(),
            setup_instructions=(Instruction(SETUP_PROGRAM, b"", [AccountMeta(other, True, False)]),),
        )

        with pytest.raises(InstructionResolutionError):
            compose(payer.pubkey(), instruction_set, [], BLOCKHASH, 1)

    def test_oversized_transaction(self, payer):
        """Too many distinct accounts without lookup tables exceed 1232 bytes."""
        accounts = [AccountMeta(Pubkey(bytes([60, i] + [0] * 30)), False, True) for i in range(40)]
        instruction_set = make_instruction_set(
            payer.pubkey(),
            setup_instructions=(Instruction(SETUP_PROGRAM, b"", accounts),),
        )

        with pytest.raises(TransactionTooLarge) as exc_info:
            compose(payer.pubkey(), instruction_set, [], BLOCKHASH, 1)

        assert exc_info.value.details["limit"] == MAX_TRANSACTION_SIZE

    def test_size_counts_signature_slot(self, payer):
        envelope = compose(payer.pubkey(), make_instruction_set(payer.pubkey()), [], BLOCKHASH, 1)

        assert serialized_size(envelope.message) >= len(bytes(envelope.message)) + 64

    def test_uncompilable_message(self, payer):
        """More accounts than a message can index fail compilation."""
        accounts = [AccountMeta(Pubkey(bytes([61, i // 256, i % 256] + [0] * 29)), False, False) for i in range(300)]
        instruction_set = make_instruction_set(
            payer.pubkey(),
            setup_instructions=(Instruction(SETUP_PROGRAM, b"", accounts),),
        )

        with pytest.raises(TransactionTooLarge, match="could not be compiled"):
            compose(payer.pubkey(), instruction_set, [], BLOCKHASH, 1)
