"""Tests for the prerequisite account gate and token account submission."""

import base64

import httpx
import pytest
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from spl.token.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    TOKEN_2022_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from spl.token.instructions import (
    create_idempotent_associated_token_account,
    get_associated_token_address,
)

from solswap.errors import SubmissionError
from solswap.rpc.client import SolanaRpcClient
from solswap.swap.token_accounts import (
    PrerequisiteGate,
    decode_signed_transaction,
    submit_prerequisite_transaction,
)
from tests.conftest import SOL_MINT, TEST_BLOCKHASH, USDC_MINT, RpcStub, make_instruction_set

USDC = Pubkey.from_string(USDC_MINT)
SOL = Pubkey.from_string(SOL_MINT)
OTHER_MINT = Pubkey(bytes([90] * 32))


def decode_unsigned(b64: str) -> Transaction:
    return Transaction.from_bytes(base64.b64decode(b64))


def signed_create_transaction(signer: Keypair) -> str:
    ata = get_associated_token_address(signer.pubkey(), USDC)
    ix = create_idempotent_associated_token_account(signer.pubkey(), signer.pubkey(), USDC)
    message = Message.new_with_blockhash([ix], signer.pubkey(), TEST_BLOCKHASH)
    tx = Transaction([signer], message, TEST_BLOCKHASH)
    assert ata in tx.message.account_keys
    return base64.b64encode(bytes(tx)).decode()


class TestPrerequisiteGate:
    """Tests for PrerequisiteGate.check_prerequisites."""

    @pytest.mark.asyncio
    async def test_all_accounts_present(self, rpc, rpc_stub, payer):
        rpc_stub.add_mint(USDC)
        rpc_stub.add_account(get_associated_token_address(payer.pubkey(), USDC), TOKEN_PROGRAM_ID, bytes(165))
        gate = PrerequisiteGate(rpc)

        check = await gate.check_prerequisites(make_instruction_set(payer.pubkey()), payer.pubkey(), payer.pubkey())

        assert check.ok
        assert check.unsigned_transaction is None
        assert rpc_stub.count("getMultipleAccounts") == 1
        assert rpc_stub.count("getLatestBlockhash") == 0

    @pytest.mark.asyncio
    async def test_missing_output_account(self, rpc, rpc_stub, payer):
        """Missing output ATA yields one descriptor and a creation-only transaction."""
        rpc_stub.add_mint(USDC)
        gate = PrerequisiteGate(rpc)

        check = await gate.check_prerequisites(make_instruction_set(payer.pubkey()), payer.pubkey(), payer.pubkey())

        assert not check.ok
        assert len(check.missing) == 1
        missing = check.missing[0]
        assert missing.mint == USDC
        assert missing.owner == payer.pubkey()
        assert missing.address == get_associated_token_address(payer.pubkey(), USDC)
        assert missing.token_program == TOKEN_PROGRAM_ID

        tx = decode_unsigned(check.unsigned_transaction)
        keys = tx.message.account_keys
        assert keys[0] == payer.pubkey()
        assert tx.message.recent_blockhash == TEST_BLOCKHASH
        assert len(tx.message.instructions) == 1
        ix = tx.message.instructions[0]
        assert keys[ix.program_id_index] == ASSOCIATED_TOKEN_PROGRAM_ID
        assert bytes(ix.data) == b"\x01"
        assert tx.signatures == [Signature.default()]

    @pytest.mark.asyncio
    async def test_native_sol_exempt_when_wrapping(self, rpc, rpc_stub, payer):
        """The payer's wSOL account is never required while wrapping is on."""
        rpc_stub.add_mint(USDC)
        rpc_stub.add_account(get_associated_token_address(payer.pubkey(), USDC), TOKEN_PROGRAM_ID)
        gate = PrerequisiteGate(rpc, wrap_and_unwrap_sol=True)

        check = await gate.check_prerequisites(
            make_instruction_set(payer.pubkey(), input_mint=SOL_MINT), payer.pubkey(), payer.pubkey()
        )

        assert check.ok

    @pytest.mark.asyncio
    async def test_native_sol_checked_without_wrapping(self, rpc, rpc_stub, payer):
        rpc_stub.add_mint(USDC)
        rpc_stub.add_mint(SOL)
        rpc_stub.add_account(get_associated_token_address(payer.pubkey(), USDC), TOKEN_PROGRAM_ID)
        gate = PrerequisiteGate(rpc, wrap_and_unwrap_sol=False)

        check = await gate.check_prerequisites(
            make_instruction_set(payer.pubkey(), input_mint=SOL_MINT), payer.pubkey(), payer.pubkey()
        )

        assert [m.mint for m in check.missing] == [SOL]

    @pytest.mark.asyncio
    async def test_token_2022_mint(self, rpc, rpc_stub, payer):
        """Token-2022 mints derive their ATA under the Token-2022 program."""
        rpc_stub.add_mint(OTHER_MINT, TOKEN_2022_PROGRAM_ID)
        gate = PrerequisiteGate(rpc)

        check = await gate.check_prerequisites(
            make_instruction_set(payer.pubkey(), output_mint=str(OTHER_MINT)), payer.pubkey(), payer.pubkey()
        )

        assert len(check.missing) == 1
        assert check.missing[0].token_program == TOKEN_2022_PROGRAM_ID
        assert check.missing[0].address == get_associated_token_address(
            payer.pubkey(), OTHER_MINT, TOKEN_2022_PROGRAM_ID
        )

    @pytest.mark.asyncio
    async def test_recipient_pays_for_creation(self, rpc, rpc_stub, payer):
        recipient = Keypair.from_seed(bytes([42] * 32)).pubkey()
        rpc_stub.add_mint(USDC)
        gate = PrerequisiteGate(rpc)

        check = await gate.check_prerequisites(make_instruction_set(payer.pubkey()), payer.pubkey(), recipient)

        assert [m.owner for m in check.missing] == [recipient]
        assert decode_unsigned(check.unsigned_transaction).message.account_keys[0] == recipient


class TestDecodeSigned:
    """Tests for signature checks on client-signed transactions."""

    def test_accepts_fully_signed(self, payer):
        tx = decode_signed_transaction(signed_create_transaction(payer))
        assert tx.verify_with_results() == [True]

    def test_rejects_unsigned(self, payer):
        ix = create_idempotent_associated_token_account(payer.pubkey(), payer.pubkey(), USDC)
        tx = Transaction.new_unsigned(Message.new_with_blockhash([ix], payer.pubkey(), TEST_BLOCKHASH))

        with pytest.raises(SubmissionError):
            decode_signed_transaction(base64.b64encode(bytes(tx)).decode())

    def test_rejects_garbage(self):
        with pytest.raises(SubmissionError):
            decode_signed_transaction("not base64!")


class TestSubmission:
    """Tests for submit_prerequisite_transaction."""

    @pytest.mark.asyncio
    async def test_broadcasts_and_confirms(self, rpc, rpc_stub, payer):
        signed = signed_create_transaction(payer)

        signature = await submit_prerequisite_transaction(rpc, signed, max_retries=5)

        assert signature == str(decode_signed_transaction(signed).signatures[0])
        assert rpc_stub.count("simulateTransaction") == 0
        send_params = [params for name, params in rpc_stub.calls if name == "sendTransaction"][0]
        assert send_params[1]["maxRetries"] == 5
        assert send_params[1]["skipPreflight"] is False

    @pytest.mark.asyncio
    async def test_missing_signature_never_sent(self, rpc, rpc_stub, payer):
        ix = create_idempotent_associated_token_account(payer.pubkey(), payer.pubkey(), USDC)
        tx = Transaction.new_unsigned(Message.new_with_blockhash([ix], payer.pubkey(), TEST_BLOCKHASH))

        with pytest.raises(SubmissionError):
            await submit_prerequisite_transaction(rpc, base64.b64encode(bytes(tx)).decode())

        assert rpc_stub.count("sendTransaction") == 0

    @pytest.mark.asyncio
    async def test_rpc_rejection(self, rpc, rpc_stub, payer):
        rpc_stub.send_error = {"code": -32002, "message": "Blockhash not found"}

        with pytest.raises(SubmissionError):
            await submit_prerequisite_transaction(rpc, signed_create_transaction(payer))

    @pytest.mark.asyncio
    async def test_backup_rpc_on_transport_failure(self, rpc, rpc_stub, payer):
        """Transport failure on the primary is retried once on the backup."""
        rpc_stub.fail_transport_on.add("sendTransaction")
        backup_stub = RpcStub()
        async with httpx.AsyncClient(transport=httpx.MockTransport(backup_stub.handler)) as http:
            backup = SolanaRpcClient(http, "http://backup.test", poll_interval=0)
            signed = signed_create_transaction(payer)

            signature = await submit_prerequisite_transaction(rpc, signed, backup_rpc=backup)

        assert backup_stub.count("sendTransaction") == 1
        assert backup_stub.sent[0] == base64.b64decode(signed)
        assert signature == str(decode_signed_transaction(signed).signatures[0])

    @pytest.mark.asyncio
    async def test_on_chain_failure(self, rpc, rpc_stub, payer):
        rpc_stub.statuses = [{"err": {"InstructionError": [0, "InvalidAccountData"]}, "confirmationStatus": "confirmed", "slot": 1}]

        with pytest.raises(SubmissionError) as exc_info:
            await submit_prerequisite_transaction(rpc, signed_create_transaction(payer))

        assert "err" in exc_info.value.details
