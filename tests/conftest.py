"""Pytest configuration and fixtures."""

import base64
import json
import os
import struct
from typing import Any, Optional

import httpx
import pytest
import pytest_asyncio

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "true"
os.environ["SOLANA_RPC_URL"] = "http://rpc.test"
os.environ["JUPITER_API_URL"] = "http://jupiter.test/v6"

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction
from spl.token.constants import TOKEN_PROGRAM_ID

from solswap.routing.base import Aggregator, InstructionSet, Quote
from solswap.routing.jupiter import JupiterAggregator
from solswap.rpc.client import SolanaRpcClient
from solswap.swap.lookup_tables import ADDRESS_LOOKUP_TABLE_PROGRAM_ID

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

PAYER_SEED = bytes(range(1, 33))
SWAP_PROGRAM = Pubkey(bytes([9] * 32))
POOL_ACCOUNT = Pubkey(bytes([10] * 32))
TEST_BLOCKHASH = Hash(bytes([7] * 32))


def payer_keypair() -> Keypair:
    return Keypair.from_seed(PAYER_SEED)


def payer_secret_b64() -> str:
    return base64.b64encode(PAYER_SEED).decode()


def jupiter_quote_payload(
    input_mint: str = SOL_MINT,
    output_mint: str = USDC_MINT,
    in_amount: int = 1_000_000,
    out_amount: int = 150_000,
    slippage_bps: int = 50,
) -> dict:
    """A /quote response shaped like Jupiter's."""
    return {
        "inputMint": input_mint,
        "inAmount": str(in_amount),
        "outputMint": output_mint,
        "outAmount": str(out_amount),
        "otherAmountThreshold": str(out_amount - out_amount * slippage_bps // 10_000),
        "swapMode": "ExactIn",
        "slippageBps": slippage_bps,
        "priceImpactPct": "0.0012",
        "routePlan": [
            {
                "swapInfo": {
                    "ammKey": str(POOL_ACCOUNT),
                    "label": "Whirlpool",
                    "inputMint": input_mint,
                    "outputMint": output_mint,
                },
                "percent": 100,
            }
        ],
        "contextSlot": 1,
        "timeTaken": 0.01,
    }


def make_quote(**kwargs) -> Quote:
    return JupiterAggregator._parse_quote(jupiter_quote_payload(**kwargs), 50)


def swap_instruction(payer: Pubkey) -> Instruction:
    return Instruction(
        SWAP_PROGRAM,
        b"\xe5\x17\xcb\x97\x7a\xe3\xad\x2a" + bytes(16),
        [
            AccountMeta(payer, True, True),
            AccountMeta(POOL_ACCOUNT, False, True),
        ],
    )


def make_instruction_set(
    payer: Pubkey,
    input_mint: str = SOL_MINT,
    output_mint: str = USDC_MINT,
    **kwargs,
) -> InstructionSet:
    return InstructionSet(
        input_mint=input_mint,
        output_mint=output_mint,
        swap_instruction=swap_instruction(payer),
        **kwargs,
    )


def instruction_json(ix: Instruction) -> dict:
    """Serialize an Instruction the way Jupiter does."""
    return {
        "programId": str(ix.program_id),
        "accounts": [
            {"pubkey": str(m.pubkey), "isSigner": m.is_signer, "isWritable": m.is_writable}
            for m in ix.accounts
        ],
        "data": base64.b64encode(bytes(ix.data)).decode(),
    }


def lookup_table_data(addresses: list[Pubkey]) -> bytes:
    # type tag 1 (lookup table), then an empty 52-byte meta section
    header = struct.pack("<I", 1) + bytes(52)
    return header + b"".join(bytes(a) for a in addresses)


class RpcStub:
    """In-memory Solana JSON-RPC node served through httpx.MockTransport."""

    def __init__(self):
        self.accounts: dict[str, dict] = {}
        self.blockhash = TEST_BLOCKHASH
        self.last_valid_block_height = 1_000
        self.block_heights = [900]
        self.simulation: dict = {"err": None, "logs": ["Program log: swap ok"], "unitsConsumed": 42_000}
        self.send_error: Optional[dict] = None
        self.statuses: list[Optional[dict]] = [
            {"err": None, "confirmationStatus": "confirmed", "slot": 123}
        ]
        self.status_errors: list[dict] = []
        self.fail_transport_on: set[str] = set()
        self.calls: list[tuple[str, list]] = []
        self.sent: list[bytes] = []

    def add_account(self, address: Any, owner: Any, data: bytes = b"", lamports: int = 2_039_280) -> None:
        self.accounts[str(address)] = {
            "data": [base64.b64encode(data).decode(), "base64"],
            "owner": str(owner),
            "lamports": lamports,
            "executable": False,
            "rentEpoch": 0,
        }

    def add_mint(self, mint: Any, program: Pubkey = TOKEN_PROGRAM_ID) -> None:
        self.add_account(mint, program, bytes(82))

    def add_lookup_table(self, address: Pubkey, entries: list[Pubkey]) -> None:
        self.add_account(address, ADDRESS_LOOKUP_TABLE_PROGRAM_ID, lookup_table_data(entries))

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method, params = body["method"], body["params"]
        self.calls.append((method, params))
        if method in self.fail_transport_on:
            raise httpx.ConnectError("connection refused", request=request)
        payload = getattr(self, f"_{method}")(params)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], **payload})

    def _getLatestBlockhash(self, params):
        return {
            "result": {
                "context": {"slot": 1},
                "value": {
                    "blockhash": str(self.blockhash),
                    "lastValidBlockHeight": self.last_valid_block_height,
                },
            }
        }

    def _getBlockHeight(self, params):
        height = self.block_heights.pop(0) if len(self.block_heights) > 1 else self.block_heights[0]
        return {"result": height}

    def _getAccountInfo(self, params):
        return {"result": {"context": {"slot": 1}, "value": self.accounts.get(params[0])}}

    def _getMultipleAccounts(self, params):
        return {
            "result": {"context": {"slot": 1}, "value": [self.accounts.get(a) for a in params[0]]}
        }

    def _simulateTransaction(self, params):
        return {"result": {"context": {"slot": 1}, "value": dict(self.simulation)}}

    def _sendTransaction(self, params):
        if self.send_error is not None:
            return {"error": self.send_error}
        raw = base64.b64decode(params[0])
        self.sent.append(raw)
        return {"result": str(VersionedTransaction.from_bytes(raw).signatures[0])}

    def _getSignatureStatuses(self, params):
        if self.status_errors:
            return {"error": self.status_errors.pop(0)}
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return {"result": {"context": {"slot": 1}, "value": [status]}}


class FakeAggregator(Aggregator):
    """Aggregator double returning canned instructions."""

    def __init__(self, instruction_set: Optional[InstructionSet] = None, error: Optional[Exception] = None):
        self.instruction_set = instruction_set
        self.error = error
        self.instruction_calls: list[tuple[Quote, Pubkey, Optional[Pubkey]]] = []

    @property
    def name(self) -> str:
        return "Fake"

    async def get_quote(self, input_mint, output_mint, amount, slippage_bps=None) -> Quote:
        return make_quote(input_mint=input_mint, output_mint=output_mint, in_amount=amount)

    def quote_from_api(self, payload: dict) -> Quote:
        return JupiterAggregator._parse_quote(payload, 50)

    async def get_swap_instructions(self, quote, payer, destination_token_account=None) -> InstructionSet:
        self.instruction_calls.append((quote, payer, destination_token_account))
        if self.error is not None:
            raise self.error
        return self.instruction_set or make_instruction_set(
            payer, quote.input_mint, quote.output_mint
        )


@pytest.fixture
def rpc_stub() -> RpcStub:
    return RpcStub()


@pytest_asyncio.fixture
async def rpc(rpc_stub):
    """SolanaRpcClient talking to the in-memory node."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(rpc_stub.handler)) as http:
        yield SolanaRpcClient(http, "http://rpc.test", commitment="confirmed", poll_interval=0)


@pytest.fixture
def payer() -> Keypair:
    return payer_keypair()
