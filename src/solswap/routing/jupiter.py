"""Jupiter DEX aggregator integration for Solana.

Uses the Jupiter v6 swap API to price routes (/quote) and to turn a quote
into raw instructions (/swap-instructions) that we compose and sign
ourselves.
API docs: https://station.jup.ag/docs/apis/swap-api
"""

import base64
import binascii
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from solswap.errors import (
    InstructionResolutionError,
    InvalidRequest,
    QuoteExpired,
    QuoteUnavailable,
    UpstreamError,
)
from solswap.routing.base import Aggregator, InstructionSet, Quote

logger = logging.getLogger(__name__)

# Jupiter API endpoints
JUPITER_API_V6 = "https://quote-api.jup.ag/v6"

# Error codes Jupiter uses for stale or unknown quotes
EXPIRED_QUOTE_CODES = {"QUOTE_EXPIRED", "EXPIRED_QUOTE", "STALE_QUOTE"}


def _upstream_message(response: httpx.Response) -> tuple[str, Optional[str]]:
    """Extract (message, errorCode) from a Jupiter error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}", None

    if isinstance(body, dict):
        message = body.get("error") or body.get("message") or response.text
        code = body.get("errorCode")
        return str(message), str(code) if code is not None else None
    return response.text, None


def _is_expiry(message: str, code: Optional[str]) -> bool:
    if code and code.upper() in EXPIRED_QUOTE_CODES:
        return True
    return "expire" in message.lower()


def decode_instruction(raw: Any) -> Instruction:
    """Parse one Jupiter instruction object into a solders Instruction.

    Args:
        raw: ``{"programId", "accounts": [{"pubkey", "isSigner", "isWritable"}], "data"}``
            with base58 keys and base64 data

    Returns:
        Validated Instruction

    Raises:
        InstructionResolutionError: Any field is missing or malformed
    """
    try:
        program_id = Pubkey.from_string(raw["programId"])
        accounts = [
            AccountMeta(
                pubkey=Pubkey.from_string(acc["pubkey"]),
                is_signer=bool(acc["isSigner"]),
                is_writable=bool(acc["isWritable"]),
            )
            for acc in raw["accounts"]
        ]
        data = base64.b64decode(raw["data"], validate=True)
    except (KeyError, TypeError, ValueError, binascii.Error) as e:
        raise InstructionResolutionError(f"Malformed instruction from aggregator: {e}") from e
    return Instruction(program_id, data, accounts)


class JupiterAggregator(Aggregator):
    """Jupiter DEX aggregator for Solana.

    Jupiter aggregates liquidity from Raydium, Orca, Meteora and other
    Solana DEXes to find the best swap rates.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str = JUPITER_API_V6,
        api_key: Optional[str] = None,
        default_slippage_bps: int = 50,
        dynamic_compute_unit_limit: bool = True,
        wrap_and_unwrap_sol: bool = True,
    ):
        """Initialize Jupiter aggregator.

        Args:
            http: Shared HTTP client
            base_url: Swap API base URL
            api_key: Optional API key for higher rate limits
            default_slippage_bps: Slippage used when the caller passes none
            dynamic_compute_unit_limit: Ask Jupiter to size the compute limit
            wrap_and_unwrap_sol: Ask Jupiter to wrap/unwrap native SOL
        """
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.default_slippage_bps = default_slippage_bps
        self.dynamic_compute_unit_limit = dynamic_compute_unit_limit
        self.wrap_and_unwrap_sol = wrap_and_unwrap_sol

    @property
    def name(self) -> str:
        return "Jupiter"

    def _get_headers(self) -> dict:
        """Get API headers."""
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: Optional[int] = None,
    ) -> Quote:
        """Get swap quote from Jupiter.

        Args:
            input_mint: Source token mint
            output_mint: Destination token mint
            amount: Amount in base units
            slippage_bps: Max slippage in basis points

        Returns:
            Quote with best available rate
        """
        if amount <= 0:
            raise QuoteUnavailable("Amount must be greater than zero", details={"amount": amount})
        if slippage_bps is None:
            slippage_bps = self.default_slippage_bps

        try:
            response = await self.http.get(
                f"{self.base_url}/quote",
                headers=self._get_headers(),
                params={
                    "inputMint": input_mint,
                    "outputMint": output_mint,
                    "amount": str(amount),
                    "slippageBps": str(slippage_bps),
                },
            )
        except httpx.HTTPError as e:
            logger.error(f"Jupiter quote transport error: {e}")
            raise UpstreamError(f"Jupiter quote request failed: {e}") from e

        if response.status_code != 200:
            message, code = _upstream_message(response)
            logger.warning(f"Jupiter quote error: {response.status_code} - {message}")
            if response.status_code == 429 or response.status_code >= 500:
                raise UpstreamError(
                    f"Jupiter quote failed with HTTP {response.status_code}",
                    details={"message": message, "errorCode": code},
                )
            raise QuoteUnavailable(message, details={"errorCode": code})

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError("Jupiter quote returned invalid JSON") from e

        quote = self._parse_quote(data, slippage_bps)
        logger.info(
            f"Jupiter quote: {quote.in_amount} {quote.input_mint} -> "
            f"{quote.out_amount} {quote.output_mint} via {', '.join(quote.dex_labels) or 'direct'}"
        )
        return quote

    @staticmethod
    def _parse_quote(data: Any, slippage_bps: int) -> Quote:
        """Validate a /quote payload and wrap it in a Quote."""
        if not isinstance(data, dict):
            raise UpstreamError("Jupiter quote payload is not an object")
        if data.get("error"):
            raise QuoteUnavailable(str(data["error"]), details={"errorCode": data.get("errorCode")})

        try:
            in_amount = int(data["inAmount"])
            out_amount = int(data["outAmount"])
            other_amount_threshold = int(data.get("otherAmountThreshold", 0))
            price_impact = Decimal(str(data.get("priceImpactPct") or "0"))
            input_mint = str(Pubkey.from_string(data["inputMint"]))
            output_mint = str(Pubkey.from_string(data["outputMint"]))
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            raise UpstreamError(f"Malformed Jupiter quote: {e}") from e

        if out_amount <= 0:
            raise QuoteUnavailable("No route with a positive output amount")

        labels = []
        for step in data.get("routePlan") or []:
            label = (step.get("swapInfo") or {}).get("label")
            if label:
                labels.append(label)

        return Quote(
            input_mint=input_mint,
            output_mint=output_mint,
            in_amount=in_amount,
            out_amount=out_amount,
            slippage_bps=int(data.get("slippageBps", slippage_bps)),
            route=data,
            other_amount_threshold=other_amount_threshold,
            price_impact_pct=price_impact,
            dex_labels=tuple(labels),
        )

    def quote_from_api(self, payload: dict) -> Quote:
        """Rebuild a Quote from a /quote payload sent back by a client."""
        try:
            return self._parse_quote(payload, self.default_slippage_bps)
        except (UpstreamError, QuoteUnavailable) as e:
            raise InvalidRequest(f"quoteResponse is not a usable quote: {e.message}") from e

    async def get_swap_instructions(
        self,
        quote: Quote,
        payer: Pubkey,
        destination_token_account: Optional[Pubkey] = None,
    ) -> InstructionSet:
        """Fetch and parse the instructions implementing ``quote``.

        Transport failures surface as UpstreamError; any answer Jupiter
        gives other than a usable instruction bundle is a resolution error.
        """
        body = {
            "quoteResponse": quote.to_api(),
            "userPublicKey": str(payer),
            "dynamicComputeUnitLimit": self.dynamic_compute_unit_limit,
            "wrapAndUnwrapSol": self.wrap_and_unwrap_sol,
        }
        if destination_token_account is not None:
            body["destinationTokenAccount"] = str(destination_token_account)

        try:
            response = await self.http.post(
                f"{self.base_url}/swap-instructions",
                headers=self._get_headers(),
                json=body,
            )
        except httpx.HTTPError as e:
            logger.error(f"Jupiter swap-instructions transport error: {e}")
            raise UpstreamError(f"Jupiter swap-instructions request failed: {e}") from e

        if response.status_code != 200:
            message, code = _upstream_message(response)
            logger.warning(f"Jupiter swap-instructions error: {response.status_code} - {message}")
            if _is_expiry(message, code):
                raise QuoteExpired(message, details={"errorCode": code})
            raise InstructionResolutionError(message, details={"errorCode": code})

        try:
            data = response.json()
        except ValueError as e:
            raise InstructionResolutionError("Jupiter swap-instructions returned invalid JSON") from e
        if not isinstance(data, dict):
            raise InstructionResolutionError("Jupiter swap-instructions payload is not an object")
        if data.get("error"):
            message = str(data["error"])
            code = data.get("errorCode")
            if _is_expiry(message, code):
                raise QuoteExpired(message, details={"errorCode": code})
            raise InstructionResolutionError(message, details={"errorCode": code})

        return self._parse_instructions(data, quote)

    @staticmethod
    def _parse_instructions(data: dict, quote: Quote) -> InstructionSet:
        if not data.get("swapInstruction"):
            raise InstructionResolutionError("Jupiter response has no swap instruction")

        cleanup = data.get("cleanupInstruction")
        try:
            lookup_tables = tuple(
                Pubkey.from_string(address)
                for address in data.get("addressLookupTableAddresses") or []
            )
        except (TypeError, ValueError) as e:
            raise InstructionResolutionError(f"Malformed lookup table address: {e}") from e

        return InstructionSet(
            input_mint=quote.input_mint,
            output_mint=quote.output_mint,
            swap_instruction=decode_instruction(data["swapInstruction"]),
            compute_budget_instructions=tuple(
                decode_instruction(ix) for ix in data.get("computeBudgetInstructions") or []
            ),
            setup_instructions=tuple(
                decode_instruction(ix) for ix in data.get("setupInstructions") or []
            ),
            cleanup_instruction=decode_instruction(cleanup) if cleanup else None,
            lookup_table_addresses=lookup_tables,
        )
