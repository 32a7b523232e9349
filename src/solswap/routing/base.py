"""Abstract aggregator interface and the values it produces."""

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from solders.instruction import Instruction
from solders.pubkey import Pubkey

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Quote:
    """A priced route for swapping a fixed input amount.

    Amounts are in base units of each mint. ``route`` is the aggregator's
    full quote payload; it is opaque to us and must be handed back verbatim
    when asking for instructions.
    """

    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    slippage_bps: int
    route: dict = field(repr=False, compare=False)
    other_amount_threshold: int = 0
    price_impact_pct: Decimal = Decimal("0")
    dex_labels: tuple[str, ...] = ()

    def to_api(self) -> dict:
        """Return a copy of the aggregator payload this quote was built from."""
        return copy.deepcopy(self.route)


@dataclass(frozen=True)
class InstructionSet:
    """Instructions the aggregator returned for one quote."""

    input_mint: str
    output_mint: str
    swap_instruction: Instruction
    compute_budget_instructions: tuple[Instruction, ...] = ()
    setup_instructions: tuple[Instruction, ...] = ()
    cleanup_instruction: Optional[Instruction] = None
    lookup_table_addresses: tuple[Pubkey, ...] = ()


class Aggregator(ABC):
    """Abstract base class for swap aggregators."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Aggregator name identifier."""
        pass

    @abstractmethod
    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: Optional[int] = None,
    ) -> Quote:
        """
        Get a swap quote.

        Args:
            input_mint: Mint address of the asset being sold
            output_mint: Mint address of the asset being bought
            amount: Input amount in base units (must be > 0)
            slippage_bps: Slippage tolerance in basis points

        Returns:
            Quote for the best route

        Raises:
            QuoteUnavailable: No usable route exists
            UpstreamError: The aggregator could not be reached or answered garbage
        """
        pass

    @abstractmethod
    def quote_from_api(self, payload: dict) -> Quote:
        """Rebuild a Quote from a payload previously handed to a client.

        Raises:
            InvalidRequest: Payload is not a quote this aggregator produced
        """
        pass

    @abstractmethod
    async def get_swap_instructions(
        self,
        quote: Quote,
        payer: Pubkey,
        destination_token_account: Optional[Pubkey] = None,
    ) -> InstructionSet:
        """
        Turn a quote into executable instructions for ``payer``.

        Args:
            quote: Quote previously returned by get_quote
            payer: Wallet that signs and pays for the swap
            destination_token_account: Token account that receives the output,
                when it is not the payer's own

        Returns:
            Parsed and validated InstructionSet

        Raises:
            InstructionResolutionError: The quote could not be resolved
            QuoteExpired: The aggregator rejected the quote as stale
        """
        pass
