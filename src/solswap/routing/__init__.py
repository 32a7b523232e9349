"""Routing module for swap quotes and instructions.

Aggregators:
- Jupiter: Solana DEX aggregator (SOL, SPL and Token-2022 tokens)
"""

from solswap.routing.base import Aggregator, InstructionSet, Quote
from solswap.routing.jupiter import JupiterAggregator

__all__ = [
    "Aggregator",
    "InstructionSet",
    "Quote",
    "JupiterAggregator",
]
