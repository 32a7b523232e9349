"""Solswap - Solana token swap orchestration service."""

__version__ = "0.1.0"
