"""Solana JSON-RPC access."""

from solswap.rpc.client import SolanaRpcClient

__all__ = ["SolanaRpcClient"]
