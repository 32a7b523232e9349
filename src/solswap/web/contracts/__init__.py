"""Request and response contracts for the web layer."""

from solswap.web.contracts.swaps import (
    CreateTokenAccountsRequest,
    ErrorResponse,
    MissingAccountInfo,
    NeedsTokenAccountsResponse,
    QuoteRequest,
    SwapRequest,
    SwapSuccessResponse,
    TokenAccountsCreatedResponse,
)

__all__ = [
    "QuoteRequest",
    "SwapRequest",
    "CreateTokenAccountsRequest",
    "MissingAccountInfo",
    "SwapSuccessResponse",
    "NeedsTokenAccountsResponse",
    "TokenAccountsCreatedResponse",
    "ErrorResponse",
]
