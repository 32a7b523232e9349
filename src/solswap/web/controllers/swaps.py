"""Swap API endpoints.

- POST /swap/quote: price a swap
- POST /swap/swap: execute a quoted swap (200 on success, 202 when token
  accounts must be created first)
- POST /swap/create-token-accounts: broadcast the signed account creation
  transaction from a 202 response
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from solswap.errors import SwapError
from solswap.swap.executor import Confirmed, Failed, NeedsPrerequisiteAccounts
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
from solswap.web.services.swap_service import SwapService

router = APIRouter(prefix="/swap", tags=["swap"])


def get_swap_service(request: Request) -> SwapService:
    """Service instance created in the application lifespan."""
    return request.app.state.swap_service


@router.post("/quote", responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}})
async def get_quote(
    request: QuoteRequest,
    service: SwapService = Depends(get_swap_service),
) -> dict:
    """Get a swap quote.

    The aggregator's quote payload is returned as-is; send it back unchanged
    as ``quoteResponse`` when executing the swap.
    """
    return await service.get_quote(request)


@router.post(
    "/swap",
    response_model=SwapSuccessResponse,
    responses={202: {"model": NeedsTokenAccountsResponse}},
)
async def execute_swap(
    request: SwapRequest,
    service: SwapService = Depends(get_swap_service),
):
    """Execute a quoted swap.

    The client must:
    1. Get a quote from /swap/quote
    2. Post it back with the wallet's secret key, or with only
       ``userPublicKey`` to check which token accounts are missing
    3. On 202, sign ``createAccountTransaction``, submit it to
       /swap/create-token-accounts, then request a fresh quote and retry
    """
    outcome = await service.execute_swap(request)

    if isinstance(outcome, Failed):
        raise outcome.error

    if isinstance(outcome, NeedsPrerequisiteAccounts):
        body = NeedsTokenAccountsResponse(
            create_account_transaction=outcome.unsigned_transaction,
            missing_accounts=[
                MissingAccountInfo.model_validate(account.to_dict())
                for account in outcome.missing_accounts
            ],
        )
        return JSONResponse(status_code=202, content=body.model_dump(by_alias=True))

    if not isinstance(outcome, Confirmed):
        raise SwapError(f"Unexpected swap outcome: {type(outcome).__name__}")
    return SwapSuccessResponse(signature=outcome.signature)


@router.post("/create-token-accounts", response_model=TokenAccountsCreatedResponse)
async def create_token_accounts(
    request: CreateTokenAccountsRequest,
    service: SwapService = Depends(get_swap_service),
) -> TokenAccountsCreatedResponse:
    """Broadcast a client-signed token account creation transaction."""
    signature = await service.create_token_accounts(request)
    return TokenAccountsCreatedResponse(signature=signature)
