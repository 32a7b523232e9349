"""Request and response contracts for the swap endpoints.

Field names on the wire are camelCase to match the aggregator payloads
clients already handle; Python code uses the snake_case attributes.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator


class QuoteRequest(BaseModel):
    """Request for a swap quote."""

    model_config = ConfigDict(populate_by_name=True)

    input_mint: str = Field(..., alias="inputMint", description="Mint of the asset being sold")
    output_mint: str = Field(..., alias="outputMint", description="Mint of the asset being bought")
    amount: int = Field(..., gt=0, description="Input amount in base units")
    slippage_bps: Optional[int] = Field(
        None, alias="slippageBps", ge=0, le=10_000, description="Slippage tolerance in basis points"
    )


class SwapRequest(BaseModel):
    """Request to execute a previously quoted swap."""

    model_config = ConfigDict(populate_by_name=True)

    quote_response: dict[str, Any] = Field(
        ..., alias="quoteResponse", description="Quote exactly as returned by /swap/quote"
    )
    user_private_key: Optional[SecretStr] = Field(
        None,
        alias="userPrivateKey",
        description="Base64 ed25519 secret key (32 or 64 bytes); omit to only check token accounts",
    )
    user_public_key: Optional[str] = Field(
        None, alias="userPublicKey", description="Expected wallet address of the key"
    )
    recipient_address: Optional[str] = Field(
        None, alias="recipientAddress", description="Wallet receiving the output (defaults to payer)"
    )

    @model_validator(mode="after")
    def require_wallet(self) -> "SwapRequest":
        if self.user_private_key is None and not self.user_public_key:
            raise ValueError("userPublicKey is required when userPrivateKey is omitted")
        return self


class CreateTokenAccountsRequest(BaseModel):
    """Client-signed transaction returned from a needs_token_accounts response."""

    model_config = ConfigDict(populate_by_name=True)

    signed_transaction: str = Field(
        ..., alias="signedTransaction", description="Base64 signed transaction"
    )


class MissingAccountInfo(BaseModel):
    """A token account that has to be created before swapping."""

    model_config = ConfigDict(populate_by_name=True)

    mint: str
    owner: str
    address: str
    token_program: str = Field(..., alias="tokenProgram")


class SwapSuccessResponse(BaseModel):
    status: Literal["success"] = "success"
    signature: str = Field(..., description="Confirmed transaction signature")


class NeedsTokenAccountsResponse(BaseModel):
    """Returned with 202 when token accounts must be created first."""

    model_config = ConfigDict(populate_by_name=True)

    status: Literal["needs_token_accounts"] = "needs_token_accounts"
    create_account_transaction: str = Field(
        ..., alias="createAccountTransaction", description="Unsigned base64 transaction"
    )
    missing_accounts: list[MissingAccountInfo] = Field(default_factory=list, alias="missingAccounts")
    message: str = Field(
        default="Token accounts need to be created. Sign and submit the transaction, then retry the swap."
    )


class TokenAccountsCreatedResponse(BaseModel):
    status: Literal["success"] = "success"
    signature: str
    message: str = "Token accounts created successfully"


class ErrorResponse(BaseModel):
    status: Literal["error"] = "error"
    error: str = Field(..., description="Error kind")
    message: str
    details: Optional[Any] = None
