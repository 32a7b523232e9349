"""Error taxonomy for the swap pipeline.

Every stage raises one of these instead of an opaque exception. Each kind
carries a stable name and HTTP status so the web layer can render it
without knowing which stage failed.
"""

from typing import Any, Optional


class SwapError(Exception):
    """Base class for all typed pipeline failures."""

    kind = "SwapError"
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {
            "status": "error",
            "error": self.kind,
            "message": self.message,
            "details": self.details,
        }


class InvalidRequest(SwapError):
    """Client input that passed schema validation but is still unusable."""

    kind = "InvalidRequest"
    status_code = 400


class QuoteUnavailable(SwapError):
    """The aggregator has no usable route for the requested pair/amount."""

    kind = "QuoteUnavailable"
    status_code = 404


class UpstreamError(SwapError):
    """Transport failure, 5xx or malformed payload from the aggregator or RPC node."""

    kind = "UpstreamError"
    status_code = 502


class InstructionResolutionError(SwapError):
    """The aggregator could not turn the quote into instructions."""

    kind = "InstructionResolutionError"
    status_code = 502


class QuoteExpired(InstructionResolutionError):
    """The aggregator rejected the quote as stale."""

    kind = "QuoteExpired"
    status_code = 409


class TransactionTooLarge(SwapError):
    kind = "TransactionTooLarge"
    status_code = 422


class SigningError(SwapError):
    """The supplied key is unusable or does not belong to the payer."""

    kind = "SigningError"
    status_code = 400


class SimulationError(SwapError):
    """Simulation reported an on-chain error; details hold the program logs."""

    kind = "SimulationError"
    status_code = 422


class SubmissionError(SwapError):
    kind = "SubmissionError"
    status_code = 502


class Expired(SwapError):
    """The blockhash validity window elapsed before confirmation."""

    kind = "Expired"
    status_code = 504


class OnChainError(SwapError):
    """The transaction landed but failed on-chain."""

    kind = "OnChainError"
    status_code = 422


class RpcError(UpstreamError):
    """JSON-RPC level error returned by the node.

    Attributes:
        code: JSON-RPC error code
        data: Error data (simulation logs for preflight failures)
    """

    def __init__(self, method: str, code: Optional[int], message: str, data: Optional[Any] = None):
        super().__init__(f"{method} failed: {message}", details=data)
        self.method = method
        self.code = code
        self.data = data

    @property
    def logs(self) -> list[str]:
        if isinstance(self.data, dict):
            return list(self.data.get("logs") or [])
        return []
