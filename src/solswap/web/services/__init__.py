"""Business logic behind the web controllers."""

from solswap.web.services.swap_service import SwapService

__all__ = ["SwapService"]
