"""
Exception types shared by the tracker services.
"""

from typing import Any, Dict, Optional


class SolPnLError(Exception):
    """Base class for all tracker errors."""


class CollaboratorError(SolPnLError):
    """An external service (price, order book, chain) could not be used."""


class NetworkError(CollaboratorError):
    """Request never produced an HTTP response."""

    def __init__(self, url: str, cause: Optional[BaseException] = None):
        self.url = url
        self.cause = cause
        super().__init__(f"Network error calling {url}: {cause}")


class JupiterApiError(CollaboratorError):
    """Jupiter answered with an error status or a body that cannot be used."""

    def __init__(self, message: str, status_code: int, details: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        self.details = details or {}
        super().__init__(f"Jupiter API error {status_code}: {message}")


class RateLimitError(JupiterApiError):
    """HTTP 429 from Jupiter."""

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(f"rate limited, retry after {retry_after}s", 429)


class RpcError(CollaboratorError):
    """Solana JSON-RPC returned an error object."""

    def __init__(self, method: str, code: Optional[int], message: str):
        self.method = method
        self.code = code
        super().__init__(f"RPC {method} failed ({code}): {message}")


class LedgerStoreError(SolPnLError):
    """Ledger could not be read from or written to its backing storage."""


class InvalidAmountError(SolPnLError, ValueError):
    """A numeric string in a trade is not a finite decimal."""
