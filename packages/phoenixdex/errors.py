"""Exception types shared by the ingestion and query paths."""

from __future__ import annotations


class PhoenixToolError(Exception):
    """Base class for all PhoenixTool errors."""

    status_code: int = 500


class ConfigurationError(PhoenixToolError):
    """Raised when a required endpoint or credential is missing."""


class DecodeError(PhoenixToolError):
    """Raised when a raw event or market header cannot be decoded."""


class MetadataUnavailable(PhoenixToolError):
    """Raised when a market account cannot be fetched or decoded."""

    def __init__(self, market: str, reason: str):
        super().__init__(f"Market metadata unavailable for {market}: {reason}")
        self.market = market
        self.reason = reason


class LedgerTransportError(PhoenixToolError):
    """Raised on RPC transport failures or JSON-RPC error payloads."""


class StoreWriteError(PhoenixToolError):
    """Raised when a row cannot be written to ClickHouse."""


# Query-path errors. Each carries the HTTP status the API answers with.


class InvalidRange(PhoenixToolError):
    status_code = 400

    def __init__(self, start_time: int, end_time: int):
        super().__init__("start_time must be less than end_time")
        self.start_time = start_time
        self.end_time = end_time


class InvalidInterval(PhoenixToolError):
    status_code = 400

    def __init__(self, interval: str, supported: tuple[str, ...]):
        super().__init__(
            f"Invalid interval {interval!r}. Supported values: {', '.join(supported)}"
        )
        self.interval = interval


class RateLimited(PhoenixToolError):
    status_code = 429

    def __init__(self, user_id: str, retry_after: float):
        super().__init__("Rate limit exceeded. Please try again later.")
        self.user_id = user_id
        self.retry_after = retry_after


class InsufficientCredits(PhoenixToolError):
    status_code = 402

    def __init__(self, user_id: str):
        super().__init__(f"Insufficient credits for user {user_id}")
        self.user_id = user_id


class NoDataFound(PhoenixToolError):
    status_code = 404

    def __init__(self, base_mint: str, quote_mint: str):
        super().__init__(f"No fills found for {base_mint}/{quote_mint} in range")
        self.base_mint = base_mint
        self.quote_mint = quote_mint
