"""Phoenix DEX fill ingestion and OHLC query package."""

from .admission import AdmissionControl, CreditGate, RateLimiter, RateLimitWindow
from .decoder import decode, decode_transaction, events_from_transaction, parse_fills
from .errors import (
    ConfigurationError,
    DecodeError,
    InsufficientCredits,
    InvalidInterval,
    InvalidRange,
    LedgerTransportError,
    MetadataUnavailable,
    NoDataFound,
    PhoenixToolError,
    RateLimited,
    StoreWriteError,
)
from .events import CanonicalEvent, RawEventBatch, RawEventHeader, Side
from .http_client import HttpClient
from .ingestion import CursorStore, IngestionLoop, IngestStats
from .ledger import PHOENIX_PROGRAM_ID, SolanaRpcClient
from .market_metadata import MarketMetadata, MarketMetadataCache
from .ohlc import INTERVAL_MINUTES, OhlcQueryService
from .store import ClickHouseStore, Ohlc
from .supervisor import Supervisor

__all__ = [
    "AdmissionControl",
    "CreditGate",
    "RateLimiter",
    "RateLimitWindow",
    "decode",
    "decode_transaction",
    "events_from_transaction",
    "parse_fills",
    "ConfigurationError",
    "DecodeError",
    "InsufficientCredits",
    "InvalidInterval",
    "InvalidRange",
    "LedgerTransportError",
    "MetadataUnavailable",
    "NoDataFound",
    "PhoenixToolError",
    "RateLimited",
    "StoreWriteError",
    "CanonicalEvent",
    "RawEventBatch",
    "RawEventHeader",
    "Side",
    "HttpClient",
    "CursorStore",
    "IngestionLoop",
    "IngestStats",
    "PHOENIX_PROGRAM_ID",
    "SolanaRpcClient",
    "MarketMetadata",
    "MarketMetadataCache",
    "INTERVAL_MINUTES",
    "OhlcQueryService",
    "ClickHouseStore",
    "Ohlc",
    "Supervisor",
]
