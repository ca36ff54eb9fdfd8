"""Per-market unit conversion metadata and its read-through cache."""

from __future__ import annotations

import logging
import struct
import threading
from dataclasses import asdict, dataclass
from typing import Iterable, Optional, Protocol

import base58

from .errors import LedgerTransportError, MetadataUnavailable
from .http_client import HttpClient

logger = logging.getLogger(__name__)

DEFAULT_MARKET_CONFIG_URL = (
    "https://raw.githubusercontent.com/Ellipsis-Labs/phoenix-sdk/master/typescript/phoenix-sdk/config.json"
)

MAINNET_GENESIS_HASH = "5eykt4UsFv8P8NJdTREpY1vzqKqZKvdpKuc147dw2N9d"
DEVNET_GENESIS_HASH = "EtWTRABZaYq6iMfeYKouRu166VU2xqa1wcaWoxPkrZBG"

# MarketHeader, little-endian:
#   discriminant, status, bids_size, asks_size, num_seats            5 x u64
#   base params: decimals u32, vault_bump u32, mint[32], vault[32]
#   base_lot_size                                                    u64
#   quote params: decimals u32, vault_bump u32, mint[32], vault[32]
#   quote_lot_size, tick_size_in_quote_atoms_per_base_unit           2 x u64
#   authority[32], fee_recipient[32], market_sequence_number u64, successor[32]
#   raw_base_units_per_base_unit u32, padding u32, padding[256]
_HEADER_STRUCT = struct.Struct("<5Q II32s32s Q II32s32s QQ 32s32sQ32s II256x")
MARKET_HEADER_SIZE = _HEADER_STRUCT.size


@dataclass(frozen=True)
class MarketSizeParams:
    bids_size: int
    asks_size: int
    num_seats: int


@dataclass(frozen=True)
class MarketHeader:
    """Fields of the on-chain market header needed to derive metadata."""

    discriminant: int
    status: int
    market_size_params: MarketSizeParams
    base_decimals: int
    base_mint: str
    base_lot_size: int
    quote_decimals: int
    quote_mint: str
    quote_lot_size: int
    tick_size_in_quote_atoms_per_base_unit: int
    authority: str
    market_sequence_number: int
    raw_base_units_per_base_unit: int


def decode_market_header(data: bytes) -> MarketHeader:
    """Decode the fixed-size header at the start of a market account.

    Raises:
        ValueError: If ``data`` is shorter than a header.
    """
    if len(data) < MARKET_HEADER_SIZE:
        raise ValueError(
            f"market account is {len(data)} bytes, header needs {MARKET_HEADER_SIZE}"
        )
    (
        discriminant,
        status,
        bids_size,
        asks_size,
        num_seats,
        base_decimals,
        _base_vault_bump,
        base_mint,
        _base_vault,
        base_lot_size,
        quote_decimals,
        _quote_vault_bump,
        quote_mint,
        _quote_vault,
        quote_lot_size,
        tick_size,
        authority,
        _fee_recipient,
        market_sequence_number,
        _successor,
        raw_base_units_per_base_unit,
        _padding,
    ) = _HEADER_STRUCT.unpack_from(data, 0)
    return MarketHeader(
        discriminant=discriminant,
        status=status,
        market_size_params=MarketSizeParams(bids_size, asks_size, num_seats),
        base_decimals=base_decimals,
        base_mint=base58.b58encode(base_mint).decode("ascii"),
        base_lot_size=base_lot_size,
        quote_decimals=quote_decimals,
        quote_mint=base58.b58encode(quote_mint).decode("ascii"),
        quote_lot_size=quote_lot_size,
        tick_size_in_quote_atoms_per_base_unit=tick_size,
        authority=base58.b58encode(authority).decode("ascii"),
        market_sequence_number=market_sequence_number,
        raw_base_units_per_base_unit=raw_base_units_per_base_unit,
    )


@dataclass(frozen=True)
class MarketMetadata:
    """Conversion constants between raw lots/ticks and atoms for one market."""

    base_mint: str
    quote_mint: str
    base_decimals: int
    quote_decimals: int
    base_atoms_per_raw_base_unit: int
    quote_atoms_per_quote_unit: int
    quote_atoms_per_quote_lot: int
    base_atoms_per_base_lot: int
    tick_size_in_quote_atoms_per_base_unit: int
    num_base_lots_per_base_unit: int
    raw_base_units_per_base_unit: int
    market_size_params: MarketSizeParams

    @classmethod
    def from_header(cls, header: MarketHeader) -> "MarketMetadata":
        if header.base_lot_size == 0 or header.quote_lot_size == 0:
            raise ValueError("market header has a zero lot size")
        base_atoms_per_raw_base_unit = 10**header.base_decimals
        raw_base_units_per_base_unit = max(header.raw_base_units_per_base_unit, 1)
        return cls(
            base_mint=header.base_mint,
            quote_mint=header.quote_mint,
            base_decimals=header.base_decimals,
            quote_decimals=header.quote_decimals,
            base_atoms_per_raw_base_unit=base_atoms_per_raw_base_unit,
            quote_atoms_per_quote_unit=10**header.quote_decimals,
            quote_atoms_per_quote_lot=header.quote_lot_size,
            base_atoms_per_base_lot=header.base_lot_size,
            tick_size_in_quote_atoms_per_base_unit=header.tick_size_in_quote_atoms_per_base_unit,
            num_base_lots_per_base_unit=(
                base_atoms_per_raw_base_unit * raw_base_units_per_base_unit
            )
            // header.base_lot_size,
            raw_base_units_per_base_unit=raw_base_units_per_base_unit,
            market_size_params=header.market_size_params,
        )

    def base_lots_to_units(self, base_lots: int) -> float:
        """Base lots expressed in whole base units (display only)."""
        return base_lots / self.num_base_lots_per_base_unit

    def ticks_to_price(self, price_in_ticks: int) -> float:
        """Price in ticks expressed as quote units per raw base unit (display only)."""
        return (price_in_ticks * self.tick_size_in_quote_atoms_per_base_unit) / (
            self.quote_atoms_per_quote_unit * self.raw_base_units_per_base_unit
        )

    def to_row(self) -> dict:
        row = asdict(self)
        size_params = row.pop("market_size_params")
        row.update(size_params)
        return row


class AccountDataSource(Protocol):
    def get_account_data(self, pubkey: str) -> bytes: ...


def cluster_for_genesis_hash(genesis_hash: str) -> str:
    if genesis_hash == MAINNET_GENESIS_HASH:
        return "mainnet-beta"
    if genesis_hash == DEVNET_GENESIS_HASH:
        return "devnet"
    return "localhost"


class _PendingFetch:
    """In-flight fetch that concurrent misses for the same market wait on."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.metadata: Optional[MarketMetadata] = None
        self.error: Optional[MetadataUnavailable] = None


class MarketMetadataCache:
    """Read-through cache of ``MarketMetadata`` keyed by market address.

    Entries never expire. The map lock only guards lookups and inserts; the
    account fetch happens outside it, and concurrent misses for one market
    share a single fetch.
    """

    def __init__(self, ledger: AccountDataSource):
        self.ledger = ledger
        self._lock = threading.Lock()
        self._entries: dict[str, MarketMetadata] = {}
        self._pending: dict[str, _PendingFetch] = {}
        self.fetch_count = 0

    def __contains__(self, market: str) -> bool:
        with self._lock:
            return market in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def snapshot(self) -> dict[str, MarketMetadata]:
        with self._lock:
            return dict(self._entries)

    def get(self, market: str) -> MarketMetadata:
        """Return metadata for ``market``, fetching it from the ledger on a miss.

        Raises:
            MetadataUnavailable: If the account cannot be fetched or decoded.
        """
        with self._lock:
            cached = self._entries.get(market)
            if cached is not None:
                return cached
            pending = self._pending.get(market)
            leader = pending is None
            if leader:
                pending = _PendingFetch()
                self._pending[market] = pending

        if not leader:
            pending.done.wait()
            if pending.error is not None:
                raise pending.error
            if pending.metadata is None:
                raise MetadataUnavailable(market, "concurrent fetch failed")
            return pending.metadata

        try:
            metadata = self._fetch(market)
        except MetadataUnavailable as exc:
            pending.error = exc
            raise
        else:
            pending.metadata = metadata
            with self._lock:
                self._entries[market] = metadata
            return metadata
        finally:
            with self._lock:
                self._pending.pop(market, None)
            pending.done.set()

    def _fetch(self, market: str) -> MarketMetadata:
        with self._lock:
            self.fetch_count += 1
        try:
            data = self.ledger.get_account_data(market)
        except LedgerTransportError as exc:
            raise MetadataUnavailable(market, f"failed to fetch market account: {exc}") from exc
        if not data:
            raise MetadataUnavailable(market, "market account not found")
        try:
            metadata = MarketMetadata.from_header(decode_market_header(data))
        except (ValueError, struct.error) as exc:
            raise MetadataUnavailable(market, f"failed to decode market header: {exc}") from exc
        logger.info(
            f"Loaded metadata for market {market}: "
            f"{metadata.base_mint}/{metadata.quote_mint}"
        )
        return metadata

    def preload(self, markets: Iterable[str]) -> int:
        """Eagerly load ``markets``; returns how many are now cached.

        Markets that fail to load are logged and left for a lazy retry.
        """
        loaded = 0
        for market in markets:
            try:
                self.get(market)
                loaded += 1
            except MetadataUnavailable as exc:
                logger.warning(f"Skipping market during preload: {exc}")
        return loaded

    def load_known_markets(
        self,
        cluster: str,
        config_url: str = DEFAULT_MARKET_CONFIG_URL,
        http: Optional[HttpClient] = None,
    ) -> int:
        """Preload every market listed for ``cluster`` in the public market config."""
        http = http or HttpClient(base_url=config_url, timeout=20.0)
        try:
            config = http.get_json("")
        except Exception as exc:
            raise MetadataUnavailable("*", f"failed to load market config: {exc}") from exc
        details = config.get(cluster) if isinstance(config, dict) else None
        if not details:
            raise MetadataUnavailable("*", f"cluster {cluster} not found in market config")
        markets = [str(m) for m in details.get("markets", [])]
        logger.info(f"Preloading {len(markets)} known markets for {cluster}")
        return self.preload(markets)
