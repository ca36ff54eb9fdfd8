"""Canonical Phoenix market events.

Every decoded occurrence is a ``CanonicalEvent`` envelope carrying the
transaction-level header fields plus a ``details`` payload. The payload is a
closed tagged union: each variant is a frozen dataclass whose ``kind`` field
names the variant, and consumers dispatch on ``details.kind``.

Raw inputs (``RawEventHeader`` / ``RawEventBatch``) are what the event log
parser hands the decoder: one header per market touched by a transaction and
a list of raw event mappings, each tagged with a ``kind``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Optional, Union

# Raw event tags emitted by the exchange program.
EVENT_KIND_FILL = "Fill"
EVENT_KIND_REDUCE = "Reduce"
EVENT_KIND_PLACE = "Place"
EVENT_KIND_EVICT = "Evict"
EVENT_KIND_FILL_SUMMARY = "FillSummary"
EVENT_KIND_FEE = "Fee"
EVENT_KIND_TIME_IN_FORCE = "TimeInForce"
EVENT_KIND_EXPIRED_ORDER = "ExpiredOrder"

KNOWN_RAW_EVENT_KINDS: frozenset[str] = frozenset(
    {
        EVENT_KIND_FILL,
        EVENT_KIND_REDUCE,
        EVENT_KIND_PLACE,
        EVENT_KIND_EVICT,
        EVENT_KIND_FILL_SUMMARY,
        EVENT_KIND_FEE,
        EVENT_KIND_TIME_IN_FORCE,
        EVENT_KIND_EXPIRED_ORDER,
    }
)

_BID_BIT = 1 << 63


class Side(str, Enum):
    BID = "Bid"
    ASK = "Ask"

    @classmethod
    def from_order_sequence_number(cls, order_sequence_number: int) -> "Side":
        """Bids carry bit-inverted sequence numbers, so the top bit marks a bid."""
        if order_sequence_number & _BID_BIT:
            return cls.BID
        return cls.ASK


@dataclass(frozen=True)
class Fill:
    order_sequence_number: int
    maker: str
    taker: str
    price_in_ticks: int
    base_lots_filled: int
    base_lots_remaining: int
    side_filled: Side
    is_full_fill: bool
    kind: Literal["Fill"] = "Fill"


@dataclass(frozen=True)
class Reduce:
    order_sequence_number: int
    maker: str
    price_in_ticks: int
    base_lots_removed: int
    base_lots_remaining: int
    is_full_cancel: bool
    kind: Literal["Reduce"] = "Reduce"


@dataclass(frozen=True)
class Place:
    order_sequence_number: int
    client_order_id: int
    maker: str
    price_in_ticks: int
    base_lots_placed: int
    kind: Literal["Place"] = "Place"


@dataclass(frozen=True)
class Evict:
    order_sequence_number: int
    maker: str
    price_in_ticks: int
    base_lots_evicted: int
    kind: Literal["Evict"] = "Evict"


@dataclass(frozen=True)
class FillSummary:
    client_order_id: int
    total_base_filled: int
    total_quote_filled_including_fees: int
    total_quote_fees: int
    trade_direction: int
    kind: Literal["FillSummary"] = "FillSummary"


@dataclass(frozen=True)
class Fee:
    fees_collected_in_quote_atoms: int
    kind: Literal["Fee"] = "Fee"


@dataclass(frozen=True)
class TimeInForce:
    order_sequence_number: int
    last_valid_slot: int
    last_valid_unix_timestamp_in_seconds: int
    kind: Literal["TimeInForce"] = "TimeInForce"


MarketEventDetails = Union[Fill, Reduce, Place, Evict, FillSummary, Fee, TimeInForce]


@dataclass(frozen=True)
class CanonicalEvent:
    """One normalized exchange event."""

    market: str
    sequence_number: int
    slot: int
    timestamp: int
    signature: str
    signer: str
    event_index: int
    details: MarketEventDetails

    @property
    def kind(self) -> str:
        return self.details.kind

    def to_dict(self) -> dict[str, Any]:
        details = {
            key: (value.value if isinstance(value, Side) else value)
            for key, value in self.details.__dict__.items()
        }
        return {
            "market": self.market,
            "sequence_number": self.sequence_number,
            "slot": self.slot,
            "timestamp": self.timestamp,
            "signature": self.signature,
            "signer": self.signer,
            "event_index": self.event_index,
            "details": details,
        }


@dataclass(frozen=True)
class RawEventHeader:
    """Header shared by every raw event the exchange logged for one market."""

    market: str
    sequence_number: int
    slot: int
    timestamp: int
    signer: str

    @classmethod
    def from_dict(cls, data: dict) -> "RawEventHeader":
        return cls(
            market=str(data["market"]),
            sequence_number=int(data.get("sequence_number", data.get("sequenceNumber", 0))),
            slot=int(data.get("slot", 0)),
            timestamp=int(data.get("timestamp", 0)),
            signer=str(data["signer"]),
        )


@dataclass
class RawEventBatch:
    """Raw events for one market header, in log order."""

    header: RawEventHeader
    batch: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "RawEventBatch":
        events = data.get("batch") or data.get("events") or []
        return cls(
            header=RawEventHeader.from_dict(data["header"]),
            batch=[dict(event) for event in events],
        )


@dataclass
class LedgerTransaction:
    """A fetched transaction as seen by the ingestion path."""

    signature: str
    slot: int
    is_error: bool
    raw_event_log: Optional[list[RawEventBatch]]
    block_time: Optional[int] = None
