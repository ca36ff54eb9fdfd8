"""Decode raw Phoenix event batches into canonical events.

A transaction's exchange log is a list of ``RawEventBatch`` entries, one per
market header. ``decode_transaction`` walks them in order, resolving market
metadata once per market and threading a ``TradeDirection`` accumulator so
that every ``FillSummary`` carries the direction of the transaction's first
fill.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Protocol

from .errors import DecodeError
from .events import (
    EVENT_KIND_EVICT,
    EVENT_KIND_EXPIRED_ORDER,
    EVENT_KIND_FEE,
    EVENT_KIND_FILL,
    EVENT_KIND_FILL_SUMMARY,
    EVENT_KIND_PLACE,
    EVENT_KIND_REDUCE,
    EVENT_KIND_TIME_IN_FORCE,
    CanonicalEvent,
    Evict,
    Fee,
    Fill,
    FillSummary,
    LedgerTransaction,
    MarketEventDetails,
    Place,
    RawEventBatch,
    RawEventHeader,
    Reduce,
    Side,
    TimeInForce,
)
from .market_metadata import MarketMetadata

logger = logging.getLogger(__name__)


class MetadataSource(Protocol):
    def get(self, market: str) -> MarketMetadata: ...


@dataclass
class TradeDirection:
    """Direction fixed by the first fill of a transaction: -1 bid, +1 ask, 0 unset."""

    value: Optional[int] = None

    def observe_fill(self, side: Side) -> None:
        if self.value is None:
            self.value = -1 if side is Side.BID else 1

    def current(self) -> int:
        return self.value if self.value is not None else 0


def _int(raw: dict, key: str) -> int:
    try:
        value = raw[key]
    except KeyError:
        raise DecodeError(f"{raw.get('kind')} event missing field {key!r}") from None
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise DecodeError(f"{raw.get('kind')} field {key!r} is not an integer: {value!r}")
    try:
        return int(value)
    except ValueError:
        raise DecodeError(f"{raw.get('kind')} field {key!r} is not an integer: {value!r}") from None


def _str(raw: dict, key: str) -> str:
    value = raw.get(key)
    if not value:
        raise DecodeError(f"{raw.get('kind')} event missing field {key!r}")
    return str(value)


def _fill(raw, header, meta, direction):
    order_sequence_number = _int(raw, "order_sequence_number")
    base_lots_remaining = _int(raw, "base_lots_remaining")
    side = Side.from_order_sequence_number(order_sequence_number)
    fill = Fill(
        order_sequence_number=order_sequence_number,
        maker=_str(raw, "maker_id"),
        taker=header.signer,
        price_in_ticks=_int(raw, "price_in_ticks"),
        base_lots_filled=_int(raw, "base_lots_filled"),
        base_lots_remaining=base_lots_remaining,
        side_filled=side,
        is_full_fill=base_lots_remaining == 0,
    )
    direction.observe_fill(side)
    return fill


def _reduce(raw, header, meta, direction):
    base_lots_remaining = _int(raw, "base_lots_remaining")
    return Reduce(
        order_sequence_number=_int(raw, "order_sequence_number"),
        maker=header.signer,
        price_in_ticks=_int(raw, "price_in_ticks"),
        base_lots_removed=_int(raw, "base_lots_removed"),
        base_lots_remaining=base_lots_remaining,
        is_full_cancel=base_lots_remaining == 0,
    )


def _expired_order(raw, header, meta, direction):
    # Expiry is reported as a terminal full cancel of the maker's order.
    return Reduce(
        order_sequence_number=_int(raw, "order_sequence_number"),
        maker=_str(raw, "maker_id"),
        price_in_ticks=_int(raw, "price_in_ticks"),
        base_lots_removed=_int(raw, "base_lots_removed"),
        base_lots_remaining=0,
        is_full_cancel=True,
    )


def _place(raw, header, meta, direction):
    return Place(
        order_sequence_number=_int(raw, "order_sequence_number"),
        client_order_id=_int(raw, "client_order_id"),
        maker=header.signer,
        price_in_ticks=_int(raw, "price_in_ticks"),
        base_lots_placed=_int(raw, "base_lots_placed"),
    )


def _evict(raw, header, meta, direction):
    return Evict(
        order_sequence_number=_int(raw, "order_sequence_number"),
        maker=_str(raw, "maker_id"),
        price_in_ticks=_int(raw, "price_in_ticks"),
        base_lots_evicted=_int(raw, "base_lots_evicted"),
    )


def _fill_summary(raw, header, meta, direction):
    return FillSummary(
        client_order_id=_int(raw, "client_order_id"),
        total_base_filled=_int(raw, "total_base_lots_filled") * meta.base_atoms_per_base_lot,
        total_quote_filled_including_fees=(
            _int(raw, "total_quote_lots_filled") * meta.quote_atoms_per_quote_lot
        ),
        total_quote_fees=_int(raw, "total_fee_in_quote_lots") * meta.quote_atoms_per_quote_lot,
        trade_direction=direction.current(),
    )


def _fee(raw, header, meta, direction):
    return Fee(
        fees_collected_in_quote_atoms=(
            _int(raw, "fees_collected_in_quote_lots") * meta.quote_atoms_per_quote_lot
        ),
    )


def _time_in_force(raw, header, meta, direction):
    return TimeInForce(
        order_sequence_number=_int(raw, "order_sequence_number"),
        last_valid_slot=_int(raw, "last_valid_slot"),
        last_valid_unix_timestamp_in_seconds=_int(raw, "last_valid_unix_timestamp_in_seconds"),
    )


_DetailsBuilder = Callable[
    [dict, RawEventHeader, MarketMetadata, TradeDirection], MarketEventDetails
]

_BUILDERS: dict[str, _DetailsBuilder] = {
    EVENT_KIND_FILL: _fill,
    EVENT_KIND_REDUCE: _reduce,
    EVENT_KIND_PLACE: _place,
    EVENT_KIND_EVICT: _evict,
    EVENT_KIND_FILL_SUMMARY: _fill_summary,
    EVENT_KIND_FEE: _fee,
    EVENT_KIND_TIME_IN_FORCE: _time_in_force,
    EVENT_KIND_EXPIRED_ORDER: _expired_order,
}


def decode(
    signature: str,
    header: RawEventHeader,
    raw_event_batch: Iterable[dict[str, Any]],
    metadata: MarketMetadata,
    direction: Optional[TradeDirection] = None,
) -> list[CanonicalEvent]:
    """Decode one header's raw events.

    Unknown kinds and malformed events are logged and skipped; the rest of
    the batch is still decoded.
    """
    if direction is None:
        direction = TradeDirection()

    events: list[CanonicalEvent] = []
    for raw in raw_event_batch:
        kind = raw.get("kind") if isinstance(raw, dict) else None
        builder = _BUILDERS.get(kind) if isinstance(kind, str) else None
        if builder is None:
            logger.debug(f"Skipping unknown event kind {kind!r} in {signature}")
            continue
        try:
            event_index = _int(raw, "index")
            details = builder(raw, header, metadata, direction)
        except DecodeError as exc:
            logger.warning(f"Skipping malformed event in {signature}: {exc}")
            continue
        events.append(
            CanonicalEvent(
                market=header.market,
                sequence_number=header.sequence_number,
                slot=header.slot,
                timestamp=header.timestamp,
                signature=signature,
                signer=header.signer,
                event_index=event_index,
                details=details,
            )
        )
    return events


def decode_transaction(
    signature: str,
    raw_event_log: Optional[list[RawEventBatch]],
    metadata: MetadataSource,
) -> list[CanonicalEvent]:
    """Decode every batch of a transaction's exchange log.

    Returns ``[]`` when there is no exchange log. Metadata is looked up at
    most once per distinct market in the log.

    Raises:
        MetadataUnavailable: If a referenced market cannot be resolved.
    """
    if not raw_event_log:
        return []

    direction = TradeDirection()
    resolved: dict[str, MarketMetadata] = {}
    events: list[CanonicalEvent] = []
    for raw_batch in raw_event_log:
        market = raw_batch.header.market
        meta = resolved.get(market)
        if meta is None:
            meta = metadata.get(market)
            resolved[market] = meta
        events.extend(decode(signature, raw_batch.header, raw_batch.batch, meta, direction))
    return events


def events_from_transaction(
    transaction: Optional[LedgerTransaction],
    metadata: MetadataSource,
) -> list[CanonicalEvent]:
    """Decode a fetched transaction; failed or missing transactions yield ``[]``."""
    if transaction is None or transaction.is_error:
        return []
    return decode_transaction(transaction.signature, transaction.raw_event_log, metadata)


def _of_kind(events: Iterable[CanonicalEvent], kind: str) -> list[CanonicalEvent]:
    return [event for event in events if event.details.kind == kind]


def parse_fills(events: Iterable[CanonicalEvent]) -> list[CanonicalEvent]:
    return _of_kind(events, EVENT_KIND_FILL)


def parse_places(events: Iterable[CanonicalEvent]) -> list[CanonicalEvent]:
    return _of_kind(events, EVENT_KIND_PLACE)


def parse_cancels(events: Iterable[CanonicalEvent]) -> list[CanonicalEvent]:
    return _of_kind(events, EVENT_KIND_REDUCE)
