"""ClickHouse access for fill events, OHLC aggregation and user credits."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from .errors import StoreWriteError
from .events import CanonicalEvent, Fill
from .market_metadata import MarketMetadata

logger = logging.getLogger(__name__)

FILL_EVENTS_TABLE = "trade_fill_events"
USER_CREDITS_TABLE = "user_credits"

FILL_EVENT_COLUMNS = [
    "market",
    "sequence_number",
    "slot",
    "timestamp",
    "signature",
    "signer",
    "event_index",
    "order_sequence_number",
    "maker",
    "taker",
    "price_in_ticks",
    "base_lots_filled",
    "base_lots_remaining",
    "side_filled",
    "is_full_fill",
    "base_mint",
    "quote_mint",
    "base_decimals",
    "quote_decimals",
    "base_atoms_per_raw_base_unit",
    "quote_atoms_per_quote_unit",
    "quote_atoms_per_quote_lot",
    "base_atoms_per_base_lot",
    "tick_size_in_quote_atoms_per_base_unit",
    "num_base_lots_per_base_unit",
    "raw_base_units_per_base_unit",
    "bids_size",
    "asks_size",
    "num_seats",
    "real_data",
    "ingested_at",
]

# No uniqueness is enforced: re-ingesting a signature appends duplicate rows.
FILL_EVENTS_DDL = f"""
CREATE TABLE IF NOT EXISTS {FILL_EVENTS_TABLE} (
    market String,
    sequence_number UInt64,
    slot UInt64,
    timestamp Int64,
    signature String,
    signer String,
    event_index UInt64,
    order_sequence_number UInt64,
    maker String,
    taker String,
    price_in_ticks UInt64,
    base_lots_filled UInt64,
    base_lots_remaining UInt64,
    side_filled LowCardinality(String),
    is_full_fill Bool,
    base_mint String,
    quote_mint String,
    base_decimals UInt32,
    quote_decimals UInt32,
    base_atoms_per_raw_base_unit UInt64,
    quote_atoms_per_quote_unit UInt64,
    quote_atoms_per_quote_lot UInt64,
    base_atoms_per_base_lot UInt64,
    tick_size_in_quote_atoms_per_base_unit UInt64,
    num_base_lots_per_base_unit UInt64,
    raw_base_units_per_base_unit UInt32,
    bids_size UInt64,
    asks_size UInt64,
    num_seats UInt64,
    real_data Bool,
    ingested_at DateTime
)
ENGINE = MergeTree
ORDER BY (base_mint, quote_mint, timestamp, signature, event_index)
"""

USER_CREDITS_DDL = f"""
CREATE TABLE IF NOT EXISTS {USER_CREDITS_TABLE} (
    user_id String,
    credits UInt64
)
ENGINE = MergeTree
ORDER BY user_id
"""

OHLC_SQL = f"""
SELECT
    toStartOfInterval(toDateTime(timestamp), toIntervalMinute({{interval_minutes:UInt32}})) AS bucket,
    argMin(price_in_ticks, (timestamp, sequence_number, event_index)) AS open,
    max(price_in_ticks) AS high,
    min(price_in_ticks) AS low,
    argMax(price_in_ticks, (timestamp, sequence_number, event_index)) AS close
FROM {FILL_EVENTS_TABLE}
WHERE base_mint = {{base_mint:String}}
  AND quote_mint = {{quote_mint:String}}
  AND timestamp >= {{start_time:Int64}}
  AND timestamp <= {{end_time:Int64}}
GROUP BY bucket
ORDER BY bucket
LIMIT 1
"""


@dataclass(frozen=True)
class Ohlc:
    open: int
    high: int
    low: int
    close: int


def fill_event_row(event: CanonicalEvent, metadata: MarketMetadata) -> list[Any]:
    """Flatten a Fill event plus a metadata snapshot into a table row."""
    fill = event.details
    if not isinstance(fill, Fill):
        raise ValueError(f"expected a Fill event, got {event.kind}")
    size = metadata.market_size_params
    return [
        event.market,
        event.sequence_number,
        event.slot,
        event.timestamp,
        event.signature,
        event.signer,
        event.event_index,
        fill.order_sequence_number,
        fill.maker,
        fill.taker,
        fill.price_in_ticks,
        fill.base_lots_filled,
        fill.base_lots_remaining,
        fill.side_filled.value,
        fill.is_full_fill,
        metadata.base_mint,
        metadata.quote_mint,
        metadata.base_decimals,
        metadata.quote_decimals,
        metadata.base_atoms_per_raw_base_unit,
        metadata.quote_atoms_per_quote_unit,
        metadata.quote_atoms_per_quote_lot,
        metadata.base_atoms_per_base_lot,
        metadata.tick_size_in_quote_atoms_per_base_unit,
        metadata.num_base_lots_per_base_unit,
        metadata.raw_base_units_per_base_unit,
        size.bids_size,
        size.asks_size,
        size.num_seats,
        True,
        datetime.now(timezone.utc),
    ]


class ClickHouseStore:
    """Parameterized ClickHouse statements used by ingestion and queries.

    ``client`` is a ``clickhouse_connect`` client (or anything exposing
    ``query``, ``command`` and ``insert`` with the same signatures).
    """

    def __init__(self, client):
        self.client = client

    def ensure_schema(self) -> None:
        self.client.command(FILL_EVENTS_DDL)
        self.client.command(USER_CREDITS_DDL)

    def insert_fill_event(self, event: CanonicalEvent, metadata: MarketMetadata) -> None:
        """Insert one fill row.

        Raises:
            StoreWriteError: If the insert fails.
        """
        row = fill_event_row(event, metadata)
        try:
            self.client.insert(FILL_EVENTS_TABLE, [row], column_names=FILL_EVENT_COLUMNS)
        except Exception as exc:
            raise StoreWriteError(
                f"Failed to insert fill {event.signature}#{event.event_index}: {exc}"
            ) from exc

    def fetch_ohlc(
        self,
        base_mint: str,
        quote_mint: str,
        start_time: int,
        end_time: int,
        interval_minutes: int,
    ) -> Optional[Ohlc]:
        """Return the first bucket's OHLC row, or None if no fills match."""
        result = self.client.query(
            OHLC_SQL,
            parameters={
                "base_mint": base_mint,
                "quote_mint": quote_mint,
                "start_time": start_time,
                "end_time": end_time,
                "interval_minutes": interval_minutes,
            },
        )
        if not result.result_rows:
            return None
        _bucket, open_, high, low, close = result.result_rows[0]
        return Ohlc(open=int(open_), high=int(high), low=int(low), close=int(close))

    def get_credits(self, user_id: str) -> int:
        """Remaining credits; users without an account have none."""
        result = self.client.query(
            f"SELECT credits FROM {USER_CREDITS_TABLE} WHERE user_id = {{user_id:String}} LIMIT 1",
            parameters={"user_id": user_id},
        )
        if not result.result_rows:
            return 0
        return int(result.result_rows[0][0])

    def consume_credit(self, user_id: str) -> bool:
        """Decrement the user's credits by one if any remain.

        The UPDATE is guarded by ``credits > 0`` so the counter can never go
        negative even if two writers race past the read. The balance is read
        again afterwards and the charge only counts if it dropped; a mutation
        that matched no row is reported as not charged.

        ClickHouse mutations report no affected-row count, so two processes
        spending the last credit at the same instant can both observe the drop.
        ``CreditGate`` serializes callers within one process; across processes
        the guard only keeps the balance from going negative.
        """
        before = self.get_credits(user_id)
        if before <= 0:
            return False
        try:
            self.client.command(
                f"ALTER TABLE {USER_CREDITS_TABLE} UPDATE credits = credits - 1 "
                "WHERE user_id = {user_id:String} AND credits > 0 "
                "SETTINGS mutations_sync = 1",
                parameters={"user_id": user_id},
            )
        except Exception as exc:
            raise StoreWriteError(f"Failed to decrement credits for {user_id}: {exc}") from exc
        return self.get_credits(user_id) < before

    def grant_credits(self, user_id: str, amount: int) -> int:
        """Add ``amount`` credits, creating the account if needed; returns the new balance."""
        if amount <= 0:
            raise ValueError("amount must be positive")
        exists = self.client.query(
            f"SELECT count() FROM {USER_CREDITS_TABLE} WHERE user_id = {{user_id:String}}",
            parameters={"user_id": user_id},
        )
        try:
            if exists.result_rows and int(exists.result_rows[0][0]) > 0:
                self.client.command(
                    f"ALTER TABLE {USER_CREDITS_TABLE} UPDATE credits = credits + {{amount:UInt64}} "
                    "WHERE user_id = {user_id:String} "
                    "SETTINGS mutations_sync = 1",
                    parameters={"user_id": user_id, "amount": amount},
                )
            else:
                self.client.insert(
                    USER_CREDITS_TABLE,
                    [[user_id, amount]],
                    column_names=["user_id", "credits"],
                )
        except Exception as exc:
            raise StoreWriteError(f"Failed to grant credits to {user_id}: {exc}") from exc
        return self.get_credits(user_id)
