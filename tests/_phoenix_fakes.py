"""Offline fakes shared by the PhoenixTool tests."""

from __future__ import annotations

import re
import struct
import threading
from typing import Any, Optional

import base58

from packages.phoenixdex.errors import LedgerTransportError
from packages.phoenixdex.events import LedgerTransaction, RawEventBatch, RawEventHeader
from packages.phoenixdex.market_metadata import MarketMetadata, MarketSizeParams

BASE_MINT_BYTES = bytes(range(1, 33))
QUOTE_MINT_BYTES = bytes(range(101, 133))
BASE_MINT = base58.b58encode(BASE_MINT_BYTES).decode("ascii")
QUOTE_MINT = base58.b58encode(QUOTE_MINT_BYTES).decode("ascii")

MARKET_A = "MarketAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
MARKET_B = "MarketBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBB"
SIGNER = "Signer1111111111111111111111111111111111111"
MAKER = "Maker11111111111111111111111111111111111111"

BID_SEQ = (1 << 63) | 7
ASK_SEQ = 8


def market_header_bytes(
    base_decimals: int = 9,
    quote_decimals: int = 6,
    base_lot_size: int = 1_000_000,
    quote_lot_size: int = 10,
    tick_size: int = 1_000,
    raw_base_units_per_base_unit: int = 1,
    bids_size: int = 512,
    asks_size: int = 512,
    num_seats: int = 128,
    trailing: bytes = b"",
) -> bytes:
    parts = [
        struct.pack("<5Q", 1, 1, bids_size, asks_size, num_seats),
        struct.pack("<II", base_decimals, 255),
        BASE_MINT_BYTES,
        b"\x00" * 32,
        struct.pack("<Q", base_lot_size),
        struct.pack("<II", quote_decimals, 254),
        QUOTE_MINT_BYTES,
        b"\x00" * 32,
        struct.pack("<QQ", quote_lot_size, tick_size),
        b"\x02" * 32,
        b"\x03" * 32,
        struct.pack("<Q", 42),
        b"\x00" * 32,
        struct.pack("<II", raw_base_units_per_base_unit, 0),
        b"\x00" * 256,
    ]
    return b"".join(parts) + trailing


def make_metadata(
    base_atoms_per_base_lot: int = 1_000_000,
    quote_atoms_per_quote_lot: int = 10,
) -> MarketMetadata:
    return MarketMetadata(
        base_mint=BASE_MINT,
        quote_mint=QUOTE_MINT,
        base_decimals=9,
        quote_decimals=6,
        base_atoms_per_raw_base_unit=10**9,
        quote_atoms_per_quote_unit=10**6,
        quote_atoms_per_quote_lot=quote_atoms_per_quote_lot,
        base_atoms_per_base_lot=base_atoms_per_base_lot,
        tick_size_in_quote_atoms_per_base_unit=1_000,
        num_base_lots_per_base_unit=10**9 // base_atoms_per_base_lot,
        raw_base_units_per_base_unit=1,
        market_size_params=MarketSizeParams(512, 512, 128),
    )


def header(market: str = MARKET_A, timestamp: int = 1_700_000_000, seq: int = 1) -> RawEventHeader:
    return RawEventHeader(
        market=market,
        sequence_number=seq,
        slot=250_000_000,
        timestamp=timestamp,
        signer=SIGNER,
    )


def raw_fill(index: int, seq: int = ASK_SEQ, remaining: int = 0, price: int = 100, filled: int = 5) -> dict:
    return {
        "kind": "Fill",
        "index": index,
        "maker_id": MAKER,
        "order_sequence_number": seq,
        "price_in_ticks": price,
        "base_lots_filled": filled,
        "base_lots_remaining": remaining,
    }


def raw_fill_summary(index: int, base_lots: int = 5, quote_lots: int = 700, fee_lots: int = 3) -> dict:
    return {
        "kind": "FillSummary",
        "index": index,
        "client_order_id": 99,
        "total_base_lots_filled": base_lots,
        "total_quote_lots_filled": quote_lots,
        "total_fee_in_quote_lots": fee_lots,
    }


class FakeMetadataSource:
    """Counts lookups per market."""

    def __init__(self, metadata: Optional[dict[str, MarketMetadata]] = None):
        self.metadata = metadata if metadata is not None else {MARKET_A: make_metadata()}
        self.calls: list[str] = []

    def get(self, market: str) -> MarketMetadata:
        from packages.phoenixdex.errors import MetadataUnavailable

        self.calls.append(market)
        if market not in self.metadata:
            raise MetadataUnavailable(market, "unknown market")
        return self.metadata[market]


class FakeLedger:
    """In-memory ledger. ``signatures`` is kept oldest first."""

    def __init__(self) -> None:
        self.signatures: list[str] = []
        self.transactions: dict[str, LedgerTransaction] = {}
        self.accounts: dict[str, bytes] = {}
        self.failing_transactions: set[str] = set()
        self.list_calls: list[dict[str, Any]] = []
        self.transaction_calls: list[str] = []
        self.account_calls: list[str] = []
        self.account_gate: Optional[threading.Event] = None

    def add_transaction(
        self,
        signature: str,
        batches: Optional[list[RawEventBatch]],
        is_error: bool = False,
    ) -> None:
        self.signatures.append(signature)
        self.transactions[signature] = LedgerTransaction(
            signature=signature,
            slot=len(self.signatures),
            is_error=is_error,
            raw_event_log=batches,
        )

    def list_signatures(self, address, before=None, until=None, limit=1000):
        self.list_calls.append({"address": address, "before": before, "until": until, "limit": limit})
        newest_first = list(reversed(self.signatures))
        if before is not None:
            newest_first = newest_first[newest_first.index(before) + 1:]
        if until is not None and until in newest_first:
            newest_first = newest_first[: newest_first.index(until)]
        return newest_first[:limit]

    def get_transaction(self, signature):
        self.transaction_calls.append(signature)
        if signature in self.failing_transactions:
            raise LedgerTransportError(f"getTransaction failed for {signature}")
        return self.transactions.get(signature)

    def get_account_data(self, pubkey):
        self.account_calls.append(pubkey)
        if self.account_gate is not None:
            self.account_gate.wait(timeout=5)
        if pubkey not in self.accounts:
            raise LedgerTransportError(f"account {pubkey} unavailable")
        return self.accounts[pubkey]


class _FakeResult:
    def __init__(self, rows):
        self.result_rows = rows


class FakeClickhouse:
    """Captures statements and emulates the handful of queries the store issues."""

    def __init__(self, credits: Optional[dict[str, int]] = None):
        self.credits: dict[str, int] = dict(credits or {})
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.inserts: list[tuple] = []
        self.queries: list[tuple] = []
        self.commands: list[tuple] = []
        self.fail_inserts = False

    def insert(self, table, rows, column_names=None):
        if self.fail_inserts:
            raise RuntimeError("clickhouse unavailable")
        self.inserts.append((table, rows, column_names))
        for row in rows:
            record = dict(zip(column_names, row))
            if table == "user_credits":
                self.credits[record["user_id"]] = record["credits"]
            else:
                self.tables.setdefault(table, []).append(record)

    def command(self, cmd, parameters=None, **kwargs):
        self.commands.append((cmd, parameters))
        params = parameters or {}
        if "UPDATE credits = credits - 1" in cmd:
            user = params["user_id"]
            if self.credits.get(user, 0) > 0:
                self.credits[user] -= 1
        elif "UPDATE credits = credits +" in cmd:
            user = params["user_id"]
            self.credits[user] = self.credits.get(user, 0) + params["amount"]

    def query(self, query, parameters=None):
        self.queries.append((query, parameters))
        params = parameters or {}
        if re.search(r"SELECT credits FROM user_credits", query):
            user = params["user_id"]
            if user not in self.credits:
                return _FakeResult([])
            return _FakeResult([[self.credits[user]]])
        if "SELECT count() FROM user_credits" in query:
            return _FakeResult([[1 if params["user_id"] in self.credits else 0]])
        if "FROM trade_fill_events" in query:
            return _FakeResult(self._ohlc(params))
        return _FakeResult([])

    def _ohlc(self, params):
        width = params["interval_minutes"] * 60
        rows = [
            row
            for row in self.tables.get("trade_fill_events", [])
            if row["base_mint"] == params["base_mint"]
            and row["quote_mint"] == params["quote_mint"]
            and params["start_time"] <= row["timestamp"] <= params["end_time"]
        ]
        if not rows:
            return []
        buckets: dict[int, list[dict]] = {}
        for row in rows:
            buckets.setdefault(row["timestamp"] - row["timestamp"] % width, []).append(row)
        first = min(buckets)
        ordered = sorted(
            buckets[first],
            key=lambda r: (r["timestamp"], r["sequence_number"], r["event_index"]),
        )
        prices = [r["price_in_ticks"] for r in ordered]
        return [[first, prices[0], max(prices), min(prices), prices[-1]]]
