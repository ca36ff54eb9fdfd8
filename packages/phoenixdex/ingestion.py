"""Historical fill ingestion for the Phoenix program.

Signatures are processed oldest first. Each pass pages backwards from the
chain tip with ``getSignaturesForAddress`` until it reaches the persisted
cursor (or the start of history), then replays the collected signatures in
chronological order and advances the cursor after each one.

Delivery to ClickHouse is at-least-once: a signature that is re-processed
(for example after a crash between insert and cursor save) produces
duplicate rows.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from .decoder import events_from_transaction, parse_fills
from .errors import DecodeError, LedgerTransportError, MetadataUnavailable, StoreWriteError
from .events import CanonicalEvent, LedgerTransaction
from .ledger import MAX_SIGNATURES_PER_PAGE
from .market_metadata import MarketMetadata, MarketMetadataCache

logger = logging.getLogger(__name__)

DEFAULT_POLL_SECONDS = 10.0


class SignatureLedger(Protocol):
    def list_signatures(
        self,
        address: str,
        before: Optional[str] = None,
        until: Optional[str] = None,
        limit: int = MAX_SIGNATURES_PER_PAGE,
    ) -> list[str]: ...

    def get_transaction(self, signature: str) -> Optional[LedgerTransaction]: ...


class FillSink(Protocol):
    def insert_fill_event(self, event: CanonicalEvent, metadata: MarketMetadata) -> None: ...


class CursorStore:
    """Persists the last processed signature as a small JSON document."""

    def __init__(self, path: Path):
        self.path = Path(path)

    @classmethod
    def for_program(cls, artifacts_root: Path, program_id: str) -> "CursorStore":
        return cls(Path(artifacts_root) / "ingest" / f"{program_id}.cursor.json")

    def load(self) -> Optional[str]:
        if not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning(f"Ignoring unreadable cursor file {self.path}: {exc}")
            return None
        signature = payload.get("last_signature") if isinstance(payload, dict) else None
        return str(signature) if signature else None

    def save(self, signature: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "last_signature": signature,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)


@dataclass
class IngestStats:
    """Counters for one ingestion pass."""

    signatures_seen: int = 0
    signatures_processed: int = 0
    signatures_failed: int = 0
    fills_written: int = 0
    fills_failed: int = 0
    last_signature: Optional[str] = None
    errors: list[str] = field(default_factory=list)


class IngestionLoop:
    """Walks program signatures and writes decoded fills to the store."""

    def __init__(
        self,
        ledger: SignatureLedger,
        metadata: MarketMetadataCache,
        store: FillSink,
        program_id: str,
        cursor_store: Optional[CursorStore] = None,
        page_limit: int = MAX_SIGNATURES_PER_PAGE,
        poll_seconds: float = DEFAULT_POLL_SECONDS,
    ):
        self.ledger = ledger
        self.metadata = metadata
        self.store = store
        self.program_id = program_id
        self.cursor_store = cursor_store
        self.page_limit = page_limit
        self.poll_seconds = poll_seconds
        self._cursor: Optional[str] = cursor_store.load() if cursor_store else None

    @property
    def cursor(self) -> Optional[str]:
        return self._cursor

    def pending_signatures(self) -> list[str]:
        """Signatures newer than the cursor, oldest first.

        Raises:
            LedgerTransportError: If a page cannot be listed.
        """
        collected: list[str] = []
        before: Optional[str] = None
        while True:
            page = self.ledger.list_signatures(
                self.program_id,
                before=before,
                until=self._cursor,
                limit=self.page_limit,
            )
            if not page:
                break
            collected.extend(page)
            if len(page) < self.page_limit:
                break
            before = page[-1]
        collected.reverse()
        return collected

    def process_signature(self, signature: str) -> tuple[int, int]:
        """Decode one transaction and persist its fills.

        Returns ``(written, failed)`` fill counts. Insert failures are logged
        per event and do not stop the remaining fills.

        Raises:
            LedgerTransportError: If the transaction cannot be fetched.
            MetadataUnavailable: If a market referenced by the log is unknown.
            DecodeError: If the event log is malformed.
        """
        transaction = self.ledger.get_transaction(signature)
        events = events_from_transaction(transaction, self.metadata)
        written = 0
        failed = 0
        for event in parse_fills(events):
            metadata = self.metadata.get(event.market)
            try:
                self.store.insert_fill_event(event, metadata)
                written += 1
            except StoreWriteError as exc:
                failed += 1
                logger.error(f"Failed to insert event: {exc}")
        return written, failed

    def _advance(self, signature: str) -> None:
        self._cursor = signature
        if self.cursor_store is not None:
            try:
                self.cursor_store.save(signature)
            except OSError as exc:
                logger.warning(f"Failed to persist ingest cursor {signature}: {exc}")

    def run_once(self) -> IngestStats:
        """Process every signature newer than the cursor."""
        stats = IngestStats()
        signatures = self.pending_signatures()
        stats.signatures_seen = len(signatures)
        if signatures:
            logger.info(f"Ingesting {len(signatures)} signatures for {self.program_id}")

        for signature in signatures:
            try:
                written, failed = self.process_signature(signature)
            except (LedgerTransportError, MetadataUnavailable, DecodeError) as exc:
                stats.signatures_failed += 1
                stats.errors.append(f"{signature}: {exc}")
                logger.error(f"Skipping signature {signature}: {exc}")
            except Exception as exc:
                stats.signatures_failed += 1
                stats.errors.append(f"{signature}: {exc!r}")
                logger.exception(f"Unexpected failure on signature {signature}, skipping")
            else:
                stats.signatures_processed += 1
                stats.fills_written += written
                stats.fills_failed += failed
            self._advance(signature)
            stats.last_signature = signature

        if signatures:
            logger.info(
                f"Ingest pass done: processed={stats.signatures_processed} "
                f"failed={stats.signatures_failed} fills_written={stats.fills_written}"
            )
        return stats

    def run_forever(self, stop_event: threading.Event) -> None:
        """Poll for new signatures until ``stop_event`` is set."""
        logger.info(
            f"Starting ingestion loop for {self.program_id} "
            f"(cursor={self._cursor or 'start of history'})"
        )
        while not stop_event.is_set():
            try:
                self.run_once()
            except LedgerTransportError as exc:
                logger.error(f"Failed to list signatures: {exc}")
            stop_event.wait(self.poll_seconds)
        logger.info("Ingestion loop stopped")
