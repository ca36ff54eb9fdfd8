#!/usr/bin/env python3
"""Ingest Phoenix fill events from Solana into ClickHouse."""

from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from dataclasses import replace
from typing import Optional

from clickhouse_connect.driver.exceptions import ClickHouseError

from packages.phoenixdex.config import (
    Settings,
    apply_env_defaults,
    get_clickhouse_client,
    load_env_file,
)
from packages.phoenixdex.errors import ConfigurationError, LedgerTransportError, MetadataUnavailable
from packages.phoenixdex.ingestion import CursorStore, IngestionLoop
from packages.phoenixdex.ledger import SolanaRpcClient
from packages.phoenixdex.market_metadata import MarketMetadataCache, cluster_for_genesis_hash
from packages.phoenixdex.store import ClickHouseStore

logger = logging.getLogger(__name__)


def build_ingestion_loop(
    settings: Settings,
    clickhouse_client=None,
    ledger: Optional[SolanaRpcClient] = None,
) -> IngestionLoop:
    """Wire ledger, metadata cache, store and cursor into an ingestion loop.

    Raises:
        ConfigurationError: If no RPC endpoint is configured.
    """
    if ledger is None:
        ledger = SolanaRpcClient(
            settings.require_rpc_url(),
            timeout=settings.http_timeout_seconds,
        )
    client = clickhouse_client if clickhouse_client is not None else get_clickhouse_client(settings)
    metadata = MarketMetadataCache(ledger)

    if settings.market_cluster:
        cluster = settings.market_cluster
        if cluster == "auto":
            try:
                cluster = cluster_for_genesis_hash(ledger.get_genesis_hash())
            except LedgerTransportError as exc:
                logger.warning(f"Could not detect cluster, skipping market preload: {exc}")
                cluster = None
        if cluster:
            try:
                metadata.load_known_markets(cluster)
            except MetadataUnavailable as exc:
                logger.warning(f"Known-market preload failed, falling back to lazy loads: {exc}")

    return IngestionLoop(
        ledger=ledger,
        metadata=metadata,
        store=ClickHouseStore(client),
        program_id=settings.program_id,
        cursor_store=CursorStore.for_program(settings.artifacts_root, settings.program_id),
        page_limit=settings.ingest_page_limit,
        poll_seconds=settings.ingest_poll_seconds,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Ingest Phoenix fill events into ClickHouse (oldest signatures first).",
    )
    parser.add_argument(
        "--follow",
        action="store_true",
        help="Keep polling for new signatures instead of exiting after one pass",
    )
    parser.add_argument(
        "--program-id",
        default=None,
        help="Override the Phoenix program address (default: PHOENIX_PROGRAM_ID)",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    env_values = load_env_file(os.path.join(os.getcwd(), ".env"))
    apply_env_defaults(env_values)

    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    settings = Settings.from_env()
    if args.program_id:
        settings = replace(settings, program_id=args.program_id)

    try:
        loop = build_ingestion_loop(settings)
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except ClickHouseError as exc:
        print(f"Error: ClickHouse unavailable: {exc}", file=sys.stderr)
        return 1

    if args.follow:
        stop_event = threading.Event()
        try:
            loop.run_forever(stop_event)
        except KeyboardInterrupt:
            stop_event.set()
        return 0

    try:
        stats = loop.run_once()
    except LedgerTransportError as exc:
        print(f"Error: failed to list signatures: {exc}", file=sys.stderr)
        return 1

    print(
        f"Signatures: {stats.signatures_seen} seen, {stats.signatures_processed} processed, "
        f"{stats.signatures_failed} failed"
    )
    print(f"Fills: {stats.fills_written} written, {stats.fills_failed} failed")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
