#!/usr/bin/env python3
"""Run the OHLC API and the fill ingestion loop side by side."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Optional

from clickhouse_connect.driver.exceptions import ClickHouseError

from packages.phoenixdex.config import (
    Settings,
    apply_env_defaults,
    get_clickhouse_client,
    load_env_file,
)
from packages.phoenixdex.errors import ConfigurationError
from packages.phoenixdex.store import ClickHouseStore
from packages.phoenixdex.supervisor import Supervisor
from services.api.main import build_query_service, create_app, run_api_server
from tools.cli.ingest import build_ingestion_loop

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Serve the OHLC API while ingesting Phoenix fills in the background.",
    )
    parser.add_argument("--host", default=None, help="API bind host (default: API_HOST)")
    parser.add_argument("--port", type=int, default=None, help="API port (default: API_PORT)")
    parser.add_argument(
        "--no-ingest",
        action="store_true",
        help="Serve queries only, without the ingestion worker",
    )
    parser.add_argument(
        "--init-schema",
        action="store_true",
        help="Create the ClickHouse tables before starting",
    )
    parser.add_argument(
        "--restart-delay",
        type=float,
        default=5.0,
        help="Seconds to wait before restarting a worker that exited",
    )
    return parser


def build_supervisor(
    settings: Settings,
    host: str,
    port: int,
    ingest: bool = True,
    restart_delay: float = 5.0,
) -> Supervisor:
    """Register the API and (optionally) ingestion workers.

    Raises:
        ConfigurationError: If ingestion is enabled without an RPC endpoint.
    """
    supervisor = Supervisor(restart_delay=restart_delay)

    app = create_app(build_query_service(settings))
    supervisor.add("api", lambda stop: run_api_server(app, host, port, stop))

    if ingest:
        loop = build_ingestion_loop(settings)
        supervisor.add("ingestion", loop.run_forever)
    return supervisor


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
    host = args.host or settings.api_host
    port = args.port or settings.api_port

    try:
        if args.init_schema:
            ClickHouseStore(get_clickhouse_client(settings)).ensure_schema()
            logger.info("ClickHouse schema ready")
        supervisor = build_supervisor(
            settings,
            host=host,
            port=port,
            ingest=not args.no_ingest,
            restart_delay=args.restart_delay,
        )
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except ClickHouseError as exc:
        print(f"Error: ClickHouse unavailable: {exc}", file=sys.stderr)
        return 1

    supervisor.start()
    try:
        supervisor.stop_event.wait()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        supervisor.stop(timeout=10.0)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
