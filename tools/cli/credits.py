#!/usr/bin/env python3
"""Inspect or top up a user's query credits, or create the ClickHouse schema."""

from __future__ import annotations

import argparse
import os
import sys
from typing import Optional

from packages.phoenixdex.config import (
    Settings,
    apply_env_defaults,
    get_clickhouse_client,
    load_env_file,
)
from packages.phoenixdex.errors import StoreWriteError
from packages.phoenixdex.store import ClickHouseStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage OHLC query credits.")
    sub = parser.add_subparsers(dest="action", required=True)

    show = sub.add_parser("show", help="Print a user's remaining credits")
    show.add_argument("--user", required=True, help="User id")

    grant = sub.add_parser("grant", help="Add credits to a user (creates the account)")
    grant.add_argument("--user", required=True, help="User id")
    grant.add_argument("--amount", type=int, required=True, help="Credits to add")

    sub.add_parser("init-schema", help="Create trade_fill_events and user_credits tables")
    return parser


def main(argv: Optional[list[str]] = None, store: Optional[ClickHouseStore] = None) -> int:
    env_values = load_env_file(os.path.join(os.getcwd(), ".env"))
    apply_env_defaults(env_values)

    parser = build_parser()
    args = parser.parse_args(argv)

    if store is None:
        store = ClickHouseStore(get_clickhouse_client(Settings.from_env()))

    if args.action == "init-schema":
        store.ensure_schema()
        print("Schema ready: trade_fill_events, user_credits")
        return 0

    if args.action == "show":
        print(f"{args.user}: {store.get_credits(args.user)} credits")
        return 0

    if args.amount <= 0:
        print("Error: --amount must be positive.", file=sys.stderr)
        return 1
    try:
        balance = store.grant_credits(args.user, args.amount)
    except StoreWriteError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"{args.user}: {balance} credits")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
