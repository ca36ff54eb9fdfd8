"""Module entrypoint for running PhoenixTool CLI commands.

Usage: python -m phoenixtool <command> [options]
"""

from __future__ import annotations

import sys
from typing import Optional


def print_usage() -> None:
    """Print CLI usage information."""
    print("PhoenixTool - Phoenix DEX fill ingestion and OHLC API")
    print("")
    print("Usage: phoenixtool <command> [options]")
    print("       python -m phoenixtool <command> [options]")
    print("")
    print("Commands:")
    print("  serve             Run the OHLC API with background fill ingestion")
    print("  ingest            Ingest fills once (or --follow to keep polling)")
    print("  init-schema       Create the ClickHouse tables")
    print("  credits           Show or grant per-user query credits")
    print("")
    print("Options:")
    print("  -h, --help        Show this help message")
    print("  --version         Show version information")
    print("")
    print("Examples:")
    print("  phoenixtool serve --init-schema --port 8080")
    print("  phoenixtool ingest --follow")
    print("  phoenixtool credits grant --user alice --amount 100")


def print_version() -> None:
    """Print version information."""
    from phoenixtool import __version__
    print(f"phoenixtool {__version__}")


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entrypoint."""
    if argv is None:
        argv = sys.argv[1:]

    if len(argv) < 1:
        print_usage()
        return 1

    command = argv[0]

    if command in ("-h", "--help"):
        print_usage()
        return 0

    if command in ("-v", "--version"):
        print_version()
        return 0

    # Route to command handlers; imports are deferred so `--help` works without ClickHouse deps.
    if command == "serve":
        from tools.cli.serve import main as serve_main
        return serve_main(argv[1:])
    if command == "ingest":
        from tools.cli.ingest import main as ingest_main
        return ingest_main(argv[1:])
    if command == "init-schema":
        from tools.cli.credits import main as credits_main
        return credits_main(["init-schema", *argv[1:]])
    if command == "credits":
        from tools.cli.credits import main as credits_main
        return credits_main(argv[1:])

    print(f"Unknown command: {command}")
    print_usage()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
