"""Tests for the phoenixtool command-line entrypoints."""

from __future__ import annotations

from unittest.mock import patch

from clickhouse_connect.driver.exceptions import OperationalError

from packages.phoenixdex.config import Settings
from packages.phoenixdex.store import ClickHouseStore
from phoenixtool.__main__ import main as phoenixtool_main
from tests._phoenix_fakes import MARKET_A, FakeClickhouse, FakeLedger, market_header_bytes
from tools.cli import credits as credits_cli
from tools.cli.ingest import build_ingestion_loop


def test_usage_and_version(capsys):
    assert phoenixtool_main([]) == 1
    assert phoenixtool_main(["--help"]) == 0
    assert "Commands:" in capsys.readouterr().out
    assert phoenixtool_main(["--version"]) == 0
    assert "phoenixtool 0.1.0" in capsys.readouterr().out


def test_unknown_command(capsys):
    assert phoenixtool_main(["bogus"]) == 1
    assert "Unknown command: bogus" in capsys.readouterr().out


def test_credits_grant_and_show(capsys):
    store = ClickHouseStore(FakeClickhouse())

    assert credits_cli.main(["grant", "--user", "alice", "--amount", "5"], store=store) == 0
    assert credits_cli.main(["show", "--user", "alice"], store=store) == 0

    out = capsys.readouterr().out
    assert "alice: 5 credits" in out


def test_credits_grant_rejects_non_positive_amount(capsys):
    store = ClickHouseStore(FakeClickhouse())
    assert credits_cli.main(["grant", "--user", "alice", "--amount", "0"], store=store) == 1
    assert "must be positive" in capsys.readouterr().err


def test_init_schema_routes_through_credits_cli():
    clickhouse = FakeClickhouse()
    with patch("tools.cli.credits.get_clickhouse_client", return_value=clickhouse):
        assert phoenixtool_main(["init-schema"]) == 0
    assert len(clickhouse.commands) == 2


def test_ingest_without_rpc_endpoint_exits_with_config_error(monkeypatch, capsys):
    from tools.cli.ingest import main as ingest_main

    monkeypatch.delenv("SOLANA_RPC_URL", raising=False)
    monkeypatch.delenv("HELIUS_API_KEY", raising=False)

    assert ingest_main([]) == 2
    assert "No Solana RPC endpoint configured" in capsys.readouterr().err


def test_build_ingestion_loop_uses_settings(monkeypatch, tmp_path):
    monkeypatch.setenv("PHOENIXTOOL_ARTIFACTS_ROOT", str(tmp_path))
    monkeypatch.setenv("INGEST_PAGE_LIMIT", "50")
    monkeypatch.delenv("PHOENIX_MARKET_CLUSTER", raising=False)
    ledger = FakeLedger()
    ledger.accounts[MARKET_A] = market_header_bytes()

    loop = build_ingestion_loop(Settings.from_env(), clickhouse_client=FakeClickhouse(), ledger=ledger)

    assert loop.page_limit == 50
    assert loop.cursor is None
    assert loop.cursor_store.path.parent == tmp_path / "ingest"
    assert ledger.account_calls == []


def test_serve_reports_unreachable_clickhouse(capsys):
    from tools.cli.serve import main as serve_main

    with patch("tools.cli.serve.get_clickhouse_client", side_effect=OperationalError("connection refused")):
        assert serve_main(["--init-schema", "--no-ingest"]) == 1
    assert "ClickHouse unavailable" in capsys.readouterr().err


def test_ingest_reports_unreachable_clickhouse(monkeypatch, capsys):
    from tools.cli.ingest import main as ingest_main

    monkeypatch.setenv("SOLANA_RPC_URL", "https://rpc.example")
    with patch("tools.cli.ingest.get_clickhouse_client", side_effect=OperationalError("connection refused")):
        assert ingest_main([]) == 1
    assert "ClickHouse unavailable" in capsys.readouterr().err
