"""Environment-driven configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import clickhouse_connect

from .errors import ConfigurationError
from .ledger import HELIUS_RPC_TEMPLATE, PHOENIX_PROGRAM_ID

DEFAULT_CLICKHOUSE_USER = "default"
DEFAULT_CLICKHOUSE_PASSWORD = "password"
DEFAULT_CLICKHOUSE_DATABASE = "default"


def _running_in_docker() -> bool:
    """Return True when executing inside a Docker container."""
    if os.environ.get("PHOENIXTOOL_IN_DOCKER") == "1":
        return True
    return Path("/.dockerenv").exists()


def _resolve_clickhouse_host() -> str:
    host = os.environ.get("CLICKHOUSE_HOST")
    if host:
        return host
    return "clickhouse" if _running_in_docker() else "localhost"


def _resolve_clickhouse_port() -> int:
    port = os.environ.get("CLICKHOUSE_PORT") or os.environ.get("CLICKHOUSE_HTTP_PORT")
    return int(port) if port else 8123


def _resolve_clickhouse_database() -> str:
    return (
        os.environ.get("CLICKHOUSE_DATABASE")
        or os.environ.get("CLICKHOUSE_DB")
        or DEFAULT_CLICKHOUSE_DATABASE
    )


def _resolve_rpc_url() -> Optional[str]:
    url = os.environ.get("SOLANA_RPC_URL")
    if url:
        return url
    api_key = os.environ.get("HELIUS_API_KEY")
    if api_key:
        return HELIUS_RPC_TEMPLATE.format(api_key=api_key)
    return None


def load_env_file(path: str) -> Dict[str, str]:
    """Load key/value pairs from a .env-style file."""
    if not os.path.exists(path):
        return {}

    env: Dict[str, str] = {}
    with open(path, "r", encoding="utf-8") as handle:
        for raw_line in handle:
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip("'").strip('"')
            if key:
                env[key] = value
    return env


def apply_env_defaults(env: Dict[str, str]) -> None:
    """Apply values from ``env`` without overriding variables already set."""
    for key, value in env.items():
        if key not in os.environ:
            os.environ[key] = value


@dataclass(frozen=True)
class Settings:
    rpc_url: Optional[str]
    program_id: str
    clickhouse_host: str
    clickhouse_port: int
    clickhouse_user: str
    clickhouse_password: str
    clickhouse_database: str
    rate_limit_max_requests: int
    rate_limit_window_seconds: float
    ingest_poll_seconds: float
    ingest_page_limit: int
    http_timeout_seconds: float
    artifacts_root: Path
    api_host: str
    api_port: int
    market_cluster: Optional[str]

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            rpc_url=_resolve_rpc_url(),
            program_id=os.getenv("PHOENIX_PROGRAM_ID", PHOENIX_PROGRAM_ID),
            clickhouse_host=_resolve_clickhouse_host(),
            clickhouse_port=_resolve_clickhouse_port(),
            clickhouse_user=os.getenv("CLICKHOUSE_USER", DEFAULT_CLICKHOUSE_USER),
            clickhouse_password=os.getenv("CLICKHOUSE_PASSWORD", DEFAULT_CLICKHOUSE_PASSWORD),
            clickhouse_database=_resolve_clickhouse_database(),
            rate_limit_max_requests=int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "10")),
            rate_limit_window_seconds=float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60")),
            ingest_poll_seconds=float(os.getenv("INGEST_POLL_SECONDS", "10")),
            ingest_page_limit=int(os.getenv("INGEST_PAGE_LIMIT", "1000")),
            http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "20")),
            artifacts_root=Path(os.getenv("PHOENIXTOOL_ARTIFACTS_ROOT", "artifacts")),
            api_host=os.getenv("API_HOST", "0.0.0.0"),
            api_port=int(os.getenv("API_PORT", "8080")),
            market_cluster=os.getenv("PHOENIX_MARKET_CLUSTER") or None,
        )

    def require_rpc_url(self) -> str:
        """
        Raises:
            ConfigurationError: If neither SOLANA_RPC_URL nor HELIUS_API_KEY is set.
        """
        if not self.rpc_url:
            raise ConfigurationError(
                "No Solana RPC endpoint configured. Set SOLANA_RPC_URL or HELIUS_API_KEY."
            )
        return self.rpc_url


def get_clickhouse_client(settings: Settings):
    """Create ClickHouse client connection."""
    return clickhouse_connect.get_client(
        host=settings.clickhouse_host,
        port=settings.clickhouse_port,
        username=settings.clickhouse_user,
        password=settings.clickhouse_password,
        database=settings.clickhouse_database,
    )
