"""Solana JSON-RPC client for the calls the ingestion path needs."""

from __future__ import annotations

import base64
import logging
from typing import Any, Callable, Optional

import requests

from .errors import DecodeError, LedgerTransportError
from .events import LedgerTransaction, RawEventBatch
from .http_client import HttpClient

logger = logging.getLogger(__name__)

PHOENIX_PROGRAM_ID = "PhoeNiXZ8ByJGLkxNfZRnkUfjvmuYqLR89jjFHGqdXY"
HELIUS_RPC_TEMPLATE = "https://rpc.helius.xyz/?api-key={api_key}"
DEFAULT_COMMITMENT = "confirmed"
MAX_SIGNATURES_PER_PAGE = 1000

EventLogParser = Callable[[dict], Optional[list[RawEventBatch]]]


def parse_event_log_json(transaction: dict) -> Optional[list[RawEventBatch]]:
    """Read pre-decoded exchange events attached to a transaction payload.

    Indexing RPC providers attach the decoded exchange log as a
    ``phoenixEvents`` array (at the top level or under ``meta``). Returns
    None when the transaction carries no exchange log.
    """
    meta = transaction.get("meta") or {}
    raw = transaction.get("phoenixEvents")
    if raw is None:
        raw = meta.get("phoenixEvents")
    if raw is None:
        return None
    try:
        return [RawEventBatch.from_dict(entry) for entry in raw]
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise DecodeError(f"malformed exchange event log: {exc}") from exc


class SolanaRpcClient:
    """Minimal JSON-RPC client: signature listing, transaction and account fetch."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 20.0,
        commitment: str = DEFAULT_COMMITMENT,
        event_log_parser: EventLogParser = parse_event_log_json,
    ):
        """Initialize the RPC client.

        Args:
            rpc_url: Full JSON-RPC endpoint URL
            timeout: Request timeout in seconds
            commitment: Commitment level passed to every call
            event_log_parser: Extracts raw exchange event batches from a
                fetched transaction payload
        """
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.event_log_parser = event_log_parser
        self.client = HttpClient(base_url=rpc_url, timeout=timeout)
        self._request_id = 0

    @classmethod
    def from_helius_key(cls, api_key: str, **kwargs: Any) -> "SolanaRpcClient":
        return cls(HELIUS_RPC_TEMPLATE.format(api_key=api_key), **kwargs)

    def _call(self, method: str, params: list) -> Any:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }
        try:
            result = self.client.post_json("", payload)
        except (requests.exceptions.RequestException, ValueError) as exc:
            raise LedgerTransportError(f"{method} failed: {exc}") from exc

        if not isinstance(result, dict):
            raise LedgerTransportError(f"{method} returned a non-object response")
        if "error" in result:
            raise LedgerTransportError(f"{method} RPC error: {result['error']}")
        return result.get("result")

    def list_signatures(
        self,
        address: str,
        before: Optional[str] = None,
        until: Optional[str] = None,
        limit: int = MAX_SIGNATURES_PER_PAGE,
    ) -> list[str]:
        """Return one page of signatures for ``address``, newest first."""
        config: dict[str, Any] = {
            "limit": min(limit, MAX_SIGNATURES_PER_PAGE),
            "commitment": self.commitment,
        }
        if before:
            config["before"] = before
        if until:
            config["until"] = until
        entries = self._call("getSignaturesForAddress", [address, config]) or []
        return [entry["signature"] for entry in entries if entry.get("signature")]

    def get_transaction(self, signature: str) -> Optional[LedgerTransaction]:
        """Fetch a transaction; returns None if the node does not know it."""
        tx = self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if tx is None:
            return None
        meta = tx.get("meta") or {}
        is_error = meta.get("err") is not None
        raw_event_log = None if is_error else self.event_log_parser(tx)
        return LedgerTransaction(
            signature=signature,
            slot=int(tx.get("slot", 0)),
            is_error=is_error,
            raw_event_log=raw_event_log,
            block_time=tx.get("blockTime"),
        )

    def get_account_data(self, pubkey: str) -> bytes:
        """Return raw account bytes, or ``b""`` if the account does not exist."""
        value = (
            self._call(
                "getAccountInfo",
                [pubkey, {"encoding": "base64", "commitment": self.commitment}],
            )
            or {}
        ).get("value")
        if not value:
            return b""
        data = value.get("data") or []
        if isinstance(data, list) and data:
            encoded = data[0]
        else:
            encoded = data
        try:
            return base64.b64decode(encoded)
        except (ValueError, TypeError) as exc:
            raise LedgerTransportError(f"account {pubkey} has undecodable data: {exc}") from exc

    def get_genesis_hash(self) -> str:
        return str(self._call("getGenesisHash", []))
