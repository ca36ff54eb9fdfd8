"""PhoenixTool API service: metered OHLC queries over ingested Phoenix fills."""

import logging
import math
import os
import threading
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from packages.phoenixdex.admission import AdmissionControl, CreditGate, RateLimiter
from packages.phoenixdex.config import Settings, get_clickhouse_client
from packages.phoenixdex.errors import PhoenixToolError
from packages.phoenixdex.ohlc import OhlcQueryService
from packages.phoenixdex.store import ClickHouseStore

logger = logging.getLogger(__name__)

SERVICE_NAME = "phoenixtool-api"


class OHLCResponse(BaseModel):
    """Response body for /ohlc endpoint (prices in ticks)."""

    open: int
    high: int
    low: int
    close: int


def build_query_service(settings: Settings, clickhouse_client=None) -> OhlcQueryService:
    """Wire the store, rate limiter and credit gate into a query service."""
    client = clickhouse_client if clickhouse_client is not None else get_clickhouse_client(settings)
    store = ClickHouseStore(client)
    admission = AdmissionControl(
        rate_limiter=RateLimiter(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        ),
        credit_gate=CreditGate(store),
    )
    return OhlcQueryService(store=store, admission=admission)


def create_app(query_service: Optional[OhlcQueryService] = None) -> FastAPI:
    """Create the API application.

    When ``query_service`` is omitted it is built from the environment on the
    first request, so importing this module never opens a ClickHouse
    connection.
    """
    app = FastAPI(
        title="PhoenixTool API",
        description="OHLC aggregation over Phoenix DEX fills",
        version="0.1.0",
    )

    service_lock = threading.Lock()
    state = {"service": query_service}

    def _service() -> OhlcQueryService:
        with service_lock:
            if state["service"] is None:
                state["service"] = build_query_service(Settings.from_env())
            return state["service"]

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": SERVICE_NAME}

    @app.get("/ohlc", response_model=OHLCResponse)
    def get_ohlc(
        user_id: str = Query(..., min_length=1),
        base_token_mint: str = Query(...),
        quote_token_mint: str = Query(...),
        start_time: int = Query(...),
        end_time: int = Query(...),
        interval: str = Query(...),
    ):
        """
        Return open/high/low/close for the first bucket in the window.

        - 400 for an empty/inverted window or unsupported interval
        - 429 when the user's rate limit is exhausted
        - 402 when the user has no credits left
        - 404 when no fills match
        """
        try:
            ohlc = _service().get_ohlc(
                user_id=user_id,
                base_mint=base_token_mint,
                quote_mint=quote_token_mint,
                start_time=start_time,
                end_time=end_time,
                interval=interval,
            )
        except PhoenixToolError as e:
            if e.status_code >= 500:
                logger.error(f"Failed to fetch OHLC data: {e}")
                raise HTTPException(status_code=500, detail=f"Failed to fetch OHLC data: {e}")
            logger.info(f"Rejected OHLC query for {user_id}: {e}")
            headers = None
            retry_after = getattr(e, "retry_after", None)
            if retry_after is not None:
                headers = {"Retry-After": str(max(math.ceil(retry_after), 1))}
            raise HTTPException(status_code=e.status_code, detail=str(e), headers=headers)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Failed to fetch OHLC data: {e}")
            raise HTTPException(status_code=500, detail=f"Failed to fetch OHLC data: {e}")

        return OHLCResponse(open=ohlc.open, high=ohlc.high, low=ohlc.low, close=ohlc.close)

    return app


def run_api_server(
    app: FastAPI,
    host: str,
    port: int,
    stop_event: threading.Event,
) -> None:
    """Serve ``app`` until ``stop_event`` is set."""
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="info"))

    def _watch_stop() -> None:
        stop_event.wait()
        server.should_exit = True

    threading.Thread(target=_watch_stop, name="api-stop-watcher", daemon=True).start()
    logger.info(f"Server is running at http://{host}:{port}")
    try:
        server.run()
    except SystemExit as exc:
        raise RuntimeError(f"API server exited with status {exc.code}") from exc


# Module-level app instance (for `uvicorn services.api.main:app`)
app = create_app()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("API_PORT", "8080")))
