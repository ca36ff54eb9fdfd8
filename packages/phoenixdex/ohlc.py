"""OHLC query service: validation, admission, then one bucketed aggregation."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from .admission import AdmissionControl
from .errors import InvalidInterval, InvalidRange, NoDataFound
from .store import Ohlc

logger = logging.getLogger(__name__)

# Supported intervals and their bucket widths in minutes.
INTERVAL_MINUTES: dict[str, int] = {
    "1m": 1,
    "1h": 60,
    "1d": 1440,
}


class OhlcStore(Protocol):
    def fetch_ohlc(
        self,
        base_mint: str,
        quote_mint: str,
        start_time: int,
        end_time: int,
        interval_minutes: int,
    ) -> Optional[Ohlc]: ...


def interval_to_minutes(interval: str) -> int:
    try:
        return INTERVAL_MINUTES[interval]
    except KeyError:
        raise InvalidInterval(interval, tuple(INTERVAL_MINUTES)) from None


def validate_query(start_time: int, end_time: int, interval: str) -> int:
    """Validate a query window and return the bucket width in minutes.

    Raises:
        InvalidRange: If ``start_time >= end_time``.
        InvalidInterval: If ``interval`` is not supported.
    """
    if start_time >= end_time:
        raise InvalidRange(start_time, end_time)
    return interval_to_minutes(interval)


class OhlcQueryService:
    """Answers OHLC queries for admitted users.

    Requests rejected by validation never reach admission control, so they
    cost neither rate-limit quota nor credits.
    """

    def __init__(self, store: OhlcStore, admission: AdmissionControl):
        self.store = store
        self.admission = admission

    def get_ohlc(
        self,
        user_id: str,
        base_mint: str,
        quote_mint: str,
        start_time: int,
        end_time: int,
        interval: str,
    ) -> Ohlc:
        interval_minutes = validate_query(start_time, end_time, interval)
        self.admission.admit(user_id)

        logger.info(
            f"OHLC query user={user_id} pair={base_mint}/{quote_mint} "
            f"range=[{start_time}, {end_time}] interval={interval}"
        )
        ohlc = self.store.fetch_ohlc(
            base_mint=base_mint,
            quote_mint=quote_mint,
            start_time=start_time,
            end_time=end_time,
            interval_minutes=interval_minutes,
        )
        if ohlc is None:
            raise NoDataFound(base_mint, quote_mint)
        return ohlc
