"""
Price-history providers.

A provider returns raw ``(timestamp_ms, price)`` points for one quote
currency; :func:`pick_daily_close` reduces them to one close per UTC day.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd
import requests

from powerband.columns import DATE_COLUMN, close_column
from powerband.core.day_index import parse_utc_days

logger = logging.getLogger(__name__)

COINGECKO_BASE = "https://api.coingecko.com/api/v3"

PricePoint = Tuple[int, float]


class ProviderError(RuntimeError):
    pass


def parse_date_utc(s: str) -> int:
    """Parse YYYY-MM-DD or an ISO datetime into UTC seconds."""
    s = str(s).strip()
    if s.endswith("Z"):
        s = s[:-1]
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        raise ValueError(f"Unsupported date format: {s}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def iso_date(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc).strftime("%Y-%m-%d")


def pick_daily_close(points: Iterable[PricePoint]) -> Dict[str, float]:
    """Last point of each UTC day is that day's close."""
    by_day: Dict[str, float] = {}
    for ts, price in sorted(points, key=lambda p: p[0]):
        by_day[iso_date(int(ts))] = float(price)
    return by_day


class PriceHistoryProvider(ABC):
    """Abstract source of raw price history."""

    @abstractmethod
    def fetch(self, vs_currency: str, start: str, end: Optional[str] = None) -> List[PricePoint]:
        """
        Return ``(timestamp_ms, price)`` points between ``start`` and ``end``
        (now when omitted), oldest first.
        """


class CoinGeckoProvider(PriceHistoryProvider):
    """CoinGecko ``market_chart/range`` endpoint (public, no API key)."""

    def __init__(
        self,
        coin: str = "bitcoin",
        session: Optional[requests.Session] = None,
        base_url: str = COINGECKO_BASE,
        timeout_s: int = 30,
        max_retries: int = 5,
    ) -> None:
        self.coin = coin
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.max_retries = max_retries

    def fetch(self, vs_currency: str, start: str, end: Optional[str] = None) -> List[PricePoint]:
        url = f"{self.base_url}/coins/{self.coin}/market_chart/range"
        params = {
            "vs_currency": vs_currency,
            "from": parse_date_utc(start),
            "to": parse_date_utc(end) if end else int(time.time()),
        }

        backoff = 1.0
        for attempt in range(self.max_retries):
            try:
                r = self.session.get(url, params=params, timeout=self.timeout_s)
                if r.status_code == 429:
                    retry_after = float(r.headers.get("Retry-After", "1"))
                    logger.warning("CoinGecko rate limit (%s), sleeping %.1fs", vs_currency, max(retry_after, backoff))
                    time.sleep(max(retry_after, backoff))
                    backoff = min(backoff * 1.8, 20.0)
                    continue
                r.raise_for_status()
                data = r.json()
                if not isinstance(data, dict):
                    raise ValueError(f"Unexpected payload type {type(data).__name__}")
                return [(int(ts), float(price)) for ts, price in data.get("prices") or []]
            except (requests.RequestException, json.JSONDecodeError, ValueError, TypeError) as e:
                if attempt == self.max_retries - 1:
                    raise ProviderError(f"CoinGecko request failed ({vs_currency}): {e}") from e
                time.sleep(backoff)
                backoff = min(backoff * 1.8, 20.0)
        raise ProviderError(f"CoinGecko rate limit not lifted after {self.max_retries} attempts ({vs_currency})")


class PriceDbProvider(PriceHistoryProvider):
    """Replays closes from a stored price table (offline mode)."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def fetch(self, vs_currency: str, start: str, end: Optional[str] = None) -> List[PricePoint]:
        if not self.path.exists():
            raise ProviderError(f"Price table not found: {self.path}")
        df = pd.read_csv(self.path, dtype={DATE_COLUMN: str})
        col = close_column(vs_currency)
        if col not in df.columns:
            raise ProviderError(f"Column {col!r} not in {self.path}")
        df = df[df[DATE_COLUMN] >= str(start)[:10]]
        if end:
            df = df[df[DATE_COLUMN] <= str(end)[:10]]
        prices = pd.to_numeric(df[col], errors="coerce")
        ts = parse_utc_days(df[DATE_COLUMN])
        points = [(int(t.value // 1_000_000), float(p)) for t, p in zip(ts, prices) if pd.notna(t) and pd.notna(p)]
        return sorted(points)


def fetch_daily_closes(
    provider: PriceHistoryProvider, currencies: Iterable[str], start: str, end: Optional[str] = None
) -> Dict[str, Dict[str, float]]:
    """Daily closes per currency: ``{currency: {date: close}}``."""
    return {cur: pick_daily_close(provider.fetch(cur, start, end)) for cur in currencies}


__all__ = [
    "COINGECKO_BASE",
    "PricePoint",
    "ProviderError",
    "parse_date_utc",
    "iso_date",
    "pick_daily_close",
    "PriceHistoryProvider",
    "CoinGeckoProvider",
    "PriceDbProvider",
    "fetch_daily_closes",
]
