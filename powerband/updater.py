"""
Incremental update of the daily price table.

Appends the days after the last stored date, recomputes moving averages and
quantile bands, and rewrites the table. When the provider is unreachable the
stored rows are recomputed on their own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

import pandas as pd

from powerband.assembler import AssembledSeries, AssemblerConfig, assemble_series
from powerband.columns import DATE_COLUMN, close_column
from powerband.core.types import QuantileBand
from powerband.data_providers import PriceHistoryProvider, ProviderError, fetch_daily_closes
from powerband.persist.price_db import last_date, read_price_db, write_price_db

logger = logging.getLogger(__name__)

DEFAULT_START_DATE = "2010-01-01"


@dataclass(frozen=True)
class UpdateReport:
    new_rows: int
    total_rows: int
    bands: Mapping[str, QuantileBand] = field(default_factory=dict)
    provider_failed: bool = False
    written: Optional[Path] = None


def new_rows_frame(daily: Mapping[str, Mapping[str, float]], after: Optional[str]) -> pd.DataFrame:
    """Rows for dates after ``after`` where every currency has a close."""
    currencies = list(daily)
    dates = sorted(set().union(*(set(v) for v in daily.values()))) if daily else []
    records = []
    for date in dates:
        if after is not None and date <= after:
            continue
        closes = {cur: daily[cur].get(date) for cur in currencies}
        if any(v is None for v in closes.values()):
            continue
        record: Dict[str, object] = {DATE_COLUMN: date}
        record.update({close_column(cur): round(float(v), 2) for cur, v in closes.items()})
        records.append(record)
    return pd.DataFrame(records, columns=[DATE_COLUMN] + [close_column(cur) for cur in currencies])


def update_price_db(
    path: str | Path,
    provider: PriceHistoryProvider,
    cfg: AssemblerConfig = AssemblerConfig(),
    start_date: str = DEFAULT_START_DATE,
    full: bool = False,
    keep_stored: bool = False,
) -> UpdateReport:
    """
    Fetch new closes, merge them into the table at ``path`` and recompute indicators.

    Args:
        full: Ignore the stored table and rebuild from ``start_date``.
        keep_stored: Keep stored indicator cells and only fill missing ones.
            By default every indicator is recomputed from the merged closes.
    """
    path = Path(path)
    existing = pd.DataFrame() if full else read_price_db(path, cfg.currencies)
    after = last_date(existing)
    fetch_from = after or start_date

    provider_failed = False
    try:
        daily = fetch_daily_closes(provider, cfg.currencies, fetch_from)
    except ProviderError as e:
        logger.warning("Could not load new prices, recomputing stored rows only: %s", e)
        daily = {cur: {} for cur in cfg.currencies}
        provider_failed = True

    fresh = new_rows_frame(daily, after)
    if not keep_stored and not existing.empty:
        existing = existing[[DATE_COLUMN] + [close_column(cur) for cur in cfg.currencies]]
    frames = [df for df in (existing, fresh) if not df.empty]
    if not frames:
        logger.info("No price data available, nothing written")
        return UpdateReport(new_rows=0, total_rows=0, provider_failed=provider_failed)

    merged = pd.concat(frames, ignore_index=True)
    series: AssembledSeries = assemble_series(merged, cfg)
    written = write_price_db(series.to_frame(), path, columns=series.columns)
    logger.info("Updated %s: %d new row(s), %d total", written, len(fresh), len(series))
    return UpdateReport(
        new_rows=len(fresh),
        total_rows=len(series),
        bands=series.bands,
        provider_failed=provider_failed,
        written=written,
    )


__all__ = ["DEFAULT_START_DATE", "UpdateReport", "new_rows_frame", "update_price_db"]
