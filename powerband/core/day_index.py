"""
Calendar date -> day index mapping.

The day index is the independent variable of every power-law fit: whole days
since a fixed epoch, plus one, never below 1 so that ln(day) is defined.
"""

from __future__ import annotations

import math
from typing import Any, Iterable

import numpy as np
import pandas as pd

DEFAULT_EPOCH = "1970-01-01"
GENESIS_EPOCH = "2009-01-03"

_ONE_DAY = pd.Timedelta(days=1)


def _to_utc_day(value: Any) -> pd.Timestamp | None:
    if value is None:
        return None
    try:
        ts = pd.to_datetime(value, utc=True, errors="coerce")
    except (TypeError, ValueError):
        return None
    if ts is None or pd.isna(ts):
        return None
    return ts.normalize()


def _epoch_ts(epoch: Any) -> pd.Timestamp:
    ts = _to_utc_day(epoch)
    if ts is None:
        raise ValueError(f"Invalid epoch: {epoch!r}")
    return ts


def day_index(date: Any, epoch: Any = DEFAULT_EPOCH) -> float:
    """
    Day index of ``date`` relative to ``epoch``.

    Returns an int-valued number >= 1 for parseable dates (the epoch itself and
    anything before it map to 1) and ``nan`` for malformed input.
    """
    ts = _to_utc_day(date)
    if ts is None:
        return math.nan
    elapsed = (ts - _epoch_ts(epoch)) // _ONE_DAY
    return max(int(elapsed) + 1, 1)


def parse_utc_days(values: Iterable[Any]) -> pd.Series:
    """
    Parse dates to UTC midnight timestamps, NaT for malformed entries.

    Each entry is parsed on its own (``format="mixed"``), so plain dates and
    ISO datetimes may be mixed in one column. A Series input keeps its index.
    """
    if isinstance(values, pd.Series):
        series = values.astype(object)
    else:
        series = pd.Series(list(values), dtype=object)
    return pd.to_datetime(series, utc=True, errors="coerce", format="mixed").dt.normalize()


def day_indices(dates: Iterable[Any], epoch: Any = DEFAULT_EPOCH) -> np.ndarray:
    """Vectorized :func:`day_index`; malformed entries become NaN."""
    values = list(dates)
    if not values:
        return np.array([], dtype=float)
    ts = parse_utc_days(values)
    elapsed = (ts - _epoch_ts(epoch)) / _ONE_DAY
    # np.maximum propagates NaN for unparseable dates
    return np.maximum(elapsed.to_numpy(dtype=float) + 1.0, 1.0)


def date_from_index(day: float, epoch: Any = DEFAULT_EPOCH) -> str:
    """Inverse mapping for day >= 1, returned as an ISO date string."""
    if not math.isfinite(day):
        raise ValueError(f"Day index must be finite, got {day}")
    return (_epoch_ts(epoch) + int(day - 1) * _ONE_DAY).strftime("%Y-%m-%d")


__all__ = [
    "DEFAULT_EPOCH",
    "GENESIS_EPOCH",
    "day_index",
    "day_indices",
    "date_from_index",
    "parse_utc_days",
]
