"""
Apply fitted parameters to dates, for backfill inside the training range and
for projection past it. Non-finite outcomes are reported as ``None``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

import numpy as np
import pandas as pd

from powerband.core.day_index import day_index, day_indices
from powerband.core.types import FitResult, QuantileBand


def predict_day(day: float, fit: FitResult) -> Optional[float]:
    """Model value at a day index, ``None`` if the fit or the day is unusable."""
    if not fit.is_valid or day is None or not math.isfinite(day):
        return None
    value = float(fit.evaluate(np.array([float(day)]))[0])
    return value if math.isfinite(value) else None


def predict(date: Any, fit: FitResult) -> Optional[float]:
    return predict_day(day_index(date, fit.epoch), fit)


def predict_many(dates: Iterable[Any], fit: FitResult) -> List[Optional[float]]:
    dates = list(dates)
    if not fit.is_valid:
        return [None] * len(dates)
    values = fit.evaluate(day_indices(dates, fit.epoch))
    return [float(v) if math.isfinite(v) else None for v in values]


@dataclass(frozen=True)
class BandPoint:
    date: str
    lower: Optional[float]
    median: Optional[float]
    upper: Optional[float]


def predict_band(date: Any, band: QuantileBand) -> BandPoint:
    ts = pd.Timestamp(date).strftime("%Y-%m-%d")
    return BandPoint(ts, predict(date, band.lower), predict(date, band.median), predict(date, band.upper))


def project_band(band: QuantileBand, start: Any, horizon_days: int) -> List[BandPoint]:
    """
    Daily band values for ``horizon_days`` days starting the day after ``start``.

    Extrapolation is the caller's risk; the model formula is used unchanged.
    """
    if horizon_days < 0:
        raise ValueError(f"horizon_days must be non-negative, got {horizon_days}")
    first = pd.Timestamp(start).normalize() + pd.Timedelta(days=1)
    dates = [d.strftime("%Y-%m-%d") for d in pd.date_range(first, periods=horizon_days, freq="D")]
    lower = predict_many(dates, band.lower)
    median = predict_many(dates, band.median)
    upper = predict_many(dates, band.upper)
    return [BandPoint(*row) for row in zip(dates, lower, median, upper)]


def band_crossings(band: QuantileBand, dates: Iterable[Any]) -> List[str]:
    """Dates at which the upper curve falls below the lower one."""
    dates = [pd.Timestamp(d).strftime("%Y-%m-%d") for d in dates]
    lower = predict_many(dates, band.lower)
    upper = predict_many(dates, band.upper)
    return [d for d, lo, hi in zip(dates, lower, upper) if lo is not None and hi is not None and hi < lo]


__all__ = [
    "predict_day",
    "predict",
    "predict_many",
    "BandPoint",
    "predict_band",
    "project_band",
    "band_crossings",
]
