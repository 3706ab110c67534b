"""
Core data types shared by the fitter, predictor and series assembler.

Fit results are immutable and carry the epoch they were fit against, so a
prediction always uses the same day-index mapping as the fit.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple, Union

import numpy as np

from powerband.core.day_index import DEFAULT_EPOCH, day_indices


@dataclass(frozen=True)
class Samples:
    """Usable (day index, price) pairs of one series."""

    days: np.ndarray
    prices: np.ndarray

    def __len__(self) -> int:
        return int(self.days.size)

    @classmethod
    def from_observations(
        cls, dates: Iterable[Any], prices: Iterable[Any], epoch: Any = DEFAULT_EPOCH
    ) -> "Samples":
        """Map dates to day indices and drop pairs with a non-finite day or price."""
        date_list = list(dates)
        price_arr = np.asarray([_as_float(p) for p in prices], dtype=float)
        if len(date_list) != price_arr.size:
            raise ValueError(f"dates and prices differ in length ({len(date_list)} != {price_arr.size})")
        days = day_indices(date_list, epoch)
        mask = np.isfinite(days) & np.isfinite(price_arr)
        return cls(days=days[mask], prices=price_arr[mask])

    def log_days(self) -> np.ndarray:
        return np.log(self.days)

    def log_prices(self, epsilon: float = 1e-9) -> np.ndarray:
        return np.log(np.maximum(self.prices, epsilon))


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


@dataclass(frozen=True)
class LogLogFit:
    """price = exp(alpha + beta * ln(day))"""

    alpha: float
    beta: float
    tau: float
    epoch: str = DEFAULT_EPOCH

    @classmethod
    def nan(cls, tau: float, epoch: str = DEFAULT_EPOCH) -> "LogLogFit":
        return cls(alpha=math.nan, beta=math.nan, tau=tau, epoch=epoch)

    @property
    def params(self) -> Tuple[float, ...]:
        return (self.alpha, self.beta)

    @property
    def is_valid(self) -> bool:
        return all(math.isfinite(p) for p in self.params)

    def evaluate(self, days: np.ndarray) -> np.ndarray:
        with np.errstate(over="ignore", invalid="ignore"):
            return np.exp(self.alpha + self.beta * np.log(days))


@dataclass(frozen=True)
class TwoTermFit:
    """price = a * day**b + c * day**d, with b <= d for valid fits."""

    a: float
    b: float
    c: float
    d: float
    tau: float
    epoch: str = DEFAULT_EPOCH

    @classmethod
    def nan(cls, tau: float, epoch: str = DEFAULT_EPOCH) -> "TwoTermFit":
        return cls(a=math.nan, b=math.nan, c=math.nan, d=math.nan, tau=tau, epoch=epoch)

    @property
    def params(self) -> Tuple[float, ...]:
        return (self.a, self.b, self.c, self.d)

    @property
    def is_valid(self) -> bool:
        return all(math.isfinite(p) for p in self.params)

    def evaluate(self, days: np.ndarray) -> np.ndarray:
        with np.errstate(over="ignore", invalid="ignore"):
            return self.a * np.power(days, self.b) + self.c * np.power(days, self.d)


FitResult = Union[LogLogFit, TwoTermFit]


@dataclass(frozen=True)
class QuantileBand:
    """(lower, median, upper) envelope fit independently per quantile."""

    lower: FitResult
    median: FitResult
    upper: FitResult

    @property
    def fits(self) -> Tuple[FitResult, FitResult, FitResult]:
        return (self.lower, self.median, self.upper)

    @property
    def is_valid(self) -> bool:
        return all(fit.is_valid for fit in self.fits)

    @property
    def is_degenerate(self) -> bool:
        """Valid band whose lower and upper fits coincide (the fit collapsed)."""
        if not self.is_valid:
            return False
        return all(math.isclose(lo, hi, rel_tol=1e-9) for lo, hi in zip(self.lower.params, self.upper.params))


# ---------------------------------------------------------------------------
# Indicator cells: provenance of every value in an enriched row
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Stored:
    """Value read from storage; trusted as-is."""

    value: float


@dataclass(frozen=True)
class Computed:
    """Value computed during this assembly."""

    value: float


@dataclass(frozen=True)
class Missing:
    """Neither stored nor computable."""


MISSING = Missing()

Cell = Union[Stored, Computed, Missing]


def cell_value(cell: Cell) -> Optional[float]:
    if isinstance(cell, (Stored, Computed)):
        return cell.value
    return None


def fill_if_absent(stored: Optional[float], compute: Callable[[], Optional[float]]) -> Cell:
    """
    Prefer a finite stored value; otherwise evaluate ``compute``.

    ``compute`` is only called when nothing usable is stored.
    """
    if stored is not None and math.isfinite(stored):
        return Stored(float(stored))
    value = compute()
    if value is None or not math.isfinite(value):
        return MISSING
    return Computed(float(value))


@dataclass(frozen=True)
class EnrichedRow:
    date: str
    closes: Mapping[str, float]
    cells: Mapping[str, Cell] = field(default_factory=dict)

    def value(self, column: str) -> Optional[float]:
        """Value of an indicator or close column, ``None`` when absent."""
        if column.startswith("close_") and column[len("close_"):] in self.closes:
            return self.closes[column[len("close_"):]]
        return cell_value(self.cells.get(column, MISSING))

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"date": self.date}
        for currency, price in self.closes.items():
            out[f"close_{currency}"] = price
        for column, cell in self.cells.items():
            out[column] = cell_value(cell)
        return out


@dataclass(frozen=True)
class ChartPoint:
    """One point handed to a rendering layer."""

    timestamp_ms: int
    price: float
    indicators: Mapping[str, Optional[float]] = field(default_factory=dict)


__all__ = [
    "Samples",
    "LogLogFit",
    "TwoTermFit",
    "FitResult",
    "QuantileBand",
    "Stored",
    "Computed",
    "Missing",
    "MISSING",
    "Cell",
    "cell_value",
    "fill_if_absent",
    "EnrichedRow",
    "ChartPoint",
]
