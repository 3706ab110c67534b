"""
Series assembler: merges raw closes with moving averages and quantile-band
predictions into immutable enriched rows.

Stored indicator values win over freshly computed ones; a new fit only fills
cells that are genuinely missing. Every cell records its provenance
(Stored / Computed / Missing).
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from powerband.columns import (
    DATE_COLUMN,
    SchemaError,
    band_column,
    band_position_column,
    close_column,
    distance_column,
    ma_column,
    strip_currency,
)
from powerband.core.day_index import DEFAULT_EPOCH, parse_utc_days
from powerband.core.predictor import predict_many
from powerband.core.quantile_fit import MODELS, FitConfig, fit_quantile_band
from powerband.core.types import (
    Cell,
    ChartPoint,
    Computed,
    EnrichedRow,
    MISSING,
    QuantileBand,
    cell_value,
    fill_if_absent,
)
from powerband.features.moving_average import distance_pct, rolling_average

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssemblerConfig:
    currencies: Tuple[str, ...] = ("eur", "usd")
    ma_windows: Tuple[Tuple[str, int], ...] = (("sma50d", 50), ("sma200d", 200), ("sma200w", 1400))
    # (column label, tau) for the lower, median and upper curve
    quantiles: Tuple[Tuple[str, float], ...] = (("q01", 0.01), ("q50", 0.5), ("q99", 0.99))
    model: str = "loglog"
    # Rows before this ISO date are predicted but excluded from the fit
    fit_start: Optional[str] = None
    epoch: str = DEFAULT_EPOCH
    fit: Optional[FitConfig] = None
    distance_ma: Optional[str] = "sma200w"

    def __post_init__(self) -> None:
        if len(self.quantiles) != 3:
            raise ValueError("quantiles must name exactly a lower, median and upper curve")
        if self.model not in MODELS:
            raise ValueError(f"Unsupported model: {self.model!r}")
        if self.distance_ma is not None and self.distance_ma not in dict(self.ma_windows):
            raise ValueError(f"distance_ma {self.distance_ma!r} is not one of the moving averages")

    def indicator_columns(self, currency: str) -> List[str]:
        cols = [ma_column(name, currency) for name, _ in self.ma_windows]
        cols += [band_column(label, currency) for label, _ in self.quantiles]
        return cols

    def derived_columns(self, currency: str) -> List[str]:
        cols = [band_position_column(currency)]
        if self.distance_ma is not None:
            cols.append(distance_column(self.distance_ma, currency))
        return cols

    def columns(self) -> List[str]:
        cols = [DATE_COLUMN] + [close_column(cur) for cur in self.currencies]
        for cur in self.currencies:
            cols += self.indicator_columns(cur)
        for cur in self.currencies:
            cols += self.derived_columns(cur)
        return cols


@dataclass(frozen=True)
class AssembledSeries:
    rows: Tuple[EnrichedRow, ...]
    bands: Mapping[str, QuantileBand]
    columns: Tuple[str, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.rows)

    def to_frame(self) -> pd.DataFrame:
        """Flatten to a DataFrame; missing cells become NaN."""
        frame = pd.DataFrame([row.as_dict() for row in self.rows], columns=list(self.columns))
        numeric = [c for c in frame.columns if c != DATE_COLUMN]
        frame[numeric] = frame[numeric].apply(pd.to_numeric, errors="coerce")
        return frame

    def provenance(self, column: str) -> Counter:
        """Count of Stored / Computed / Missing cells in ``column``."""
        return Counter(type(row.cells.get(column, MISSING)).__name__ for row in self.rows)


def band_position(price: Optional[float], lower: Optional[float], upper: Optional[float]) -> Optional[float]:
    """Position of ``price`` inside [lower, upper] in percent, clamped to [0, 100]."""
    if price is None or lower is None or upper is None or not upper > lower:
        return None
    pct = (price - lower) / (upper - lower) * 100.0
    return min(max(pct, 0.0), 100.0)


def _finite_or_none(values: Iterable[Any]) -> List[Optional[float]]:
    out: List[Optional[float]] = []
    for v in values:
        try:
            f = float(v)
        except (TypeError, ValueError):
            out.append(None)
            continue
        out.append(f if math.isfinite(f) else None)
    return out


def _prepare_frame(frame: pd.DataFrame, cfg: AssemblerConfig) -> pd.DataFrame:
    required = [DATE_COLUMN] + [close_column(cur) for cur in cfg.currencies]
    missing = [c for c in required if c not in frame.columns]
    if missing:
        raise SchemaError(f"Missing required columns: {missing}")

    df = frame.copy()
    dates = parse_utc_days(df[DATE_COLUMN])
    df[DATE_COLUMN] = dates.dt.strftime("%Y-%m-%d")
    keep = dates.notna()
    for cur in cfg.currencies:
        col = close_column(cur)
        df[col] = pd.to_numeric(df[col], errors="coerce")
        keep &= df[col].apply(math.isfinite)
    dropped = int((~keep).sum())
    if dropped:
        logger.warning("Dropping %d row(s) with a malformed date or close", dropped)
    df = df[keep].sort_values(DATE_COLUMN, kind="mergesort")
    return df.drop_duplicates(subset=DATE_COLUMN, keep="last").reset_index(drop=True)


def _merge(stored: Optional[float], computed: Optional[float]) -> Cell:
    return fill_if_absent(stored, lambda: computed)


def _derived(value: Optional[float]) -> Cell:
    return MISSING if value is None else Computed(value)


def assemble_series(frame: pd.DataFrame, cfg: AssemblerConfig = AssemblerConfig()) -> AssembledSeries:
    """
    Build enriched rows from a date-keyed price frame.

    ``frame`` needs a ``date`` column and one ``close_<currency>`` column per
    configured currency; any indicator columns it carries are treated as
    stored values.
    """
    columns = tuple(cfg.columns())
    if frame is None or frame.empty:
        return AssembledSeries(rows=(), bands={}, columns=columns)

    df = _prepare_frame(frame, cfg)
    dates: List[str] = df[DATE_COLUMN].tolist()
    n = len(dates)

    def stored(column: str) -> List[Optional[float]]:
        if column not in df.columns:
            return [None] * n
        return _finite_or_none(df[column].tolist())

    bands: Dict[str, QuantileBand] = {}
    per_currency: Dict[str, Dict[str, List[Cell]]] = {}
    lower_label, _, upper_label = (label for label, _ in cfg.quantiles)

    for cur in cfg.currencies:
        closes = df[close_column(cur)].astype(float).tolist()
        cells: Dict[str, List[Cell]] = {}

        for name, window in cfg.ma_windows:
            col = ma_column(name, cur)
            computed = rolling_average(closes, window)
            cells[col] = [_merge(s, c) for s, c in zip(stored(col), computed)]

        fit_idx = [i for i, d in enumerate(dates) if cfg.fit_start is None or d >= cfg.fit_start]
        band = fit_quantile_band(
            [dates[i] for i in fit_idx],
            [closes[i] for i in fit_idx],
            taus=tuple(tau for _, tau in cfg.quantiles),
            model=cfg.model,
            cfg=cfg.fit,
            epoch=cfg.epoch,
        )
        bands[cur] = band
        if not band.is_valid:
            logger.warning("Quantile band for %s is undefined (%d usable rows)", cur, len(fit_idx))
        elif band.is_degenerate:
            logger.warning("Quantile band for %s is degenerate: lower and upper %s fits coincide", cur, cfg.model)

        for (label, _), fit in zip(cfg.quantiles, band.fits):
            col = band_column(label, cur)
            stored_col = stored(col)
            # predictions are only needed where storage has nothing
            if all(s is not None for s in stored_col):
                computed_col: Sequence[Optional[float]] = [None] * n
            else:
                computed_col = predict_many(dates, fit)
            cells[col] = [_merge(s, c) for s, c in zip(stored_col, computed_col)]

        lower = [cell_value(c) for c in cells[band_column(lower_label, cur)]]
        upper = [cell_value(c) for c in cells[band_column(upper_label, cur)]]
        cells[band_position_column(cur)] = [
            _derived(band_position(p, lo, hi)) for p, lo, hi in zip(closes, lower, upper)
        ]
        if cfg.distance_ma is not None:
            ref = [cell_value(c) for c in cells[ma_column(cfg.distance_ma, cur)]]
            cells[distance_column(cfg.distance_ma, cur)] = [_derived(distance_pct(p, r)) for p, r in zip(closes, ref)]

        per_currency[cur] = cells

    rows = []
    for i, date in enumerate(dates):
        row_cells: Dict[str, Cell] = {}
        for cur in cfg.currencies:
            for col, values in per_currency[cur].items():
                row_cells[col] = values[i]
        rows.append(
            EnrichedRow(
                date=date,
                closes={cur: float(df.at[i, close_column(cur)]) for cur in cfg.currencies},
                cells=row_cells,
            )
        )

    series = AssembledSeries(rows=tuple(rows), bands=bands, columns=columns)
    if logger.isEnabledFor(logging.INFO):
        for cur in cfg.currencies:
            counts = series.provenance(band_column(cfg.quantiles[1][0], cur))
            logger.info(f"[assemble] {cur}: rows={n} median band cells {dict(counts)}")
    return series


# ---------------------------------------------------------------------------
# Chart views
# ---------------------------------------------------------------------------


def _date_to_ms(date: str) -> int:
    return int(pd.Timestamp(date, tz="UTC").value // 1_000_000)


def _indicators(row: Optional[EnrichedRow], currency: str, cfg: AssemblerConfig) -> Dict[str, Optional[float]]:
    cols = cfg.indicator_columns(currency) + cfg.derived_columns(currency)
    return {strip_currency(col, currency): (row.value(col) if row is not None else None) for col in cols}


def chart_series(
    rows: Sequence[EnrichedRow],
    currency: str,
    days: Union[int, str] = "max",
    cfg: AssemblerConfig = AssemblerConfig(),
) -> List[ChartPoint]:
    """Last ``days`` rows (all rows for ``"max"``) as chart points for ``currency``."""
    if not rows:
        return []
    ordered = sorted(rows, key=lambda r: r.date)
    if days != "max":
        days = int(days)
        ordered = ordered[-days:] if days > 0 else []
    return [
        ChartPoint(timestamp_ms=_date_to_ms(row.date), price=row.closes[currency], indicators=_indicators(row, currency, cfg))
        for row in ordered
    ]


def overlay_market_points(
    points: Iterable[Tuple[int, float]],
    rows: Sequence[EnrichedRow],
    currency: str,
    cfg: AssemblerConfig = AssemblerConfig(),
) -> List[ChartPoint]:
    """
    Attach the indicators of the matching UTC day to intraday market points.

    Points without a stored day keep ``None`` indicators.
    """
    by_date = {row.date: row for row in rows}
    out = []
    for ts, price in points:
        day = pd.Timestamp(int(ts), unit="ms", tz="UTC").strftime("%Y-%m-%d")
        out.append(
            ChartPoint(timestamp_ms=int(ts), price=float(price), indicators=_indicators(by_date.get(day), currency, cfg))
        )
    return out


__all__ = [
    "AssemblerConfig",
    "AssembledSeries",
    "assemble_series",
    "band_position",
    "chart_series",
    "overlay_market_points",
]
