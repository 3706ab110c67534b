"""
powerband: long-run quantile power-law bands for daily price histories.

The package fits lower/median/upper pinball-loss regressions in log-log or
two-term power-law space, predicts them for arbitrary dates, and merges them
with moving averages into a date-keyed price table.
"""

from .assembler import AssembledSeries, AssemblerConfig, assemble_series, band_position, chart_series, overlay_market_points
from .core import (
    FitConfig,
    LogLogFit,
    QuantileBand,
    TwoTermFit,
    day_index,
    fit_loglog_quantile,
    fit_quantile_band,
    fit_two_term_quantile,
    predict,
    project_band,
)
from .data_providers import CoinGeckoProvider, PriceDbProvider, PriceHistoryProvider, ProviderError
from .features import rolling_average
from .persist import SchemaError, read_price_db, write_price_db
from .updater import UpdateReport, update_price_db

__all__ = [
    "AssembledSeries",
    "AssemblerConfig",
    "assemble_series",
    "band_position",
    "chart_series",
    "overlay_market_points",
    "FitConfig",
    "LogLogFit",
    "TwoTermFit",
    "QuantileBand",
    "day_index",
    "fit_loglog_quantile",
    "fit_two_term_quantile",
    "fit_quantile_band",
    "predict",
    "project_band",
    "PriceHistoryProvider",
    "CoinGeckoProvider",
    "PriceDbProvider",
    "ProviderError",
    "rolling_average",
    "SchemaError",
    "read_price_db",
    "write_price_db",
    "UpdateReport",
    "update_price_db",
]
