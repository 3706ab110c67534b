"""
Quantile power-law fitting core.

This package provides:
- Day-index mapping (calendar date -> days since epoch)
- Pinball-loss quantile regression (log-log and two-term power law)
- Prediction and forward projection of fitted bands
"""

from powerband.core.day_index import DEFAULT_EPOCH, GENESIS_EPOCH, date_from_index, day_index, day_indices, parse_utc_days
from powerband.core.optimizer import AdamOptimizer, run_adam
from powerband.core.predictor import (
    BandPoint,
    band_crossings,
    predict,
    predict_band,
    predict_day,
    predict_many,
    project_band,
)
from powerband.core.quantile_fit import (
    DEFAULT_FIT_CONFIG,
    DEFAULT_QUANTILES,
    MODELS,
    TWO_TERM_FIT_CONFIG,
    FitConfig,
    fit_loglog_quantile,
    fit_quantile,
    fit_quantile_band,
    fit_two_term_quantile,
    ols_line,
    pinball_loss,
    reference_fit,
    residual_quantile,
)
from powerband.core.types import (
    MISSING,
    Cell,
    ChartPoint,
    Computed,
    EnrichedRow,
    FitResult,
    LogLogFit,
    Missing,
    QuantileBand,
    Samples,
    Stored,
    TwoTermFit,
    cell_value,
    fill_if_absent,
)

__all__ = [
    # Day index
    "DEFAULT_EPOCH",
    "GENESIS_EPOCH",
    "day_index",
    "day_indices",
    "parse_utc_days",
    "date_from_index",
    # Optimizer
    "AdamOptimizer",
    "run_adam",
    # Fitting
    "FitConfig",
    "DEFAULT_FIT_CONFIG",
    "TWO_TERM_FIT_CONFIG",
    "DEFAULT_QUANTILES",
    "MODELS",
    "pinball_loss",
    "ols_line",
    "residual_quantile",
    "reference_fit",
    "fit_loglog_quantile",
    "fit_two_term_quantile",
    "fit_quantile",
    "fit_quantile_band",
    # Prediction
    "predict_day",
    "predict",
    "predict_many",
    "BandPoint",
    "predict_band",
    "project_band",
    "band_crossings",
    # Types
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
