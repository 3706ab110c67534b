"""
Quantile (pinball-loss) regression for long-run price trends.

Two models are supported:

* ``loglog``:   ln(price) = alpha + beta * ln(day)
* ``two_term``: price = a * day**b + c * day**d   (fit in natural space)

Both minimise the mean pinball loss with full-batch Adam. The loss gradient
w.r.t. a prediction is -psi where psi = tau for non-negative residuals and
tau - 1 otherwise, so outliers pull no harder than any other sample.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence, Tuple

import numpy as np

from powerband.core.day_index import DEFAULT_EPOCH, GENESIS_EPOCH
from powerband.core.optimizer import run_adam
from powerband.core.types import FitResult, LogLogFit, QuantileBand, Samples, TwoTermFit

logger = logging.getLogger(__name__)

DEFAULT_QUANTILES: Tuple[float, float, float] = (0.01, 0.5, 0.99)
MODELS = ("loglog", "two_term")

EXPONENT_MIN = 0.01
EXPONENT_MAX = 12.0
DOMINANT_EXPONENT_FLOOR = 0.05


@dataclass(frozen=True)
class FitConfig:
    iterations: int = 12000
    learning_rate: float = 0.02
    beta1: float = 0.9
    beta2: float = 0.999
    epsilon: float = 1e-9
    # Shift alpha onto the empirical tau-quantile of log residuals after the loop (loglog only)
    refine: bool = False
    min_samples: int = 4


DEFAULT_FIT_CONFIG = FitConfig()
TWO_TERM_FIT_CONFIG = FitConfig(iterations=8000)


def _check_tau(tau: float) -> float:
    tau = float(tau)
    if not 0.0 < tau < 1.0:
        raise ValueError(f"tau must lie in (0, 1), got {tau}")
    return tau


def pinball_loss(residuals: np.ndarray, tau: float) -> float:
    """Mean pinball loss for residuals r = actual - predicted."""
    r = np.asarray(residuals, dtype=float)
    if r.size == 0:
        return math.nan
    return float(np.mean(np.where(r >= 0, tau * r, (tau - 1.0) * r)))


def _psi(residuals: np.ndarray, tau: float) -> np.ndarray:
    return np.where(residuals >= 0, tau, tau - 1.0)


def ols_line(x: np.ndarray, y: np.ndarray) -> Tuple[float, float]:
    """Closed-form least squares (intercept, slope); slope is 0 for constant x."""
    mean_x = float(np.mean(x))
    mean_y = float(np.mean(y))
    variance = float(np.sum((x - mean_x) ** 2))
    slope = 0.0 if variance == 0 else float(np.sum((x - mean_x) * (y - mean_y))) / variance
    return mean_y - slope * mean_x, slope


def residual_quantile(residuals: np.ndarray, tau: float) -> float:
    """Empirical tau-quantile of residuals: sorted[ceil(tau*N) - 1], index clamped."""
    ordered = np.sort(np.asarray(residuals, dtype=float))
    n = ordered.size
    idx = min(max(int(math.ceil(tau * n)) - 1, 0), n - 1)
    return float(ordered[idx])


def reference_fit(tau: float = 0.5) -> LogLogFit:
    """
    Published BTC power law, price = 10**-17.01 * days**5.82 since genesis.

    Useful as an informed seed (``init=(fit.alpha, fit.beta)``) for fits that
    use ``epoch=GENESIS_EPOCH``.
    """
    return LogLogFit(alpha=-17.01 * math.log(10.0), beta=5.82, tau=_check_tau(tau), epoch=GENESIS_EPOCH)


def fit_loglog_quantile(
    dates: Iterable[Any],
    prices: Iterable[Any],
    tau: float,
    cfg: FitConfig = DEFAULT_FIT_CONFIG,
    epoch: str = DEFAULT_EPOCH,
    init: Optional[Tuple[float, float]] = None,
) -> LogLogFit:
    """
    Fit ln(price) = alpha + beta * ln(day) at quantile ``tau``.

    Starts from the OLS line (or ``init``) and runs ``cfg.iterations`` Adam
    steps. Fewer than ``cfg.min_samples`` usable samples yields an all-NaN fit.
    """
    tau = _check_tau(tau)
    samples = Samples.from_observations(dates, prices, epoch)
    if len(samples) < cfg.min_samples:
        logger.debug("loglog fit tau=%s skipped: %d usable samples", tau, len(samples))
        return LogLogFit.nan(tau, epoch)

    x = samples.log_days()
    y = samples.log_prices(cfg.epsilon)
    if init is None:
        alpha0, beta0 = ols_line(x, y)
    else:
        alpha0, beta0 = float(init[0]), float(init[1])

    def grad(params: np.ndarray) -> np.ndarray:
        psi = _psi(y - (params[0] + params[1] * x), tau)
        return np.array([-np.mean(psi), -np.mean(psi * x)])

    alpha, beta = run_adam(
        np.array([alpha0, beta0]),
        grad,
        cfg.iterations,
        learning_rate=cfg.learning_rate,
        beta1=cfg.beta1,
        beta2=cfg.beta2,
        epsilon=cfg.epsilon,
    )

    if cfg.refine:
        alpha += residual_quantile(y - (alpha + beta * x), tau)

    if logger.isEnabledFor(logging.INFO):
        loss = pinball_loss(y - (alpha + beta * x), tau)
        logger.info(f"[loglog] tau={tau} n={len(samples)} alpha={alpha:.6f} beta={beta:.6f} loss={loss:.6f}")
    return LogLogFit(alpha=float(alpha), beta=float(beta), tau=tau, epoch=epoch)


def _two_term_guard(params: np.ndarray, min_price: float, max_price: float, epsilon: float) -> np.ndarray:
    a, b, c, d = params
    fallback_amp = 0.1 * min_price
    if not math.isfinite(a):
        a = fallback_amp
    if not math.isfinite(b):
        b = 1.0
    if not math.isfinite(c):
        c = fallback_amp
    if not math.isfinite(d):
        d = 2.0
    amp_cap = max(10.0 * max_price, epsilon)
    return np.array(
        [
            min(max(a, epsilon), amp_cap),
            min(max(b, EXPONENT_MIN), EXPONENT_MAX),
            min(max(c, epsilon), amp_cap),
            min(max(d, EXPONENT_MIN), EXPONENT_MAX),
        ]
    )


def fit_two_term_quantile(
    dates: Iterable[Any],
    prices: Iterable[Any],
    tau: float,
    cfg: FitConfig = TWO_TERM_FIT_CONFIG,
    epoch: str = DEFAULT_EPOCH,
) -> TwoTermFit:
    """
    Fit price = a * day**b + c * day**d at quantile ``tau``.

    The OLS log-log slope seeds a slow (a, b) and a fast (c, d) component.
    After every step non-finite parameters are replaced by fallbacks and all
    parameters are clamped; the result is swapped so that b <= d.
    """
    tau = _check_tau(tau)
    samples = Samples.from_observations(dates, prices, epoch)
    if len(samples) < cfg.min_samples:
        logger.debug("two_term fit tau=%s skipped: %d usable samples", tau, len(samples))
        return TwoTermFit.nan(tau, epoch)

    days = samples.days
    y = np.maximum(samples.prices, cfg.epsilon)
    log_days = np.log(days)
    min_price = float(np.min(y))
    max_price = float(np.max(y))

    intercept, slope = ols_line(log_days, np.log(y))
    dominant = max(slope, DOMINANT_EXPONENT_FLOOR)
    scale = math.exp(intercept)
    init = np.array([0.35 * scale, 0.65 * dominant, 0.65 * scale, min(1.35 * dominant, EXPONENT_MAX)])

    def project(params: np.ndarray) -> np.ndarray:
        return _two_term_guard(params, min_price, max_price, cfg.epsilon)

    def grad(params: np.ndarray) -> np.ndarray:
        a, b, c, d = params
        with np.errstate(over="ignore", invalid="ignore"):
            slow = np.power(days, b)
            fast = np.power(days, d)
            psi = _psi(y - (a * slow + c * fast), tau)
            return np.array(
                [
                    -np.mean(psi * slow),
                    -np.mean(psi * a * slow * log_days),
                    -np.mean(psi * fast),
                    -np.mean(psi * c * fast * log_days),
                ]
            )

    a, b, c, d = run_adam(
        project(init),
        grad,
        cfg.iterations,
        learning_rate=cfg.learning_rate,
        beta1=cfg.beta1,
        beta2=cfg.beta2,
        epsilon=cfg.epsilon,
        project=project,
    )
    if b > d:
        a, b, c, d = c, d, a, b

    if logger.isEnabledFor(logging.INFO):
        logger.info(f"[two_term] tau={tau} n={len(samples)} a={a:.6g} b={b:.4f} c={c:.6g} d={d:.4f}")
    return TwoTermFit(a=float(a), b=float(b), c=float(c), d=float(d), tau=tau, epoch=epoch)


def fit_quantile(
    dates: Sequence[Any],
    prices: Sequence[Any],
    tau: float,
    model: str = "loglog",
    cfg: Optional[FitConfig] = None,
    epoch: str = DEFAULT_EPOCH,
) -> FitResult:
    if model == "loglog":
        return fit_loglog_quantile(dates, prices, tau, cfg=cfg or DEFAULT_FIT_CONFIG, epoch=epoch)
    if model == "two_term":
        return fit_two_term_quantile(dates, prices, tau, cfg=cfg or TWO_TERM_FIT_CONFIG, epoch=epoch)
    raise ValueError(f"Unsupported model: {model!r} (expected one of {MODELS})")


def fit_quantile_band(
    dates: Sequence[Any],
    prices: Sequence[Any],
    taus: Tuple[float, float, float] = DEFAULT_QUANTILES,
    model: str = "loglog",
    cfg: Optional[FitConfig] = None,
    epoch: str = DEFAULT_EPOCH,
) -> QuantileBand:
    """Fit the lower/median/upper quantiles independently on the same samples."""
    dates = list(dates)
    prices = list(prices)
    lower, median, upper = (fit_quantile(dates, prices, tau, model=model, cfg=cfg, epoch=epoch) for tau in taus)
    return QuantileBand(lower=lower, median=median, upper=upper)


__all__ = [
    "DEFAULT_QUANTILES",
    "MODELS",
    "FitConfig",
    "DEFAULT_FIT_CONFIG",
    "TWO_TERM_FIT_CONFIG",
    "pinball_loss",
    "ols_line",
    "residual_quantile",
    "reference_fit",
    "fit_loglog_quantile",
    "fit_two_term_quantile",
    "fit_quantile",
    "fit_quantile_band",
]
