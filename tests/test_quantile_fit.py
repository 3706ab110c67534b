import math

import numpy as np
import pandas as pd
import pytest

from powerband.core.day_index import day_indices
from powerband.core.predictor import band_crossings, predict, predict_many
from powerband.core.quantile_fit import (
    FitConfig,
    fit_loglog_quantile,
    fit_quantile,
    fit_quantile_band,
    ols_line,
    pinball_loss,
    residual_quantile,
)
from powerband.core.types import LogLogFit, Samples

FAST = FitConfig(iterations=1500)


def _dates(start: str, periods: int) -> list:
    return [d.strftime("%Y-%m-%d") for d in pd.date_range(start, periods=periods, freq="D")]


def _noisy_trend(periods: int = 800, seed: int = 7, sigma: float = 0.25):
    dates = _dates("2015-01-01", periods)
    days = day_indices(dates)
    rng = np.random.default_rng(seed)
    prices = np.exp(-25.0 + 3.5 * np.log(days) + sigma * rng.standard_normal(periods))
    return dates, prices


# ---------------------------------------------------------------------------
# Loss and helpers
# ---------------------------------------------------------------------------


def test_pinball_loss_is_asymmetric():
    r = np.array([1.0, -1.0])
    assert pinball_loss(r, 0.9) == pytest.approx(0.5)
    assert pinball_loss(np.array([2.0]), 0.9) == pytest.approx(1.8)
    assert pinball_loss(np.array([-2.0]), 0.9) == pytest.approx(0.2)
    assert math.isnan(pinball_loss(np.array([]), 0.5))


def test_residual_quantile_index_rule():
    r = np.array([3.0, 1.0, 2.0, 5.0, 4.0])
    assert residual_quantile(r, 0.5) == 3.0
    assert residual_quantile(r, 0.01) == 1.0
    assert residual_quantile(r, 0.99) == 5.0


def test_ols_line_closed_form():
    intercept, slope = ols_line(np.array([1.0, 2.0, 3.0]), np.array([3.0, 5.0, 7.0]))
    assert intercept == pytest.approx(1.0)
    assert slope == pytest.approx(2.0)

    intercept, slope = ols_line(np.array([2.0, 2.0, 2.0]), np.array([1.0, 2.0, 6.0]))
    assert slope == 0.0
    assert intercept == pytest.approx(3.0)


@pytest.mark.parametrize("tau", [0.0, 1.0, -0.1, 1.5])
def test_invalid_tau_raises(tau):
    dates, prices = _noisy_trend(periods=10)
    with pytest.raises(ValueError):
        fit_loglog_quantile(dates, prices, tau)


def test_unknown_model_raises():
    dates, prices = _noisy_trend(periods=10)
    with pytest.raises(ValueError):
        fit_quantile(dates, prices, 0.5, model="cubic")


# ---------------------------------------------------------------------------
# Two-parameter log-log fit
# ---------------------------------------------------------------------------


def test_recovers_noise_free_power_law():
    epoch = "2000-01-01"
    alpha0, beta0 = -2.0, 1.7
    dates = _dates("2000-01-02", 3000)
    prices = np.exp(alpha0 + beta0 * np.log(day_indices(dates, epoch)))

    fit = fit_loglog_quantile(dates, prices, 0.5, epoch=epoch)

    assert fit.is_valid
    assert fit.beta == pytest.approx(beta0, abs=1e-2)
    assert fit.alpha == pytest.approx(alpha0, abs=1e-2)
    assert predict(dates[-1], fit) == pytest.approx(prices[-1], rel=2e-2)


def test_fit_is_deterministic():
    dates, prices = _noisy_trend()
    first = fit_loglog_quantile(dates, prices, 0.9, cfg=FAST)
    second = fit_loglog_quantile(list(dates), np.array(prices), 0.9, cfg=FAST)
    assert first == second


def test_fewer_than_four_samples_returns_nan_fit():
    dates, prices = _noisy_trend(periods=3)
    fit = fit_loglog_quantile(dates, prices, 0.5)
    assert isinstance(fit, LogLogFit)
    assert math.isnan(fit.alpha) and math.isnan(fit.beta)
    assert not fit.is_valid


def test_malformed_samples_are_excluded():
    dates, prices = _noisy_trend(periods=60)
    clean = fit_loglog_quantile(dates, prices, 0.5, cfg=FAST)

    dirty_dates = dates[:30] + ["garbage", "2016-02-30"] + dates[30:] + ["2020-01-01"]
    dirty_prices = list(prices[:30]) + [100.0, 200.0] + list(prices[30:]) + [float("nan")]
    dirty = fit_loglog_quantile(dirty_dates, dirty_prices, 0.5, cfg=FAST)

    assert dirty == clean


def test_mixed_date_formats_are_usable_samples():
    dates = ["2020-01-01", "2020-01-02T12:00:00Z", "2020/01/03", "2020-01-04 06:00:00"]
    samples = Samples.from_observations(dates, [1.0, 2.0, 3.0, 4.0])
    assert samples.days.tolist() == [18263.0, 18264.0, 18265.0, 18266.0]


def test_malformed_samples_can_leave_too_few():
    fit = fit_loglog_quantile(
        ["2020-01-01", "2020-01-02", "bad", "2020-01-04", "2020-01-05"],
        [10.0, 11.0, 12.0, "n/a", float("inf")],
        0.5,
    )
    assert not fit.is_valid


def test_init_override_and_zero_iterations():
    dates, prices = _noisy_trend(periods=50)
    seeded = fit_loglog_quantile(dates, prices, 0.5, cfg=FitConfig(iterations=0), init=(1.0, 2.0))
    assert (seeded.alpha, seeded.beta) == (1.0, 2.0)

    samples = Samples.from_observations(dates, prices)
    intercept, slope = ols_line(samples.log_days(), samples.log_prices())
    unseeded = fit_loglog_quantile(dates, prices, 0.5, cfg=FitConfig(iterations=0))
    assert unseeded.alpha == pytest.approx(intercept)
    assert unseeded.beta == pytest.approx(slope)


def test_refinement_snaps_to_empirical_quantile():
    tau = 0.1
    dates, prices = _noisy_trend(periods=500)
    fit = fit_loglog_quantile(dates, prices, tau, cfg=FitConfig(iterations=300, refine=True))

    samples = Samples.from_observations(dates, prices)
    residuals = samples.log_prices() - (fit.alpha + fit.beta * samples.log_days())
    assert np.mean(residuals <= 1e-9) >= tau
    assert np.mean(residuals < -1e-9) < tau


def test_quantile_fit_reduces_pinball_loss_from_ols_start():
    tau = 0.95
    dates, prices = _noisy_trend()
    samples = Samples.from_observations(dates, prices)
    x, y = samples.log_days(), samples.log_prices()

    start = fit_loglog_quantile(dates, prices, tau, cfg=FitConfig(iterations=0))
    fitted = fit_loglog_quantile(dates, prices, tau, cfg=FAST)

    loss_start = pinball_loss(y - (start.alpha + start.beta * x), tau)
    loss_fit = pinball_loss(y - (fitted.alpha + fitted.beta * x), tau)
    assert loss_fit < loss_start


# ---------------------------------------------------------------------------
# Quantile band end to end
# ---------------------------------------------------------------------------


def test_ten_year_band_is_ordered_at_last_date():
    periods = 3650
    dates = _dates("2014-01-01", periods)
    days = day_indices(dates)
    rng = np.random.default_rng(42)
    cycle = 0.4 * np.sin(np.linspace(0, 5 * 2 * np.pi, periods))
    prices = np.exp(-20.0 + 3.0 * np.log(days) + cycle + 0.15 * rng.standard_normal(periods))

    band = fit_quantile_band(dates, prices)

    assert band.is_valid
    lower = predict(dates[-1], band.lower)
    median = predict(dates[-1], band.median)
    upper = predict(dates[-1], band.upper)
    assert lower <= median <= upper
    assert band_crossings(band, dates) == []

    below = np.mean(prices < np.array(predict_many(dates, band.lower)))
    above = np.mean(prices > np.array(predict_many(dates, band.upper)))
    assert below < 0.05
    assert above < 0.05


def test_band_with_three_samples_is_undefined():
    dates, prices = _noisy_trend(periods=3)
    band = fit_quantile_band(dates, prices)
    assert not band.is_valid
    for date in dates + ["2030-01-01"]:
        assert predict(date, band.lower) is None
        assert predict(date, band.median) is None
        assert predict(date, band.upper) is None
