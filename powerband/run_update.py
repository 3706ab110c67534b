from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from typing import Optional, Sequence

if __package__ is None and __name__ == "__main__":
    import os
    import sys

    sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from powerband.assembler import AssemblerConfig
from powerband.core.quantile_fit import MODELS, DEFAULT_FIT_CONFIG, TWO_TERM_FIT_CONFIG
from powerband.core.types import LogLogFit
from powerband.data_providers import CoinGeckoProvider, PriceDbProvider
from powerband.persist.price_db import DEFAULT_DB_PATH
from powerband.updater import DEFAULT_START_DATE, update_price_db


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """Table location and fit options shared by the command line tools."""
    parser.add_argument("--db", type=str, default=DEFAULT_DB_PATH, help="Path to the price CSV.")
    parser.add_argument("--currencies", type=str, default="eur,usd", help="Comma separated quote currencies.")
    parser.add_argument("--model", type=str, choices=list(MODELS), default="loglog")
    parser.add_argument("--fit-start", type=str, default=None, help="Exclude rows before this date from the fit.")
    parser.add_argument("--iterations", type=int, default=None, help="Optimizer iterations per quantile.")
    parser.add_argument("--refine", action="store_true", help="Snap alpha onto the empirical residual quantile.")
    parser.add_argument("--log-level", type=str, default="INFO")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_config(args: argparse.Namespace) -> AssemblerConfig:
    base_fit = TWO_TERM_FIT_CONFIG if args.model == "two_term" else DEFAULT_FIT_CONFIG
    fit_cfg = replace(
        base_fit,
        iterations=args.iterations if args.iterations is not None else base_fit.iterations,
        refine=bool(args.refine),
    )
    return AssemblerConfig(
        currencies=tuple(c.strip().lower() for c in args.currencies.split(",") if c.strip()),
        model=args.model,
        fit_start=args.fit_start,
        fit=fit_cfg,
    )


def _format_fit(fit) -> str:
    if not fit.is_valid:
        return "undefined (insufficient data)"
    if isinstance(fit, LogLogFit):
        return f"alpha={fit.alpha:.6f}, beta={fit.beta:.6f}"
    return f"a={fit.a:.6g}, b={fit.b:.6f}, c={fit.c:.6g}, d={fit.d:.6f}"


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Update the daily price table and its quantile power-law bands.")
    add_common_arguments(parser)
    parser.add_argument("--coin", type=str, default="bitcoin", help="CoinGecko coin id.")
    parser.add_argument("--start", type=str, default=DEFAULT_START_DATE, help="First date for a full rebuild.")
    parser.add_argument("--full", action="store_true", help="Ignore the stored table and rebuild from --start.")
    parser.add_argument("--offline", action="store_true", help="Do not call the API; recompute stored rows.")
    parser.add_argument("--keep-stored", action="store_true", help="Only fill indicator cells that are empty.")
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    cfg = build_config(args)
    provider = PriceDbProvider(args.db) if args.offline else CoinGeckoProvider(coin=args.coin)
    report = update_price_db(
        args.db,
        provider,
        cfg=cfg,
        start_date=args.start,
        full=args.full,
        keep_stored=args.keep_stored,
    )

    if report.total_rows == 0:
        print("No data available.")
        return 1

    for cur, band in report.bands.items():
        print(f"\n{cur.upper()} power-law bands ({cfg.model})")
        for (label, tau), fit in zip(cfg.quantiles, band.fits):
            print(f"  {label} (tau={tau}): {_format_fit(fit)}")
        if band.is_degenerate:
            print(f"  Warning: lower and upper fits coincide; the {cfg.model} band for {cur.upper()} is not usable.")
    print(f"\nUpdated {report.written}: {report.new_rows} new row(s), {report.total_rows} total")
    if report.provider_failed:
        print("Provider unavailable; indicators recomputed from stored rows only.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
