from __future__ import annotations

import argparse
import pathlib
from typing import Optional, Sequence

import pandas as pd

if __package__ is None and __name__ == "__main__":
    import os
    import sys

    sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from powerband.assembler import assemble_series
from powerband.columns import close_column
from powerband.core.predictor import band_crossings, project_band
from powerband.persist.price_db import read_price_db
from powerband.run_update import add_common_arguments, build_config, configure_logging


def projection_frame(points) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "date": [p.date for p in points],
            "lower": [p.lower for p in points],
            "median": [p.median for p in points],
            "upper": [p.upper for p in points],
        }
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Project quantile power-law bands past the last stored close.")
    add_common_arguments(parser)
    parser.add_argument("--currency", type=str, default="eur", help="Currency to project.")
    parser.add_argument("--horizon", type=int, default=365, help="Days to project.")
    parser.add_argument("--every", type=int, default=30, help="Print every n-th projected day.")
    parser.add_argument("--csv-out", type=str, default=None, help="Optional CSV output of the full projection.")
    parser.add_argument("--plot", type=str, default=None, help="Optional output plot path.")
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    cfg = build_config(args)
    currency = args.currency.lower()
    if currency not in cfg.currencies:
        parser.error(f"--currency {currency!r} is not in --currencies {','.join(cfg.currencies)}")

    series = assemble_series(read_price_db(args.db, cfg.currencies), cfg)
    if len(series) == 0:
        print(f"No rows in {args.db}.")
        return 1
    band = series.bands[currency]
    if not band.is_valid:
        print(f"Not enough data in {args.db} to fit a band for {currency.upper()}.")
        return 1

    if band.is_degenerate:
        print(f"Warning: lower and upper fits coincide; the {cfg.model} band for {currency.upper()} is not usable.")

    last = series.rows[-1]
    crossed = band_crossings(band, [row.date for row in series.rows])
    if crossed:
        print(f"Warning: upper band below lower band on {len(crossed)} day(s), first {crossed[0]}")

    proj = projection_frame(project_band(band, last.date, args.horizon))
    print(f"Last close {last.date}: {last.closes[currency]:.2f} {currency.upper()}")
    step = max(int(args.every), 1)
    print(proj.iloc[step - 1 :: step].to_string(index=False, float_format=lambda x: f"{x:.2f}"))

    if args.csv_out:
        path = pathlib.Path(args.csv_out)
        path.parent.mkdir(parents=True, exist_ok=True)
        proj.to_csv(path, index=False, float_format="%.2f", na_rep="")
        print(f"Saved projection to {path}")

    if args.plot:
        try:
            import matplotlib

            matplotlib.use("Agg")
            import matplotlib.pyplot as plt

            hist = series.to_frame()
            hist_dates = pd.to_datetime(hist["date"])
            proj_dates = pd.to_datetime(proj["date"])
            plt.figure(figsize=(10, 5))
            plt.plot(hist_dates, hist[close_column(currency)], label="close", color="black", linewidth=0.8)
            for col, style in (("lower", "--"), ("median", "-"), ("upper", "--")):
                plt.plot(proj_dates, proj[col], style, label=f"{col} (projected)")
            plt.yscale("log")
            plt.legend()
            plt.title(f"Quantile power-law band ({currency.upper()})")
            plt.tight_layout()
            plt.savefig(args.plot)
            plt.close()
            print(f"Saved plot to {args.plot}")
        except ImportError:
            print("matplotlib not installed; skipping plot.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
