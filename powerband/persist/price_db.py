from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from powerband.columns import DATE_COLUMN, SchemaError, close_column

DEFAULT_DB_PATH = "data/btc_daily_prices.csv"


def _assert_schema(df: pd.DataFrame, currencies: Iterable[str]) -> None:
    required = [DATE_COLUMN] + [close_column(cur) for cur in currencies]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise SchemaError(f"Missing required columns: {missing}")


def read_price_db(path: str | Path, currencies: Iterable[str] = ("eur", "usd")) -> pd.DataFrame:
    """
    Load the daily price table.

    Columns are looked up by name; extra columns are kept. Empty cells are read
    as NaN ("not yet computed"). A missing file yields an empty frame with the
    required columns.
    """
    currencies = list(currencies)
    path = Path(path)
    if not path.exists() or path.stat().st_size == 0:
        return pd.DataFrame(columns=[DATE_COLUMN] + [close_column(cur) for cur in currencies])

    df = pd.read_csv(path, dtype={DATE_COLUMN: str})
    df.columns = [str(c).strip() for c in df.columns]
    _assert_schema(df, currencies)
    value_cols = [c for c in df.columns if c != DATE_COLUMN]
    df[value_cols] = df[value_cols].apply(pd.to_numeric, errors="coerce")
    return df


def write_price_db(
    df: pd.DataFrame,
    path: str | Path,
    columns: Optional[Iterable[str]] = None,
    float_format: str = "%.2f",
) -> Path:
    """Write the table with a header row; NaN cells are written empty."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    out = df if columns is None else df.reindex(columns=list(columns))
    out.to_csv(path, index=False, float_format=float_format, na_rep="")
    return path


def last_date(df: pd.DataFrame) -> Optional[str]:
    if df is None or df.empty:
        return None
    dates = df[DATE_COLUMN].dropna()
    return str(dates.max()) if not dates.empty else None


__all__ = ["DEFAULT_DB_PATH", "SchemaError", "read_price_db", "write_price_db", "last_date"]
