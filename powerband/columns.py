"""
Column naming of the price table.

Columns are always addressed by name so that readers keep working when new
columns are appended.
"""

from __future__ import annotations

DATE_COLUMN = "date"


class SchemaError(ValueError):
    pass


def close_column(currency: str) -> str:
    return f"close_{currency}"


def ma_column(name: str, currency: str) -> str:
    return f"{name}_{currency}"


def band_column(label: str, currency: str) -> str:
    return f"powerlaw_{label}_{currency}"


def band_position_column(currency: str) -> str:
    return f"band_position_{currency}"


def distance_column(ma_name: str, currency: str) -> str:
    return f"{ma_name}_distance_{currency}"


def strip_currency(column: str, currency: str) -> str:
    """'sma50d_eur' -> 'sma50d'"""
    suffix = f"_{currency}"
    return column[: -len(suffix)] if column.endswith(suffix) else column
