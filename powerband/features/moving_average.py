from __future__ import annotations

from typing import Iterator, Optional, Sequence, Tuple


def _scan(values: Sequence[float], window: int) -> Iterator[Optional[float]]:
    total = 0.0
    for i, value in enumerate(values):
        total += value
        if i >= window:
            total -= values[i - window]
        yield total / window if i >= window - 1 else None


def rolling_average(values: Sequence[float], window: int) -> Tuple[Optional[float], ...]:
    """
    Simple moving average with a running sum.

    Entries before the window is full are ``None`` (never zero), so for
    window w the first value sits at index w - 1.
    """
    if window <= 0:
        raise ValueError(f"window must be positive, got {window}")
    return tuple(_scan(list(values), int(window)))


def distance_pct(price: Optional[float], reference: Optional[float]) -> Optional[float]:
    """Percent distance of ``price`` from ``reference`` (e.g. the 200-week average)."""
    if price is None or reference is None or reference == 0:
        return None
    return (price - reference) / reference * 100.0


__all__ = ["rolling_average", "distance_pct"]
