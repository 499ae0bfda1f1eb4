"""
Chart-only pseudo-OHLC for single-price points.

Minute samples carry one price; candlestick charts want four.  This derives a
reproducible open/high/low from the price, the previous price and the point's
index.  It is presentation smoothing, never stored and never fed back into the
price series.
"""
from typing import Any, Dict, List, Sequence

VISUAL_VOLATILITY = 0.02

OHLC_FIELDS = ("open", "high", "low", "close")


def _field(point: Any, name: str):
    if isinstance(point, dict):
        return point.get(name)
    return getattr(point, name, None)


def synthesize_ohlc(points: Sequence[Any]) -> List[Dict[str, Any]]:
    """Return ``{timestamp, open, high, low, close}`` bars for charting."""
    bars = []
    for i, point in enumerate(points):
        timestamp = _field(point, "timestamp")

        if all(_field(point, f) is not None for f in OHLC_FIELDS):
            bars.append({"timestamp": timestamp, **{f: _field(point, f) for f in OHLC_FIELDS}})
            continue

        price = float(_field(point, "price"))
        prev_price = float(_field(points[i - 1], "price")) if i > 0 else price

        seed = (price * 1000 + i) % 1000
        volatility = abs(price * VISUAL_VOLATILITY)

        high = price + (seed / 1000) * volatility
        low = price - ((999 - seed) / 1000) * volatility
        open_ = prev_price + ((seed % 100) / 100 - 0.5) * volatility * 0.5
        close = price

        open_ = max(open_, low)
        bars.append({
            "timestamp": timestamp,
            "open": open_,
            "high": max(high, open_, close),
            "low": min(low, open_, close),
            "close": close,
        })
    return bars
