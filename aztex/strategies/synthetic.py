import math
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

import numpy as np

from aztex.core.models import DataSource, PriceMove, Symbol
from aztex.core.strategy import PricingStrategy, floor_price

MARKET_VOLATILITY = 0.02
AFTER_HOURS_VOLATILITY = 0.005
DAY_SECONDS = 24 * 60 * 60
LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def external_id_number(external_id: Optional[str]) -> int:
    """Leading integer of the id, as a positive number; ids without one count as 1."""
    match = LEADING_INT.match(external_id or "")
    if not match:
        return 1
    return abs(int(match.group(1))) or 1


def is_market_hours(now: datetime, open_hour: int = 9, close_hour: int = 16, utc_offset_hours: int = -5) -> bool:
    local = now.astimezone(timezone(timedelta(hours=utc_offset_hours)))
    return open_hour <= local.hour <= close_hour


def trend_bias(current_price: float, now: datetime, id_number: int, u_downloads: float, max_bias: float) -> float:
    base_trend = math.sin(now.timestamp() / DAY_SECONDS) * 0.1  # daily cycle
    simulated_downloads = id_number * 1000 + math.floor(u_downloads * 5000)
    download_trend = simulated_downloads / 1000 * 100
    trend_influence = (download_trend / current_price) * 0.001
    bias = base_trend * 0.005 + trend_influence
    return min(max(bias, -max_bias), max_bias)


class SyntheticTrend(PricingStrategy):
    """Fallback tier: bounded random walk with a small trend bias."""
    name = "synthetic"

    def __init__(self, rng: Optional[np.random.Generator] = None, open_hour: int = 9, close_hour: int = 16,
                 utc_offset_hours: int = -5, max_trend_bias: float = 0.005):
        super().__init__(rng)
        self.open_hour = open_hour
        self.close_hour = close_hour
        self.utc_offset_hours = utc_offset_hours
        self.max_trend_bias = max_trend_bias

    async def propose(self, symbol: Symbol, current_price: float, now: datetime) -> Optional[PriceMove]:
        market_open = is_market_hours(now, self.open_hour, self.close_hour, self.utc_offset_hours)
        volatility = MARKET_VOLATILITY if market_open else AFTER_HOURS_VOLATILITY

        noise = (self.uniform() - 0.5) * volatility
        bias = trend_bias(current_price, now, external_id_number(symbol.external_id),
                          self.uniform(), self.max_trend_bias)
        new_price = floor_price(current_price * (1 + noise + bias))

        volume = int(self.rng.integers(1000, 11000 if market_open else 3000))
        return PriceMove(price=new_price, volume=volume, data_source=DataSource.GENERATED)
