from datetime import datetime
from typing import Optional

import numpy as np

from aztex.core.models import DataSource, PriceMove, Symbol
from aztex.core.strategy import PricingStrategy, floor_price
from aztex.core.valuation import ValuationSource

MAX_DAILY_MOVE = 2.0  # 200% of the current price per day
MINUTES_PER_DAY = 1440
NEAR_NOISE = 0.005
FAR_NOISE = 0.01


def per_minute_cap(current_price: float, max_daily_move: float = MAX_DAILY_MOVE,
                   minutes_per_day: int = MINUTES_PER_DAY) -> float:
    return current_price * max_daily_move / minutes_per_day


def convergence_step(current_price: float, target: float, u: float,
                     max_daily_move: float = MAX_DAILY_MOVE, minutes_per_day: int = MINUTES_PER_DAY) -> float:
    """
    One minute of drift toward ``target``.

    ``u`` is a uniform draw in [0, 1). Within one minute's reach the price lands on
    the target plus ±0.25% noise; further away it steps by at most the per-minute
    cap plus ±0.5% noise.
    """
    diff = target - current_price
    cap = per_minute_cap(current_price, max_daily_move, minutes_per_day)

    if abs(diff) < cap:
        adjustment = diff + (u - 0.5) * (current_price * NEAR_NOISE)
    else:
        direction = 1 if diff > 0 else -1
        adjustment = direction * min(abs(diff), cap) + (u - 0.5) * (current_price * FAR_NOISE)

    return floor_price(current_price + adjustment)


class FairValueConvergence(PricingStrategy):
    """Real-data tier: move toward the download-derived fair value."""
    name = "fair_value"

    def __init__(self, valuation: ValuationSource, rng: Optional[np.random.Generator] = None,
                 max_daily_move: float = MAX_DAILY_MOVE):
        super().__init__(rng)
        self.valuation = valuation
        self.max_daily_move = max_daily_move

    async def propose(self, symbol: Symbol, current_price: float, now: datetime) -> Optional[PriceMove]:
        quote = await self.valuation.fair_value(symbol)
        if quote is None:
            return None

        new_price = convergence_step(current_price, quote.price, self.uniform(), self.max_daily_move)
        return PriceMove(price=new_price, volume=quote.volume, data_source=DataSource.STATISTICS)
