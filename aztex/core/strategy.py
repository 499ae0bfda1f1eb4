import math
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import numpy as np

from aztex.core.models import PriceMove, Symbol

MIN_PRICE = 0.01


def floor_price(price: float) -> float:
    """Clamp to the minimum tradable price. NaN/inf pass through untouched so the caller can reject them."""
    if not math.isfinite(price):
        return price
    return max(MIN_PRICE, price)


class PricingStrategy(ABC):
    """
    One tier of the per-tick pricing chain.

    The simulator asks each strategy in order and keeps the first move offered;
    returning None hands the symbol to the next tier.
    """
    name = "base"

    def __init__(self, rng: Optional[np.random.Generator] = None):
        self.rng = rng if rng is not None else np.random.default_rng()

    def uniform(self) -> float:
        return float(self.rng.random())

    @abstractmethod
    async def propose(self, symbol: Symbol, current_price: float, now: datetime) -> Optional[PriceMove]:
        pass
