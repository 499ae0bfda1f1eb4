import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import numpy as np

from aztex.core.models import DataSource, FairValueQuote, Sample, Symbol
from aztex.core.series_store import PriceSeriesStore

logger = logging.getLogger("aztex")

BACKFILL_DAYS = 30
DAILY_VOLATILITY = 0.05
BASE_PRICE = 100.0


class BackfillService:
    """Seeds 30 days of daily history for a symbol that has none, once."""

    def __init__(self, store: PriceSeriesStore, valuation=None, rng: Optional[np.random.Generator] = None,
                 days: int = BACKFILL_DAYS):
        self.store = store
        self.valuation = valuation
        self.rng = rng if rng is not None else np.random.default_rng()
        self.days = days

    async def ensure_history(self, symbol: Symbol, now: Optional[datetime] = None) -> bool:
        """Returns True if history was generated."""
        if not self.store.is_empty(symbol.ticker):
            return False

        now = now or datetime.now(timezone.utc)
        logger.info(f"[BACKFILL] No history for {symbol.ticker}, seeding {self.days} days...")

        # 1. Prefer feed-derived history
        quote = None
        if self.valuation is not None:
            quote = await self.valuation.fair_value(symbol)

        # 2. Otherwise a bounded random walk from the base price
        if quote is not None:
            samples = self._from_quote(quote, now)
        else:
            samples = self._random_walk(now)

        # A tick may have appended while the quote was in flight; keep its samples after the seed
        appended = self.store.series(symbol.ticker)
        if appended:
            samples = [s for s in samples if s.timestamp < appended[0].timestamp]
        self.store.replace(symbol.ticker, samples + appended)
        # Persist right away so the seed is never generated twice
        await self.store.flush()

        logger.info(f"[BACKFILL] Seeded {len(samples)} samples for {symbol.ticker} ahead of {len(appended)} ticks")
        return True

    def _days(self, now: datetime) -> List[datetime]:
        return [now - timedelta(days=i) for i in range(self.days - 1, -1, -1)]

    def _from_quote(self, quote: FairValueQuote, now: datetime) -> List[Sample]:
        samples = []
        prev = None
        for ts in self._days(now):
            random_factor = (self.rng.random() - 0.5) * DAILY_VOLATILITY
            price = round(max(1.0, quote.price * (1 + random_factor)), 2)
            samples.append(Sample(
                timestamp=ts,
                price=price,
                volume=quote.volume + int(self.rng.integers(0, 1000)),
                change=self._change(prev, price),
                data_source=DataSource.STATISTICS,
            ))
            prev = price
        return samples

    def _random_walk(self, now: datetime) -> List[Sample]:
        samples = []
        prev = None
        for ts in self._days(now):
            if prev is None:
                price = BASE_PRICE
            else:
                price = round(max(1.0, prev * (1 + (self.rng.random() - 0.5) * DAILY_VOLATILITY)), 2)
            samples.append(Sample(
                timestamp=ts,
                price=price,
                change=self._change(prev, price),
                data_source=DataSource.GENERATED,
            ))
            prev = price
        return samples

    @staticmethod
    def _change(prev: Optional[float], price: float) -> float:
        if not prev:
            return 0.0
        return round((price - prev) / prev * 100, 2)
