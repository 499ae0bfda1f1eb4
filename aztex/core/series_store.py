import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from aztex.core.errors import InvalidComputedPrice
from aztex.core.models import Sample, is_valid_price
from aztex.core.persistence import HistoryRepository

logger = logging.getLogger("aztex")

MAX_HISTORY_LENGTH = 1000  # about 16 hours of minute data
DEFAULT_PRICE = 100.0


class PriceSeriesStore:
    """
    In-memory per-symbol price series, persisted through a HistoryRepository.

    Appends never mutate a list a reader may already hold: trimming swaps in a
    new list, so readers see either the old or the new series, never half of one.
    """

    def __init__(self, repository: Optional[HistoryRepository] = None,
                 max_length: int = MAX_HISTORY_LENGTH, default_price: float = DEFAULT_PRICE):
        self.repository = repository
        self.max_length = max_length
        self.default_price = default_price
        self._series: Dict[str, List[Sample]] = {}

    async def load(self):
        if self.repository is None:
            return
        self._series = await self.repository.load_all()
        logger.info(f"Loaded price history for {len(self._series)} symbols")

    async def flush(self):
        """Persist every series. PersistenceError propagates to the caller."""
        if self.repository is None:
            return
        await self.repository.save_all(self._series)

    def append(self, symbol: str, sample: Sample):
        if not is_valid_price(sample.price):
            raise InvalidComputedPrice(f"Refusing to store price {sample.price!r} for {symbol}")

        series = self._series.get(symbol, []) + [sample]
        if len(series) > self.max_length:
            series = series[-self.max_length:]
        self._series[symbol] = series

    def replace(self, symbol: str, samples: Iterable[Sample]):
        """Bulk-seed a series (backfill and loading)."""
        series = list(samples)
        if len(series) > self.max_length:
            series = series[-self.max_length:]
        self._series[symbol] = series

    def latest_valid_price(self, symbol: str) -> float:
        # Walk backward past corrupt entries so they never reach valuations
        for sample in reversed(self._series.get(symbol, [])):
            if is_valid_price(sample.price):
                return float(sample.price)
        return self.default_price

    def latest_prices(self, symbols: Iterable[str]) -> Dict[str, float]:
        return {symbol: self.latest_valid_price(symbol) for symbol in symbols}

    def latest(self, symbol: str) -> Optional[Sample]:
        series = self._series.get(symbol)
        return series[-1] if series else None

    def window(self, symbol: str, since: datetime) -> List[Sample]:
        return [s for s in self._series.get(symbol, []) if s.timestamp >= since]

    def series(self, symbol: str) -> List[Sample]:
        return list(self._series.get(symbol, []))

    def is_empty(self, symbol: str) -> bool:
        return not self._series.get(symbol)

    def symbols(self) -> List[str]:
        return list(self._series.keys())
