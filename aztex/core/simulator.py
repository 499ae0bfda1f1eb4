import inspect
import logging
import math
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from aztex.core.models import DataSource, PriceMove, Sample, Symbol, TickReport, is_valid_price
from aztex.core.series_store import PriceSeriesStore
from aztex.core.strategy import PricingStrategy

logger = logging.getLogger("aztex")


class MarketSimulator:
    """
    Advances every symbol's price by one tick.

    Symbols are independent: a bad computation for one is skipped and logged,
    the rest of the tick carries on. Only a failure to persist the tick escapes
    ``run_tick``.
    """

    def __init__(self, symbols: Sequence[Symbol], store: PriceSeriesStore,
                 strategies: List[PricingStrategy], on_prices_updated: Optional[Callable] = None):
        self.symbols = list(symbols)
        self.store = store
        self.strategies = list(strategies)
        self.on_prices_updated = on_prices_updated
        self.ticks = 0

    async def _propose(self, symbol: Symbol, current_price: float, now: datetime) -> Optional[PriceMove]:
        for strategy in self.strategies:
            move = await strategy.propose(symbol, current_price, now)
            if move is not None:
                return move
        return None

    async def update_symbol(self, symbol: Symbol, now: datetime) -> Optional[Sample]:
        """Compute and append one sample. Returns None when the symbol is skipped."""
        current_price = self.store.latest_valid_price(symbol.ticker)

        try:
            move = await self._propose(symbol, current_price, now)
        except Exception as e:
            logger.error(f"Price computation failed for {symbol.ticker}: {e}", exc_info=True)
            return None
        if move is None:
            logger.error(f"No pricing strategy produced a move for {symbol.ticker}")
            return None

        if not is_valid_price(move.price):
            logger.error(f"Invalid price calculation for {symbol.ticker}: currentPrice={current_price} newPrice={move.price}")
            return None

        change = (move.price - current_price) / current_price * 100
        sample = Sample(
            timestamp=now,
            price=round(move.price, 2),
            volume=move.volume,
            change=round(change, 2),
            data_source=move.data_source,
        )

        # Rounding can still push a tiny price to zero
        if not is_valid_price(sample.price) or not math.isfinite(sample.change):
            logger.error(f"Skipping invalid entry for {symbol.ticker}: price={sample.price}, change={sample.change}")
            return None

        self.store.append(symbol.ticker, sample)
        logger.debug(f"Updated {symbol.ticker}: ${current_price:.2f} -> ${sample.price:.2f} ({sample.change:+.2f}%) Vol: {sample.volume}")
        return sample

    async def run_tick(self, now: Optional[datetime] = None) -> TickReport:
        now = now or datetime.now(timezone.utc)
        report = TickReport(timestamp=now)

        for symbol in self.symbols:
            sample = await self.update_symbol(symbol, now)
            if sample is None:
                report.skipped += 1
                continue
            report.updated += 1
            if sample.data_source == DataSource.STATISTICS:
                report.real += 1
            else:
                report.synthetic += 1

        # PersistenceError propagates to the scheduler
        await self.store.flush()
        self.ticks += 1

        await self._notify(self.store.latest_prices(s.ticker for s in self.symbols))

        logger.info(f"Market tick complete: {report.updated} updated ({report.real} real, {report.synthetic} synthetic), {report.skipped} skipped")
        return report

    async def _notify(self, prices):
        if not self.on_prices_updated:
            return
        try:
            result = self.on_prices_updated(prices)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Net worth recalculation failed: {e}", exc_info=True)
