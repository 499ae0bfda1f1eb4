"""
Read-side query surface for stock and portfolio history.

Backs the history endpoints: period filtering, lazy backfill of empty series,
candle aggregation and a short-lived result cache.  Corrupt stored samples are
filtered out here so aggregation never sees them.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from aztex.core.backfill import BackfillService
from aztex.core.candles import aggregate, aggregate_portfolio
from aztex.core.errors import UnknownSymbol
from aztex.core.models import DataSource, Granularity, Holding, Period, Sample, Symbol, is_valid_price
from aztex.core.portfolio import build_portfolio_history, holdings_of
from aztex.core.series_store import PriceSeriesStore
from aztex.core.visual_ohlc import synthesize_ohlc

logger = logging.getLogger("aztex")

CACHE_SECONDS = 10 * 60
CACHE_PRUNE_THRESHOLD = 100


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def data_source_of(samples: Iterable[Sample]) -> DataSource:
    """``statistics`` as soon as any sample came from real data."""
    if any(s.data_source == DataSource.STATISTICS for s in samples):
        return DataSource.STATISTICS
    return DataSource.GENERATED


def _dump(items) -> List[dict]:
    return [item.model_dump(mode="json", by_alias=True) for item in items]


def _copy(result: dict, **overrides) -> dict:
    return {**result, "data": [dict(point) for point in result["data"]], **overrides}


class HistoryService:
    def __init__(self, symbols: Sequence[Symbol], store: PriceSeriesStore, backfill: Optional[BackfillService] = None,
                 valuation=None, cache_seconds: float = CACHE_SECONDS, clock: Callable[[], datetime] = utc_now):
        self.symbols = {s.ticker: s for s in symbols}
        self.store = store
        self.backfill = backfill
        self.valuation = valuation
        self.cache_ttl = timedelta(seconds=cache_seconds)
        self.clock = clock
        self._cache: Dict[Tuple[str, str, str, bool], Tuple[datetime, dict]] = {}

    def symbol(self, ticker: str) -> Symbol:
        try:
            return self.symbols[ticker]
        except KeyError:
            raise UnknownSymbol(ticker) from None

    def get_series(self, ticker: str, period: Union[Period, str], now: Optional[datetime] = None) -> List[Sample]:
        """Samples of ``ticker`` inside the period's lookback window, oldest first."""
        period = Period(period)
        now = now or self.clock()
        return self.store.window(ticker, now - period.lookback)

    async def stock_history(self, ticker: str, period: Union[Period, str] = Period.ONE_DAY,
                            granularity: Union[Granularity, str] = Granularity.MINUTE,
                            now: Optional[datetime] = None, ohlc: bool = False) -> dict:
        """
        Price history of one stock, aggregated to ``granularity``.

        With ``ohlc`` set, minute points also carry chart-only open/high/low/close.
        Returned results are copies; mutating them never touches the cache.
        """
        symbol = self.symbol(ticker)
        period = Period(period)
        granularity = Granularity(granularity)
        now = now or self.clock()

        key = (ticker, period.value, granularity.value, ohlc)
        cached = self._cache.get(key)
        if cached and now - cached[0] < self.cache_ttl:
            return _copy(cached[1], cached=True)

        if self.backfill is not None and self.store.is_empty(ticker):
            await self.backfill.ensure_history(symbol, now)

        samples = [s for s in self.get_series(ticker, period, now) if is_valid_price(s.price)]
        data = aggregate(samples, granularity)
        points = _dump(data)
        if ohlc and granularity == Granularity.MINUTE:
            points = [{**point, **bar} for point, bar in zip(points, synthesize_ohlc(points))]

        result = {
            "ticker": ticker,
            "period": period.value,
            "granularity": granularity.value,
            "data": points,
            "totalPoints": len(points),
            "cached": False,
            "dataSource": data_source_of(self.store.series(ticker)).value,
        }

        self._cache[key] = (now, result)
        self._prune(now)
        return _copy(result)

    def _prune(self, now: datetime):
        if len(self._cache) <= CACHE_PRUNE_THRESHOLD:
            return
        expired = [k for k, (stored, _) in self._cache.items() if now - stored >= self.cache_ttl]
        for key in expired:
            del self._cache[key]
        logger.debug(f"Pruned {len(expired)} expired history cache entries")

    def portfolio_history(self, holdings: Sequence[Holding], cash: float,
                          period: Union[Period, str] = Period.ONE_DAY,
                          granularity: Union[Granularity, str] = Granularity.MINUTE,
                          now: Optional[datetime] = None) -> dict:
        period = Period(period)
        granularity = Granularity(granularity)
        now = now or self.clock()

        result = {
            "period": period.value,
            "granularity": granularity.value,
            "data": [],
            "totalPoints": 0,
            "dataSource": DataSource.GENERATED.value,
            "holdings": [h.model_dump() for h in holdings],
        }
        if not holdings:
            return result

        histories = {h.ticker: self.store.series(h.ticker) for h in holdings}
        points = build_portfolio_history(holdings, cash, histories, now - period.lookback,
                                         default_price=self.store.default_price)
        data = aggregate_portfolio(points, granularity)

        all_samples = [s for series in histories.values() for s in series]
        result.update({
            "data": _dump(data),
            "totalPoints": len(data),
            "dataSource": data_source_of(all_samples).value,
        })
        return result

    def user_portfolio_history(self, user: dict, period: Union[Period, str] = Period.ONE_DAY,
                               granularity: Union[Granularity, str] = Granularity.MINUTE,
                               now: Optional[datetime] = None) -> dict:
        """Portfolio history for a stored user record; legacy ``shares`` maps are migrated on the fly."""
        return self.portfolio_history(holdings_of(user), float(user.get("cash") or 0),
                                      period=period, granularity=granularity, now=now)

    def status(self, now: Optional[datetime] = None) -> dict:
        """Which stocks run on real statistics and which on generated data."""
        now = now or self.clock()
        counts = {"total": len(self.symbols), "withRealData": 0, "withGeneratedData": 0, "withNoData": 0}
        stocks = []

        for symbol in self.symbols.values():
            series = self.store.series(symbol.ticker)
            if series:
                source = data_source_of(series).value
                key = "withRealData" if source == DataSource.STATISTICS.value else "withGeneratedData"
                counts[key] += 1
                last_update = series[-1].timestamp.isoformat()
            else:
                source = "none"
                counts["withNoData"] += 1
                last_update = None
            stocks.append({
                "ticker": symbol.ticker,
                "name": symbol.name,
                "curseforgeId": symbol.external_id,
                "dataSource": source,
                "dataPoints": len(series),
                "lastUpdate": last_update,
            })

        feed = self.valuation.status() if self.valuation is not None else {"status": "unknown", "freshness": "unknown"}
        return {
            "timestamp": now.isoformat(),
            "systemStatus": {
                "isGeneratingData": counts["withGeneratedData"] > 0 or counts["withNoData"] > 0,
                "isUsingRealStats": counts["withRealData"] > 0,
                "dataFreshness": feed.get("freshness", "unknown"),
            },
            "externalApi": feed,
            "stocks": counts,
            "cache": {"historyCacheSize": len(self._cache)},
            "stockStatuses": stocks,
        }
