import pytest
import numpy as np
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from aztex.core.errors import FeedUnavailable, PersistenceError
from aztex.core.models import DataSource, FairValueQuote, PriceMove, Symbol
from aztex.core.series_store import PriceSeriesStore
from aztex.core.simulator import MarketSimulator
from aztex.core.strategy import PricingStrategy
from aztex.core.valuation import ValuationSource
from aztex.strategies.convergence import FairValueConvergence
from aztex.strategies.synthetic import SyntheticTrend

NOW = datetime(2025, 3, 3, 15, 0, tzinfo=timezone.utc)
TST = Symbol(ticker="TST", name="Test", external_id="tester")
SYMBOLS = [TST, Symbol(ticker="ABC", name="Abc", external_id="123"), Symbol(ticker="XYZ", name="Xyz", external_id="xyz")]

class MidRng:
    """Uniform draws pinned to 0.5, so every noise term is zero."""
    def random(self):
        return 0.5

    def integers(self, low, high):
        return low

class FixedStrategy(PricingStrategy):
    name = "fixed"

    def __init__(self, price=None, exc=None):
        super().__init__()
        self.price = price
        self.exc = exc

    async def propose(self, symbol, current_price, now):
        if self.exc:
            raise self.exc
        return PriceMove(price=self.price, volume=1, data_source=DataSource.GENERATED)

def feed_down_valuation():
    client = AsyncMock()
    client.get_authors.side_effect = FeedUnavailable("down")
    return ValuationSource(client)

@pytest.mark.asyncio
async def test_forced_nan_appends_nothing():
    store = PriceSeriesStore()
    sim = MarketSimulator([TST], store, [FixedStrategy(price=float("nan"))])

    report = await sim.run_tick(NOW)
    assert report.skipped == 1
    assert report.updated == 0
    assert store.is_empty("TST")

@pytest.mark.asyncio
@pytest.mark.parametrize("exc", [ZeroDivisionError("x"), OverflowError("x"), ValueError("x"), TypeError("x"), KeyError("x")])
async def test_computation_error_skips_symbol(exc):
    store = PriceSeriesStore()
    sim = MarketSimulator([TST], store, [FixedStrategy(exc=exc)])
    report = await sim.run_tick(NOW)
    assert report.skipped == 1
    assert store.is_empty("TST")

class BrokenForTicker(FixedStrategy):
    async def propose(self, symbol, current_price, now):
        if symbol.ticker == "TST":
            raise TypeError("unsupported operand")
        return await super().propose(symbol, current_price, now)

@pytest.mark.asyncio
async def test_broken_symbol_does_not_block_the_rest():
    repo = AsyncMock()
    store = PriceSeriesStore(repo)
    sim = MarketSimulator(SYMBOLS, store, [BrokenForTicker(price=101.0)])

    report = await sim.run_tick(NOW)
    assert report.skipped == 1
    assert report.updated == 2
    assert store.is_empty("TST")
    assert store.series("ABC")[-1].price == 101.0
    repo.save_all.assert_awaited_once()

@pytest.mark.asyncio
async def test_price_rounding_to_zero_is_skipped():
    store = PriceSeriesStore()
    sim = MarketSimulator([TST], store, [FixedStrategy(price=0.001)])
    report = await sim.run_tick(NOW)
    assert report.skipped == 1
    assert store.is_empty("TST")

@pytest.mark.asyncio
async def test_sample_fields():
    store = PriceSeriesStore()
    sim = MarketSimulator([TST], store, [FixedStrategy(price=101.234)])
    await sim.run_tick(NOW)

    sample = store.latest("TST")
    assert sample.price == 101.23
    assert sample.change == 1.23
    assert sample.volume == 1
    assert sample.timestamp == NOW

@pytest.mark.asyncio
async def test_feed_down_all_generated():
    store = PriceSeriesStore()
    rng = np.random.default_rng(3)
    sim = MarketSimulator(SYMBOLS, store, [FairValueConvergence(feed_down_valuation(), rng=rng), SyntheticTrend(rng=rng)])

    report = await sim.run_tick(NOW)
    assert report.updated == 3
    assert report.synthetic == 3
    assert report.real == 0
    for symbol in SYMBOLS:
        sample = store.latest(symbol.ticker)
        assert sample.data_source == DataSource.GENERATED
        # Market-hours band: ±1% noise plus at most 0.5% trend, then cent rounding
        assert 98.49 <= sample.price <= 101.51

@pytest.mark.asyncio
async def test_one_symbol_failing_does_not_stop_others():
    class PickyStrategy(PricingStrategy):
        async def propose(self, symbol, current_price, now):
            if symbol.ticker == "ABC":
                return PriceMove(price=float("inf"), volume=0, data_source=DataSource.GENERATED)
            return PriceMove(price=50.0, volume=0, data_source=DataSource.GENERATED)

    store = PriceSeriesStore()
    sim = MarketSimulator(SYMBOLS, store, [PickyStrategy()])
    report = await sim.run_tick(NOW)

    assert report.updated == 2
    assert report.skipped == 1
    assert store.is_empty("ABC")
    assert store.latest_valid_price("XYZ") == 50.0

@pytest.mark.asyncio
async def test_persistence_failure_propagates():
    repo = AsyncMock()
    repo.save_all.side_effect = PersistenceError("disk full")
    hook = AsyncMock()
    sim = MarketSimulator([TST], PriceSeriesStore(repo), [FixedStrategy(price=10.0)], on_prices_updated=hook)

    with pytest.raises(PersistenceError):
        await sim.run_tick(NOW)
    hook.assert_not_awaited()
    assert sim.ticks == 0

@pytest.mark.asyncio
async def test_hook_receives_latest_prices():
    hook = AsyncMock()
    store = PriceSeriesStore()
    sim = MarketSimulator(SYMBOLS, store, [FixedStrategy(price=10.0)], on_prices_updated=hook)

    await sim.run_tick(NOW)
    hook.assert_awaited_once_with({"TST": 10.0, "ABC": 10.0, "XYZ": 10.0})
    assert sim.ticks == 1

@pytest.mark.asyncio
async def test_hook_failure_is_contained():
    hook = MagicMock(side_effect=RuntimeError("users.json locked"))
    sim = MarketSimulator([TST], PriceSeriesStore(), [FixedStrategy(price=10.0)], on_prices_updated=hook)

    report = await sim.run_tick(NOW)
    assert report.updated == 1
    hook.assert_called_once()

@pytest.mark.asyncio
async def test_end_to_end_convergence():
    store = PriceSeriesStore()
    rng = MidRng()
    valuation = MagicMock()
    valuation.fair_value = AsyncMock(return_value=None)
    sim = MarketSimulator([TST], store, [FairValueConvergence(valuation, rng=rng), SyntheticTrend(rng=rng)])

    # Feed down: seeded from the default price
    await sim.run_tick(NOW)
    first = store.latest("TST")
    assert first.data_source == DataSource.GENERATED
    assert 99.5 <= first.price <= 100.5

    # Feed back with a constant fair value of 50
    valuation.fair_value.return_value = FairValueQuote(symbol="TST", price=50.0, volume=500, fetched_at=NOW)
    for i in range(1, 61):
        await sim.run_tick(NOW + timedelta(minutes=i))

    series = store.series("TST")
    assert len(series) == 61
    real = series[1:]
    assert all(s.data_source == DataSource.STATISTICS for s in real)
    assert all(s.volume == 500 for s in real)
    prices = [s.price for s in series]
    assert all(b < a for a, b in zip(prices, prices[1:]))

    # Each minute moves at most 2/1440 of the price, so 60 minutes stay well above 50
    assert prices[-1] >= first.price * (1 - 2 / 1440) ** 60 - 0.5
    assert prices[-1] > 50.0
