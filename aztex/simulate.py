import argparse
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import numpy as np

from aztex.config import settings
from aztex.connectors.createranked_rest import CreateRankedREST
from aztex.core.authors import load_symbols
from aztex.core.persistence import build_repository
from aztex.core.series_store import PriceSeriesStore
from aztex.core.simulator import MarketSimulator
from aztex.core.valuation import ValuationSource
from aztex.strategies.convergence import FairValueConvergence
from aztex.strategies.synthetic import SyntheticTrend

logger = logging.getLogger("aztex")


class SimulationRunner:
    """Runs N market ticks against a data directory on a simulated one-minute clock."""

    def __init__(self, data_dir: str, ticks: int = 60, offline: bool = True, seed: Optional[int] = None,
                 backend: str = "json", save: bool = False, start: Optional[datetime] = None, valuation=None):
        self.data_dir = data_dir
        self.ticks = ticks
        self.offline = offline
        self.backend = backend
        self.save = save
        self.start = start or datetime.now(timezone.utc).replace(second=0, microsecond=0)
        self.rng = np.random.default_rng(seed)
        self.valuation = valuation
        self.client = None

    def _strategies(self):
        strategies = []
        if self.valuation is None and not self.offline:
            self.client = CreateRankedREST()
            self.valuation = ValuationSource(self.client, ttl=settings.FEED_CACHE_TTL_SECONDS,
                                             retry_after=settings.FEED_RETRY_SECONDS)
        if self.valuation is not None:
            strategies.append(FairValueConvergence(self.valuation, rng=self.rng))
        strategies.append(SyntheticTrend(rng=self.rng,
                                         open_hour=settings.MARKET_OPEN_HOUR,
                                         close_hour=settings.MARKET_CLOSE_HOUR,
                                         utc_offset_hours=settings.MARKET_UTC_OFFSET_HOURS,
                                         max_trend_bias=settings.MAX_TREND_BIAS))
        return strategies

    async def run(self) -> dict:
        print(f"Starting simulation on {self.data_dir}...")

        symbols = load_symbols(str(Path(self.data_dir) / settings.AUTHORS_FILE))
        if not symbols:
            print(f"Error: no symbols found in {self.data_dir}.")
            return {"ticks": 0, "updated": 0, "real": 0, "synthetic": 0, "skipped": 0, "prices": {}}

        repository = build_repository(self.backend, self.data_dir, settings.HISTORY_FILE, settings.SQLITE_PATH)
        store = PriceSeriesStore(repository, max_length=settings.HISTORY_MAX_LENGTH,
                                 default_price=settings.DEFAULT_PRICE)
        await store.load()
        if not self.save:
            store.repository = None

        opening = store.latest_prices(s.ticker for s in symbols)
        simulator = MarketSimulator(symbols, store, self._strategies())

        totals = {"updated": 0, "real": 0, "synthetic": 0, "skipped": 0}
        try:
            for i in range(self.ticks):
                report = await simulator.run_tick(self.start + timedelta(minutes=i))
                totals["updated"] += report.updated
                totals["real"] += report.real
                totals["synthetic"] += report.synthetic
                totals["skipped"] += report.skipped
                if (i + 1) % 100 == 0:
                    print(f"Processed {i + 1} ticks...", end='\r')
        finally:
            if self.client is not None:
                await self.client.aclose()

        closing = store.latest_prices(s.ticker for s in symbols)

        print("\n\n=== Simulation Report ===")
        print(f"Data: {self.data_dir}")
        print(f"Ticks Run: {simulator.ticks}")
        print(f"Samples Written: {totals['updated']} ({totals['real']} real, {totals['synthetic']} synthetic)")
        print(f"Skipped: {totals['skipped']}")
        for ticker, price in closing.items():
            start_price = opening[ticker]
            move = (price - start_price) / start_price * 100
            print(f"  {ticker:<8} ${start_price:>10.2f} -> ${price:>10.2f} ({move:+.2f}%)")
        print("=========================")

        return {"ticks": simulator.ticks, **totals, "prices": closing}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="AZTEX Market Simulation Tool")
    parser.add_argument("--data-dir", default=settings.DATA_DIR, help="Directory holding authors.json and history")
    parser.add_argument("--ticks", type=int, default=60, help="Number of one-minute ticks to run")
    parser.add_argument("--online", action="store_true", help="Use the live download statistics feed")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducible runs")
    parser.add_argument("--backend", choices=["json", "sqlite"], default=settings.HISTORY_BACKEND)
    parser.add_argument("--save", action="store_true", help="Write the simulated history back to the data directory")

    args = parser.parse_args()
    # Quieter console output for the CLI
    logger.setLevel(logging.WARNING)

    runner = SimulationRunner(args.data_dir, ticks=args.ticks, offline=not args.online, seed=args.seed,
                              backend=args.backend, save=args.save)
    asyncio.run(runner.run())
