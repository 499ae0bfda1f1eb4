import asyncio
import signal
from contextlib import asynccontextmanager
from pathlib import Path

import numpy as np
import uvicorn
from fastapi import FastAPI

from aztex.config import settings
from aztex.connectors.createranked_rest import CreateRankedREST
from aztex.core.authors import load_symbols
from aztex.core.backfill import BackfillService
from aztex.core.history import HistoryService
from aztex.core.logger import logger
from aztex.core.persistence import build_repository
from aztex.core.portfolio import PortfolioLedger
from aztex.core.scheduler import MarketScheduler
from aztex.core.series_store import PriceSeriesStore
from aztex.core.simulator import MarketSimulator
from aztex.core.valuation import ValuationSource
from aztex.strategies.convergence import FairValueConvergence
from aztex.strategies.synthetic import SyntheticTrend


def data_path(name: str) -> str:
    return str(Path(settings.DATA_DIR) / name)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"{settings.APP_NAME} Market Initialized", extra={"version": settings.APP_VERSION})

    # 1. Symbols and stored history
    symbols = load_symbols(data_path(settings.AUTHORS_FILE))
    repository = build_repository(settings.HISTORY_BACKEND, settings.DATA_DIR,
                                  settings.HISTORY_FILE, settings.SQLITE_PATH)
    store = PriceSeriesStore(repository, max_length=settings.HISTORY_MAX_LENGTH,
                             default_price=settings.DEFAULT_PRICE)
    await store.load()
    logger.info(f"Loaded {len(symbols)} symbols, history for {len(store.symbols())}")

    # 2. Valuation feed
    client = CreateRankedREST()
    valuation = ValuationSource(client, ttl=settings.FEED_CACHE_TTL_SECONDS,
                                retry_after=settings.FEED_RETRY_SECONDS)

    # 3. Pricing chain: real statistics first, synthetic trend as fallback
    rng = np.random.default_rng()
    strategies = [
        FairValueConvergence(valuation, rng=rng),
        SyntheticTrend(rng=rng,
                       open_hour=settings.MARKET_OPEN_HOUR,
                       close_hour=settings.MARKET_CLOSE_HOUR,
                       utc_offset_hours=settings.MARKET_UTC_OFFSET_HOURS,
                       max_trend_bias=settings.MAX_TREND_BIAS),
    ]

    ledger = PortfolioLedger(data_path(settings.USERS_FILE), default_price=settings.DEFAULT_PRICE)
    simulator = MarketSimulator(symbols, store, strategies, on_prices_updated=ledger.recalculate_net_worth)
    backfill = BackfillService(store, valuation, rng=rng)
    scheduler = MarketScheduler(simulator, interval=settings.TICK_INTERVAL_SECONDS,
                                heartbeat_interval=settings.HEARTBEAT_INTERVAL_SECONDS)

    app.state.store = store
    app.state.valuation = valuation
    app.state.history = HistoryService(symbols, store, backfill, valuation,
                                       cache_seconds=settings.HISTORY_CACHE_SECONDS)
    app.state.scheduler = scheduler

    await scheduler.start()

    yield

    # Shutdown
    logger.info("Shutdown Initiated...")
    await scheduler.stop()
    await client.aclose()
    logger.info(f"Market Shutdown Complete after {simulator.ticks} ticks")


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)


async def main():
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    stop_event = asyncio.Event()

    def handle_signal():
        stop_event.set()

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, handle_signal)
    loop.add_signal_handler(signal.SIGTERM, handle_signal)

    async with lifespan(app):
        logger.info("Market Loop Running")
        await stop_event.wait()
        logger.info("Shutdown signal received")


def run():
    if settings.SERVE_HTTP:
        # uvicorn drives the same lifespan
        uvicorn.run("aztex.main:app", host=settings.HTTP_HOST, port=settings.HTTP_PORT,
                    log_level=settings.LOG_LEVEL.lower())
        return
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
