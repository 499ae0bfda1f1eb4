"""
Fair-value quotes derived from the download statistics feed.

The feed only offers a bulk list of every author, so one fetch serves every
symbol for the whole TTL window.  Refreshes are single-flight: concurrent
callers that miss the cache wait on the same fetch instead of issuing their
own.  A failed fetch is never fatal here; callers receive ``None`` and fall
back to synthetic movement.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from pydantic import ValidationError

from aztex.core.errors import FeedUnavailable
from aztex.core.models import AuthorStats, FairValueQuote, Symbol
from aztex.core.pricing import downloads_to_price, downloads_to_volume

logger = logging.getLogger("aztex")

CACHE_TTL_SECONDS = 5 * 60


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ValuationSource:
    def __init__(self, client, ttl: float = CACHE_TTL_SECONDS, retry_after: float = 30.0,
                 clock: Callable[[], datetime] = utc_now):
        """
        Args:
            client: Object exposing ``async get_authors() -> list[dict]``.
            ttl: Seconds a fetched batch stays fresh.
            retry_after: Seconds to wait after a failed fetch before trying again.
            clock: Returns the current aware datetime (injectable for tests).
        """
        self.client = client
        self.ttl = timedelta(seconds=ttl)
        self.retry_after = timedelta(seconds=retry_after)
        self.clock = clock

        self._authors: Optional[Dict[str, AuthorStats]] = None
        self._fetched_at: Optional[datetime] = None
        self._failed_at: Optional[datetime] = None
        self._lock = asyncio.Lock()
        self.fetch_count = 0

    def _is_fresh(self, now: datetime) -> bool:
        return self._authors is not None and self._fetched_at is not None and now - self._fetched_at < self.ttl

    def _in_backoff(self, now: datetime) -> bool:
        return self._failed_at is not None and now - self._failed_at < self.retry_after

    async def authors(self) -> Optional[Dict[str, AuthorStats]]:
        """Current batch keyed by lowercase author name, or None if the feed is down."""
        now = self.clock()
        if self._is_fresh(now):
            return self._authors

        async with self._lock:
            now = self.clock()
            # Another caller may have refreshed while we waited for the lock
            if self._is_fresh(now):
                return self._authors
            if self._in_backoff(now):
                return None

            logger.info("Fetching external authors data from download statistics feed...")
            self.fetch_count += 1
            try:
                rows = await self.client.get_authors()
            except FeedUnavailable as e:
                logger.warning(f"Download statistics feed unavailable: {e}")
                self._failed_at = now
                return None
            except Exception as e:
                logger.error(f"Unexpected feed client failure: {e}", exc_info=True)
                self._failed_at = now
                return None

            self._authors = self._index(rows)
            self._fetched_at = now
            self._failed_at = None
            logger.info(f"Cached statistics for {len(self._authors)} authors")
            return self._authors

    @staticmethod
    def _index(rows) -> Dict[str, AuthorStats]:
        indexed = {}
        for row in rows:
            try:
                stats = AuthorStats.model_validate(row)
            except ValidationError:
                logger.debug(f"Skipping malformed author entry: {row!r}")
                continue
            indexed[stats.name.lower()] = stats
        return indexed

    async def fair_value(self, symbol: Symbol) -> Optional[FairValueQuote]:
        authors = await self.authors()
        if authors is None:
            return None

        stats = authors.get(symbol.external_id.lower())
        if stats is None:
            logger.warning(f"Author {symbol.external_id} not found in external API data")
            return None

        return FairValueQuote(
            symbol=symbol.ticker,
            price=downloads_to_price(stats.downloads, stats.download_rate),
            volume=downloads_to_volume(stats.downloads),
            fetched_at=self._fetched_at,
            downloads=stats.downloads,
            download_rate=stats.download_rate,
        )

    def status(self) -> dict:
        now = self.clock()
        if self._fetched_at is None:
            state = "unavailable" if self._failed_at is not None else "unknown"
            freshness = "unknown"
        else:
            state = "unavailable" if self._in_backoff(now) else "available"
            freshness = "fresh" if self._is_fresh(now) else "stale"
        return {
            "status": state,
            "authors_count": len(self._authors or {}),
            "last_fetch": self._fetched_at.isoformat() if self._fetched_at else None,
            "freshness": freshness,
        }
