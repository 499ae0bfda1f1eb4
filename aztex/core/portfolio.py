import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Mapping, Sequence

from aztex.core.models import Holding, PortfolioSample, Sample, is_valid_price
from aztex.core.persistence import read_json_file, write_json_atomic

logger = logging.getLogger("aztex")

DEFAULT_PRICE = 100.0


def holdings_of(user: dict) -> List[Holding]:
    """Holdings list, migrating the legacy ``shares`` map when the list is empty."""
    holdings = [Holding.model_validate(h) for h in (user.get("holdings") or [])]
    shares = user.get("shares") or {}
    if not holdings and shares:
        holdings = [Holding(ticker=ticker, shares=float(count or 0)) for ticker, count in shares.items()]
    return holdings


def holdings_value(user: dict, prices: Mapping[str, float], default_price: float = DEFAULT_PRICE) -> float:
    total = 0.0
    holdings = user.get("holdings") or []
    counted = set()
    for holding in holdings:
        ticker = holding.get("ticker")
        counted.add(ticker)
        total += float(holding.get("shares") or 0) * prices.get(ticker, default_price)

    # Legacy shares map, unless the ticker is already in holdings
    for ticker, count in (user.get("shares") or {}).items():
        if ticker in counted:
            continue
        total += float(count or 0) * prices.get(ticker, default_price)
    return total


class PortfolioLedger:
    """Keeps users' stored net worth in line with the latest prices."""

    def __init__(self, users_path: str = "data/users.json", default_price: float = DEFAULT_PRICE):
        self.users_path = users_path
        self.default_price = default_price

    def _recalculate(self, prices: Mapping[str, float]) -> int:
        users = read_json_file(self.users_path, [])
        if not isinstance(users, list):
            logger.warning(f"{self.users_path} does not hold a user list")
            return 0

        updated = 0
        for user in users:
            value = holdings_value(user, prices, self.default_price)
            net_worth = round(float(user.get("cash") or 0) + value, 2)
            if user.get("netWorth") != net_worth:
                user["netWorth"] = net_worth
                updated += 1

        if updated:
            write_json_atomic(self.users_path, users)
            logger.info(f"Updated net worth for {updated} users")
        return updated

    async def recalculate_net_worth(self, prices: Mapping[str, float]) -> int:
        return await asyncio.to_thread(self._recalculate, dict(prices))


def _price_at(series: Sequence[Sample], timestamp: datetime):
    for sample in reversed(series):
        if sample.timestamp <= timestamp and is_valid_price(sample.price):
            return sample.price
    return None


def build_portfolio_history(holdings: Sequence[Holding], cash: float, histories: Mapping[str, Sequence[Sample]],
                            since: datetime, default_price: float = DEFAULT_PRICE) -> List[PortfolioSample]:
    """
    Portfolio value at every timestamp any held stock has a sample for since ``since``.

    Each holding is valued at its latest sample at or before the timestamp; a
    holding with nothing that early uses its latest known price.
    """
    timestamps = sorted({
        s.timestamp
        for h in holdings
        for s in histories.get(h.ticker, [])
        if s.timestamp >= since
    })

    latest: Dict[str, float] = {}
    for h in holdings:
        series = histories.get(h.ticker, [])
        valid = [s.price for s in series if is_valid_price(s.price)]
        latest[h.ticker] = valid[-1] if valid else default_price

    out = []
    for ts in timestamps:
        value = 0.0
        for h in holdings:
            price = _price_at(histories.get(h.ticker, []), ts)
            if price is None:
                price = latest[h.ticker]
            value += h.shares * price
        out.append(PortfolioSample(
            timestamp=ts,
            value=round(cash + value, 2),
            cash=round(cash, 2),
            holdings_value=round(value, 2),
        ))
    return out
