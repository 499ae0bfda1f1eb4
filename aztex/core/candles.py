from datetime import datetime
from typing import Callable, Generic, List, Optional, Sequence, Tuple, TypeVar, Union

from aztex.core.models import Candle, Granularity, PortfolioCandle, PortfolioSample, Sample

T = TypeVar("T")
C = TypeVar("C")

BucketKey = Tuple[int, ...]


def bucket_key(timestamp: datetime, granularity: Granularity) -> BucketKey:
    """Truncate a timestamp to its bucket, in the timestamp's own timezone."""
    if granularity == Granularity.HOUR:
        return (timestamp.year, timestamp.month, timestamp.day, timestamp.hour)
    if granularity == Granularity.DAY:
        return (timestamp.year, timestamp.month, timestamp.day)
    if granularity == Granularity.MONTH:
        return (timestamp.year, timestamp.month)
    raise ValueError(f"No bucket key for granularity {granularity!r}")


class BucketAggregator(Generic[T, C]):
    """
    Streaming bucketer over a chronologically ordered feed.

    Samples are collected until the bucket key changes; the change closes the
    previous bucket. It never sorts, so out-of-order input simply opens a new
    bucket.
    """

    def __init__(self, granularity: Granularity, build: Callable[[List[T]], C]):
        self.granularity = Granularity(granularity)
        self.build = build
        self.current_key: Optional[BucketKey] = None
        self.current: List[T] = []

    def on_sample(self, sample: T) -> Optional[C]:
        """
        Accepts a sample. Returns a COMPLETED bucket if the key has rolled over.
        Returns None otherwise.
        """
        key = bucket_key(sample.timestamp, self.granularity)

        closed = None
        if self.current_key is not None and key != self.current_key:
            closed = self.build(self.current)
            self.current = []

        self.current_key = key
        self.current.append(sample)
        return closed

    def flush(self) -> Optional[C]:
        """Close the trailing (possibly partial) bucket."""
        if not self.current:
            return None
        closed = self.build(self.current)
        self.current = []
        self.current_key = None
        return closed


def build_candle(bucket: List[Sample]) -> Candle:
    prices = [s.price for s in bucket]
    first, last = bucket[0], bucket[-1]
    return Candle(
        timestamp=first.timestamp,
        open=first.price,
        high=max(prices),
        low=min(prices),
        close=last.price,
        price=last.price,
        volume=sum(s.volume or 0 for s in bucket),
        change=last.price - first.price,
        count=len(bucket),
    )


def build_portfolio_candle(bucket: List[PortfolioSample]) -> PortfolioCandle:
    values = [s.value for s in bucket]
    first, last = bucket[0], bucket[-1]
    return PortfolioCandle(
        timestamp=first.timestamp,
        value=last.value,
        cash=last.cash,
        holdings_value=last.holdings_value,
        open=first.value,
        high=max(values),
        low=min(values),
        close=last.value,
        count=len(bucket),
    )


def _run(samples: Sequence[T], granularity: Granularity, build: Callable[[List[T]], C]) -> List[C]:
    aggregator = BucketAggregator(granularity, build)
    out = []
    for sample in samples:
        closed = aggregator.on_sample(sample)
        if closed is not None:
            out.append(closed)
    tail = aggregator.flush()
    if tail is not None:
        out.append(tail)
    return out


def aggregate(samples: Sequence[Sample], granularity: Union[Granularity, str]) -> List[Union[Sample, Candle]]:
    """Bucket a price series into OHLC candles. Minute granularity is a pass-through."""
    granularity = Granularity(granularity)
    if granularity == Granularity.MINUTE:
        return list(samples)
    return _run(samples, granularity, build_candle)


def aggregate_portfolio(samples: Sequence[PortfolioSample],
                        granularity: Union[Granularity, str]) -> List[Union[PortfolioSample, PortfolioCandle]]:
    """Same bucketing over portfolio value; cash and holdings come from each bucket's last sample."""
    granularity = Granularity(granularity)
    if granularity == Granularity.MINUTE:
        return list(samples)
    return _run(samples, granularity, build_portfolio_candle)
