"""
Download statistics → stock price conversion.

The formula is shared with every consumer of the exchange's history files and
must not drift: ``max(1, ((downloads / 10000) * 0.3 + (downloadRate / 10) * 0.7) / 10)``.
"""
import math


def downloads_to_price(downloads: float, download_rate: float = 0.0) -> float:
    downloads_component = (downloads / 10000) * 0.3
    rate_component = (download_rate / 10) * 0.7
    return max(1.0, (downloads_component + rate_component) / 10)


def downloads_to_volume(downloads: float) -> int:
    return int(math.floor(downloads / 100))
