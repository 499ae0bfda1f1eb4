class FeedUnavailable(Exception):
    """The download statistics feed could not be reached or returned garbage."""


class InvalidComputedPrice(ValueError):
    """A price computation produced NaN, infinity or a non-positive value."""


class PersistenceError(Exception):
    """Writing price history to durable storage failed."""


class UnknownSymbol(KeyError):
    """Ticker is not part of the configured symbol list."""
