import logging
from typing import List

from pydantic import ValidationError

from aztex.core.models import Symbol
from aztex.core.persistence import read_json_file

logger = logging.getLogger("aztex")


def load_symbols(path: str) -> List[Symbol]:
    """Read the tradable authors list, in file order. Bad entries are skipped."""
    rows = read_json_file(path, [])
    if not isinstance(rows, list):
        logger.warning(f"{path} does not hold an authors list")
        return []

    symbols = []
    seen = set()
    for row in rows:
        try:
            symbol = Symbol.model_validate(row)
        except ValidationError as e:
            logger.warning(f"Skipping invalid author entry {row!r}: {e.error_count()} errors")
            continue
        if symbol.ticker in seen:
            logger.warning(f"Duplicate ticker {symbol.ticker} in {path}, keeping the first")
            continue
        seen.add(symbol.ticker)
        symbols.append(symbol)
    return symbols
