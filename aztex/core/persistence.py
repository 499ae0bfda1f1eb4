import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List

import aiosqlite
from pydantic import ValidationError

from aztex.core.errors import PersistenceError
from aztex.core.models import Sample

logger = logging.getLogger("aztex")

History = Dict[str, List[Sample]]


def read_json_file(path: str, default: Any):
    """Read a JSON document, falling back to ``default`` when missing or unreadable."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return default
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to read {path}: {e}")
        return default


def write_json_atomic(path: str, data: Any):
    """Write to a temp file then rename over the target, so readers never see half a document."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp = f"{path}.tmp"
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except OSError as e:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise PersistenceError(f"Failed to write {path}: {e}") from e


def parse_samples(symbol: str, rows: Any) -> List[Sample]:
    samples = []
    if not isinstance(rows, list):
        logger.warning(f"History for {symbol} is not a list, ignoring")
        return samples
    for row in rows:
        try:
            samples.append(Sample.model_validate(row))
        except ValidationError as e:
            logger.warning(f"Dropping unreadable sample for {symbol}: {e.error_count()} errors")
    return samples


def dump_samples(samples: List[Sample]) -> List[dict]:
    return [s.model_dump(mode="json", by_alias=True) for s in samples]


class HistoryRepository(ABC):
    """Durable storage for per-symbol price series."""

    @abstractmethod
    async def load_all(self) -> History:
        pass

    @abstractmethod
    async def save_all(self, history: History):
        pass

    async def load(self, symbol: str) -> List[Sample]:
        history = await self.load_all()
        return history.get(symbol, [])

    @abstractmethod
    async def save(self, symbol: str, samples: List[Sample]):
        pass


class JsonHistoryRepository(HistoryRepository):
    """Whole ticker-keyed history map kept in a single JSON document."""

    def __init__(self, path: str = "data/history.json"):
        self.path = path
        self._lock = asyncio.Lock()

    def _read(self) -> History:
        raw = read_json_file(self.path, {})
        if not isinstance(raw, dict):
            logger.warning(f"{self.path} does not hold a ticker map, starting empty")
            return {}
        return {symbol: parse_samples(symbol, rows) for symbol, rows in raw.items()}

    def _write(self, history: History):
        payload = {symbol: dump_samples(samples) for symbol, samples in history.items()}
        write_json_atomic(self.path, payload)

    async def load_all(self) -> History:
        return await asyncio.to_thread(self._read)

    async def save_all(self, history: History):
        # Snapshot the lists so a concurrent append cannot change what we serialize
        snapshot = {symbol: list(samples) for symbol, samples in history.items()}
        async with self._lock:
            await asyncio.to_thread(self._write, snapshot)

    async def save(self, symbol: str, samples: List[Sample]):
        async with self._lock:
            history = await asyncio.to_thread(self._read)
            history[symbol] = list(samples)
            await asyncio.to_thread(self._write, history)


class SqliteHistoryRepository(HistoryRepository):
    """Price series in SQLite (WAL mode), one row per sample."""

    def __init__(self, db_path: str = "data/history.db"):
        self.db_path = db_path
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._initialized = False

    async def init_db(self):
        """Initialize DB Schema and WAL mode"""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("""
                CREATE TABLE IF NOT EXISTS samples (
                    symbol TEXT NOT NULL,
                    seq INTEGER NOT NULL,
                    timestamp TEXT NOT NULL,
                    price REAL,
                    volume INTEGER,
                    change REAL,
                    data_source TEXT,
                    PRIMARY KEY (symbol, seq)
                )
            """)
            await db.commit()
        self._initialized = True
        logger.info(f"History DB Initialized at {self.db_path} (WAL Mode)")

    async def _ensure(self):
        if not self._initialized:
            await self.init_db()

    @staticmethod
    def _rows(symbol: str, samples: List[Sample]):
        return [
            (symbol, seq, s.timestamp.isoformat(), s.price, s.volume, s.change, s.data_source.value)
            for seq, s in enumerate(samples)
        ]

    @staticmethod
    def _sample(row) -> Sample:
        return Sample(
            timestamp=row[0],
            price=row[1],
            volume=row[2],
            change=row[3],
            data_source=row[4] or "generated",
        )

    async def load_all(self) -> History:
        await self._ensure()
        history: History = {}
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT symbol, timestamp, price, volume, change, data_source FROM samples ORDER BY symbol, seq"
            ) as cursor:
                async for row in cursor:
                    history.setdefault(row[0], []).append(self._sample(row[1:]))
        return history

    async def load(self, symbol: str) -> List[Sample]:
        await self._ensure()
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT timestamp, price, volume, change, data_source FROM samples WHERE symbol = ? ORDER BY seq",
                (symbol,),
            ) as cursor:
                rows = await cursor.fetchall()
        return [self._sample(row) for row in rows]

    async def save_all(self, history: History):
        await self._ensure()
        snapshot = {symbol: list(samples) for symbol, samples in history.items()}
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("DELETE FROM samples")
                for symbol, samples in snapshot.items():
                    await db.executemany(
                        "INSERT INTO samples (symbol, seq, timestamp, price, volume, change, data_source) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?)",
                        self._rows(symbol, samples),
                    )
                await db.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to save history to {self.db_path}: {e}") from e

    async def save(self, symbol: str, samples: List[Sample]):
        await self._ensure()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("DELETE FROM samples WHERE symbol = ?", (symbol,))
                await db.executemany(
                    "INSERT INTO samples (symbol, seq, timestamp, price, volume, change, data_source) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    self._rows(symbol, list(samples)),
                )
                await db.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to save {symbol} history to {self.db_path}: {e}") from e


def build_repository(backend: str, data_dir: str, history_file: str, sqlite_path: str) -> HistoryRepository:
    if backend == "sqlite":
        return SqliteHistoryRepository(str(Path(data_dir) / sqlite_path))
    return JsonHistoryRepository(str(Path(data_dir) / history_file))
