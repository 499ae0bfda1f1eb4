import pytest
import json
import math
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from aztex.core.errors import PersistenceError
from aztex.core.models import DataSource, Sample
from aztex.core.persistence import (
    JsonHistoryRepository,
    SqliteHistoryRepository,
    build_repository,
    write_json_atomic,
)

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

def make_history():
    return {
        "CREATE": [
            Sample(timestamp=T0, price=100.0, volume=10, change=0.0, data_source=DataSource.STATISTICS),
            Sample(timestamp=T0 + timedelta(minutes=1), price=101.5, volume=12, change=1.5),
        ],
        "MEKA": [Sample(timestamp=T0, price=42.0)],
    }

@pytest.mark.asyncio
async def test_json_round_trip(tmp_path):
    repo = JsonHistoryRepository(str(tmp_path / "history.json"))
    await repo.save_all(make_history())

    loaded = await repo.load_all()
    assert list(loaded.keys()) == ["CREATE", "MEKA"]
    assert [s.price for s in loaded["CREATE"]] == [100.0, 101.5]
    assert loaded["CREATE"][0].data_source == DataSource.STATISTICS
    assert loaded["CREATE"][1].timestamp == T0 + timedelta(minutes=1)

@pytest.mark.asyncio
async def test_json_document_shape(tmp_path):
    path = tmp_path / "history.json"
    repo = JsonHistoryRepository(str(path))
    await repo.save_all(make_history())

    doc = json.loads(path.read_text())
    entry = doc["CREATE"][0]
    assert entry["dataSource"] == "statistics"
    assert entry["price"] == 100.0
    assert "timestamp" in entry

@pytest.mark.asyncio
async def test_json_missing_file_is_empty(tmp_path):
    repo = JsonHistoryRepository(str(tmp_path / "nope.json"))
    assert await repo.load_all() == {}

@pytest.mark.asyncio
async def test_json_loads_corrupt_samples(tmp_path):
    """Null and NaN prices from older writers still load; readers filter them."""
    path = tmp_path / "history.json"
    path.write_text(
        '{"TST": ['
        '{"timestamp": "2025-01-01T12:00:00Z", "price": 10.0, "volume": 1, "change": 0},'
        '{"timestamp": "2025-01-01T12:01:00Z", "price": null, "volume": 1, "change": null},'
        '{"timestamp": "2025-01-01T12:02:00Z", "price": NaN, "volume": 1, "change": 0},'
        '{"price": 5}'
        ']}'
    )
    repo = JsonHistoryRepository(str(path))
    loaded = await repo.load_all()

    samples = loaded["TST"]
    assert len(samples) == 3  # the row without a timestamp is dropped
    assert samples[1].price is None
    assert samples[1].change == 0.0
    assert math.isnan(samples[2].price)
    assert not samples[2].is_valid

@pytest.mark.asyncio
async def test_json_garbage_document(tmp_path):
    path = tmp_path / "history.json"
    path.write_text("not json at all")
    repo = JsonHistoryRepository(str(path))
    assert await repo.load_all() == {}

@pytest.mark.asyncio
async def test_json_save_single_symbol(tmp_path):
    repo = JsonHistoryRepository(str(tmp_path / "history.json"))
    await repo.save_all(make_history())
    await repo.save("MEKA", [Sample(timestamp=T0, price=43.0)])

    assert [s.price for s in await repo.load("MEKA")] == [43.0]
    assert len(await repo.load("CREATE")) == 2

@pytest.mark.asyncio
async def test_json_write_failure_raises(tmp_path):
    repo = JsonHistoryRepository(str(tmp_path / "history.json"))
    with patch("aztex.core.persistence.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(PersistenceError):
            await repo.save_all(make_history())
    # Temp file is cleaned up and the target was never created
    assert not (tmp_path / "history.json.tmp").exists()
    assert not (tmp_path / "history.json").exists()

def test_write_json_atomic_creates_dirs(tmp_path):
    path = tmp_path / "nested" / "users.json"
    write_json_atomic(str(path), [{"id": 1}])
    assert json.loads(path.read_text()) == [{"id": 1}]

@pytest.mark.asyncio
async def test_sqlite_round_trip(tmp_path):
    repo = SqliteHistoryRepository(str(tmp_path / "history.db"))
    await repo.init_db()
    await repo.save_all(make_history())

    loaded = await repo.load_all()
    assert set(loaded.keys()) == {"CREATE", "MEKA"}
    assert [s.price for s in loaded["CREATE"]] == [100.0, 101.5]
    assert loaded["CREATE"][0].data_source == DataSource.STATISTICS
    assert loaded["CREATE"][0].timestamp == T0

@pytest.mark.asyncio
async def test_sqlite_save_replaces_symbol(tmp_path):
    repo = SqliteHistoryRepository(str(tmp_path / "history.db"))
    await repo.save_all(make_history())
    await repo.save("CREATE", [Sample(timestamp=T0, price=7.0)])

    assert [s.price for s in await repo.load("CREATE")] == [7.0]
    assert [s.price for s in await repo.load("MEKA")] == [42.0]

@pytest.mark.asyncio
async def test_sqlite_keeps_null_price(tmp_path):
    repo = SqliteHistoryRepository(str(tmp_path / "history.db"))
    await repo.save_all({"TST": [Sample(timestamp=T0, price=None)]})
    loaded = await repo.load("TST")
    assert loaded[0].price is None

def test_build_repository(tmp_path):
    json_repo = build_repository("json", str(tmp_path), "history.json", "history.db")
    sqlite_repo = build_repository("sqlite", str(tmp_path), "history.json", "history.db")

    assert isinstance(json_repo, JsonHistoryRepository)
    assert json_repo.path == str(tmp_path / "history.json")
    assert isinstance(sqlite_repo, SqliteHistoryRepository)
    assert sqlite_repo.db_path == str(tmp_path / "history.db")
