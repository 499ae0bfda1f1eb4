import pytest
import json
from unittest.mock import AsyncMock, MagicMock, patch
from aztex.config import settings
from aztex.core.errors import FeedUnavailable
from aztex.core.history import HistoryService
from aztex.core.scheduler import MarketScheduler
from aztex.main import app, lifespan, run

@pytest.mark.asyncio
async def test_lifespan_wires_services(tmp_path, monkeypatch):
    (tmp_path / "authors.json").write_text(json.dumps([{"ticker": "TST", "name": "Test", "curseforgeId": "tester"}]))
    monkeypatch.setattr(settings, "DATA_DIR", str(tmp_path))
    monkeypatch.setattr(settings, "TICK_INTERVAL_SECONDS", 3600.0)

    client = MagicMock()
    client.get_authors = AsyncMock(side_effect=FeedUnavailable("offline"))
    client.aclose = AsyncMock()

    with patch("aztex.main.CreateRankedREST", return_value=client):
        async with lifespan(app):
            assert isinstance(app.state.history, HistoryService)
            assert isinstance(app.state.scheduler, MarketScheduler)
            assert app.state.scheduler.is_running
            assert list(app.state.history.symbols) == ["TST"]

            result = await app.state.history.stock_history("TST", period="1M", granularity="day")
            assert result["dataSource"] == "generated"

        assert not app.state.scheduler.is_running

    client.aclose.assert_awaited_once()
    assert (tmp_path / "history.json").exists()

def test_run_serves_app_with_uvicorn(monkeypatch):
    monkeypatch.setattr(settings, "SERVE_HTTP", True)
    monkeypatch.setattr(settings, "HTTP_PORT", 8123)

    with patch("aztex.main.uvicorn.run") as serve, patch("aztex.main.asyncio.run") as loop:
        run()

    serve.assert_called_once()
    args, kwargs = serve.call_args
    assert args == ("aztex.main:app",)
    assert kwargs["host"] == settings.HTTP_HOST
    assert kwargs["port"] == 8123
    loop.assert_not_called()

def test_run_without_http_drives_market_loop(monkeypatch):
    monkeypatch.setattr(settings, "SERVE_HTTP", False)

    with patch("aztex.main.main", new=MagicMock(return_value="loop")), \
            patch("aztex.main.uvicorn.run") as serve, patch("aztex.main.asyncio.run") as loop:
        run()

    loop.assert_called_once_with("loop")
    serve.assert_not_called()
