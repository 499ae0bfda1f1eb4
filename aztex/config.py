from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    APP_NAME: str = "AZTEX"
    APP_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Data files
    DATA_DIR: str = Field(default="data", description="Directory holding authors/history/users documents")
    AUTHORS_FILE: str = "authors.json"
    HISTORY_FILE: str = "history.json"
    USERS_FILE: str = "users.json"
    HISTORY_BACKEND: Literal["json", "sqlite"] = Field(default="json", description="Price history storage: json or sqlite")
    SQLITE_PATH: str = "history.db"

    # Download statistics feed
    FEED_BASE_URL: str = "https://createranked.oreostack.uk"
    FEED_AUTHORS_PATH: str = "/api/authors.json"
    FEED_TIMEOUT_SECONDS: float = Field(default=5.0, description="HTTP timeout for one feed fetch")
    FEED_CACHE_TTL_SECONDS: float = 300.0
    FEED_RETRY_SECONDS: float = Field(default=30.0, description="Back-off after a failed feed fetch")

    # Market simulation
    HISTORY_MAX_LENGTH: int = 1000
    DEFAULT_PRICE: float = 100.0
    TICK_INTERVAL_SECONDS: float = 60.0
    HEARTBEAT_INTERVAL_SECONDS: float = 600.0
    MARKET_OPEN_HOUR: int = 9
    MARKET_CLOSE_HOUR: int = 16
    MARKET_UTC_OFFSET_HOURS: int = Field(default=-5, description="Market clock offset (EST)")
    MAX_TREND_BIAS: float = Field(default=0.005, description="Cap on the synthetic per-minute trend term")

    # Query side
    HISTORY_CACHE_SECONDS: float = 600.0

    # HTTP serving
    SERVE_HTTP: bool = Field(default=False, description="Serve the FastAPI app with uvicorn instead of the bare market loop")
    HTTP_HOST: str = "127.0.0.1"
    HTTP_PORT: int = 8000

settings = Settings()
