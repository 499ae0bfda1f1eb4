from typing import Dict, Any, Optional, List
import httpx
from aztex.config import settings
from aztex.core.errors import FeedUnavailable
from aztex.core.logger import logger

class CreateRankedREST:
    """Client for the CreateRanked author download statistics feed."""

    def __init__(self, base_url: Optional[str] = None, authors_path: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = base_url or settings.FEED_BASE_URL
        self.authors_path = authors_path or settings.FEED_AUTHORS_PATH
        self.timeout = timeout if timeout is not None else settings.FEED_TIMEOUT_SECONDS
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)

    async def _request(self, method: str, endpoint: str, params: Optional[Dict[str, Any]] = None):
        try:
            response = await self.client.request(method, endpoint, params=params or None)

            if response.status_code >= 400:
                logger.error(f"CreateRanked API Error {response.status_code}: {response.text[:200]}")

            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            raise FeedUnavailable(f"HTTP Error: {e}") from e
        except httpx.HTTPError as e:
            # Covers timeouts and connection failures
            raise FeedUnavailable(f"Request failed: {e!r}") from e
        except ValueError as e:
            raise FeedUnavailable(f"Invalid JSON from feed: {e}") from e

    async def get_authors(self) -> List[Dict[str, Any]]:
        """Get download statistics for every author in one call"""
        data = await self._request("GET", self.authors_path)
        if not isinstance(data, dict) or not isinstance(data.get("authors"), list):
            raise FeedUnavailable("Invalid response format from external API")
        return data["authors"]

    async def aclose(self):
        await self.client.aclose()
