"""Loudly genre catalogue proxy."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from artify.config import Config
from artify.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

GENRES_PATH = "/api/ai/genres"


class GenreClient:
    """Fetches the music genre catalogue with the server-held API key."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://soundtracks.loudly.com",
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config: Config) -> GenreClient:
        return cls(
            config.loudly_api_key,
            config.loudly_base_url,
            timeout=config.upstream_timeout,
        )

    async def list_genres(self, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Return the genre list, optionally filtered on exact field values.

        Raises:
            UpstreamUnavailable: If the key is missing, the request fails or
                the upstream answers with a non-2xx status
        """
        if not self._api_key:
            raise UpstreamUnavailable("LOUDLY_API_KEY not configured", 500)

        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.get(
                    GENRES_PATH,
                    headers={"API-KEY": self._api_key, "Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.warning("Genre request failed: %s", e)
            raise UpstreamUnavailable("Failed to fetch genres", 500) from e

        if not response.is_success:
            logger.warning("Genre API returned %d", response.status_code)
            raise UpstreamUnavailable("Failed to fetch genres", response.status_code)

        try:
            genres = response.json()
        except ValueError as e:
            logger.warning("Genre API returned invalid JSON")
            raise UpstreamUnavailable("Failed to fetch genres", 502) from e

        if not isinstance(genres, list):
            raise UpstreamUnavailable("Failed to fetch genres", 502)
        if filters:
            genres = [
                g for g in genres if all(g.get(key) == value for key, value in filters.items())
            ]
        return genres
