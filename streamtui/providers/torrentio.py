"""Torrentio stream index provider (Stremio addon API)."""

import logging

import httpx

from streamtui import ranker
from streamtui.errors import ProtocolError, ServerError, TransportError
from streamtui.models import Quality, StreamSource
from streamtui.providers.base import StreamIndexProvider

log = logging.getLogger(__name__)

MAIN_URL = "https://torrentio.strem.fun"
HTTP_TIMEOUT = 30.0


def _to_source(item: dict) -> StreamSource | None:
    """Convert one addon stream entry; entries without a usable info hash are skipped."""
    info_hash = item.get("infoHash")
    if not info_hash:
        return None

    name = item.get("name") or ""
    title = item.get("title") or item.get("description") or ""

    quality = ranker.parse_quality(title)
    if quality is Quality.UNKNOWN:
        quality = ranker.parse_quality(name)

    try:
        return StreamSource(
            display_name=" ".join(name.split()),
            raw_title=title,
            info_hash=info_hash,
            file_idx=item.get("fileIdx"),
            seeds=ranker.parse_seeds(title),
            quality=quality,
            size_bytes=ranker.parse_size(title),
        )
    except ProtocolError as e:
        log.debug("Skipping stream entry: %s", e)
        return None


class TorrentioProvider(StreamIndexProvider):
    """Fetches magnet-backed sources and returns them ranked."""

    def __init__(self, base_url: str = MAIN_URL, client: httpx.AsyncClient | None = None):
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None

    @property
    def name(self) -> str:
        return "Torrentio"

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=HTTP_TIMEOUT)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def movie_streams(self, imdb_id: str) -> list[StreamSource]:
        """Get streams for a movie by IMDb id."""
        return await self._fetch_streams(f"/stream/movie/{imdb_id}.json")

    async def episode_streams(self, imdb_id: str, season: int, episode: int) -> list[StreamSource]:
        """Get streams for one TV episode."""
        return await self._fetch_streams(f"/stream/series/{imdb_id}:{season}:{episode}.json")

    async def _fetch_streams(self, path: str) -> list[StreamSource]:
        url = f"{self._base_url}{path}"
        log.debug("GET %s", url)
        try:
            res = await self._ensure_client().get(url)
        except httpx.HTTPError as e:
            raise TransportError(e) from e

        if res.status_code == 404:
            # Unknown ids have no index entry, which means no sources
            log.debug("No stream index entry for %s", path)
            return []
        if res.status_code >= 500:
            raise ServerError(res.status_code)
        if not res.is_success:
            raise ProtocolError(f"unexpected HTTP {res.status_code} from Torrentio")

        try:
            data = res.json()
        except ValueError as e:
            raise ProtocolError(f"invalid JSON from Torrentio: {e}") from e

        streams = data.get("streams") if isinstance(data, dict) else None
        if not isinstance(streams, list):
            raise ProtocolError("Torrentio response has no streams list")

        sources = [s for s in (_to_source(item) for item in streams) if s is not None]
        return ranker.rank(sources)
