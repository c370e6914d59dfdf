"""TMDB (The Movie Database) metadata provider."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from streamtui.config import ConfigStore
from streamtui.errors import (
    AuthFailed, NotFound, ProtocolError, RateLimited, ServerError, TransportError
)
from streamtui.models import (
    Episode, MediaType, MovieDetail, SearchResult, SeasonSummary, TvDetail
)
from streamtui.providers.base import MetadataProvider

log = logging.getLogger(__name__)

MAIN_URL = "https://api.themoviedb.org/3"
HTTP_TIMEOUT = 30.0
MAX_ATTEMPTS = 3

HEADERS = {
    "Accept": "application/json",
    "User-Agent": "streamtui",
}


def _year(date: str | None) -> int | None:
    """Extract the year from a TMDB `YYYY-MM-DD` date."""
    if date and len(date) >= 4 and date[:4].isdigit():
        return int(date[:4])
    return None


def _retry_after(res: httpx.Response) -> float | None:
    value = res.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _parse_result(item: dict, default_type: MediaType | None = None) -> SearchResult | None:
    kind = item.get("media_type")
    if kind == "movie":
        media_type = MediaType.MOVIE
    elif kind == "tv":
        media_type = MediaType.TV
    elif kind is None and default_type is not None:
        media_type = default_type
    else:
        return None  # people, collections

    if media_type is MediaType.MOVIE:
        title = item.get("title") or item.get("original_title") or ""
        date = item.get("release_date")
    else:
        title = item.get("name") or item.get("original_name") or ""
        date = item.get("first_air_date")

    try:
        return SearchResult(
            id=int(item["id"]),
            media_type=media_type,
            title=title,
            year=_year(date),
            overview=item.get("overview") or "",
            poster_path=item.get("poster_path"),
            rating=float(item.get("vote_average") or 0.0),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ProtocolError(f"malformed TMDB result: {e}") from e


class TmdbProvider(MetadataProvider):
    """TMDB v3 client with rate-limit retry and API-key rotation."""

    def __init__(
        self,
        config: ConfigStore,
        base_url: str = MAIN_URL,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._config = config
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    @property
    def name(self) -> str:
        return "TMDB"

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=HTTP_TIMEOUT, headers=HEADERS)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET a TMDB endpoint, rotating the API key once on an auth failure."""
        api_key = self._config.api_key()
        try:
            return await self._request(path, params or {}, api_key)
        except AuthFailed:
            next_key = self._config.rotate_key(api_key)
            if next_key is None:
                raise
            return await self._request(path, params or {}, next_key)

    async def _request(self, path: str, params: dict[str, Any], api_key: str) -> Any:
        client = self._ensure_client()
        url = f"{self._base_url}{path}"

        for attempt in range(MAX_ATTEMPTS):
            log.debug("GET %s (attempt %d)", url, attempt + 1)
            try:
                res = await client.get(url, params={**params, "api_key": api_key})
            except httpx.HTTPError as e:
                raise TransportError(e) from e

            if res.status_code == 429:
                if attempt + 1 >= MAX_ATTEMPTS:
                    break
                delay = _retry_after(res)
                if delay is None:
                    delay = 2 ** attempt
                log.debug("TMDB rate limited, retrying in %.1fs", delay)
                await self._sleep(delay)
                continue
            if res.status_code == 401:
                raise AuthFailed("TMDB rejected the API key")
            if res.status_code == 404:
                raise NotFound(f"{path} not found")
            if res.status_code >= 500:
                raise ServerError(res.status_code)
            if not res.is_success:
                raise ProtocolError(f"unexpected HTTP {res.status_code} from TMDB")

            try:
                return res.json()
            except ValueError as e:
                raise ProtocolError(f"invalid JSON from TMDB: {e}") from e

        raise RateLimited(f"TMDB rate limit persisted after {MAX_ATTEMPTS} attempts")

    async def search(self, query: str) -> list[SearchResult]:
        """Search for movies and TV shows."""
        if not query.strip():
            return []
        data = await self._get_json("/search/multi", {"query": query.strip(), "include_adult": "false"})
        return self._parse_results(data)

    async def trending(self, window: str = "day") -> list[SearchResult]:
        """Get trending movies and TV shows."""
        if window not in ("day", "week"):
            raise ValueError(f"invalid trending window {window!r}")
        data = await self._get_json(f"/trending/all/{window}")
        return self._parse_results(data)

    def _parse_results(self, data: Any) -> list[SearchResult]:
        if not isinstance(data, dict) or not isinstance(data.get("results"), list):
            raise ProtocolError("TMDB response has no results list")
        results: list[SearchResult] = []
        for item in data["results"]:
            result = _parse_result(item)
            if result is not None:
                results.append(result)
        return results

    async def movie_detail(self, movie_id: int) -> MovieDetail:
        """Fetch movie details (with IMDb id)."""
        d = await self._get_json(f"/movie/{movie_id}", {"append_to_response": "external_ids"})
        imdb_id = d.get("imdb_id") or (d.get("external_ids") or {}).get("imdb_id") or ""
        return MovieDetail(
            id=int(d.get("id", movie_id)),
            imdb_id=imdb_id,
            title=d.get("title") or d.get("original_title") or "",
            year=_year(d.get("release_date")),
            overview=d.get("overview") or "",
            poster_path=d.get("poster_path"),
            rating=float(d.get("vote_average") or 0.0),
            genres=[g["name"] for g in d.get("genres", []) if g.get("name")],
            runtime=int(d.get("runtime") or 0),
        )

    async def tv_detail(self, tv_id: int) -> TvDetail:
        """Fetch TV show details with season summaries."""
        d = await self._get_json(f"/tv/{tv_id}", {"append_to_response": "external_ids"})
        run_times = d.get("episode_run_time") or []

        seasons = [
            SeasonSummary(
                number=int(s["season_number"]),
                episode_count=int(s.get("episode_count") or 0),
                name=s.get("name"),
                air_date=s.get("air_date"),
            )
            for s in d.get("seasons", [])
            if s.get("season_number") is not None
        ]

        return TvDetail(
            id=int(d.get("id", tv_id)),
            imdb_id=(d.get("external_ids") or {}).get("imdb_id") or "",
            title=d.get("name") or d.get("original_name") or "",
            year=_year(d.get("first_air_date")),
            overview=d.get("overview") or "",
            poster_path=d.get("poster_path"),
            rating=float(d.get("vote_average") or 0.0),
            genres=[g["name"] for g in d.get("genres", []) if g.get("name")],
            runtime=int(run_times[0]) if run_times else 0,
            seasons=seasons,
        )

    async def tv_season(self, tv_id: int, season_number: int) -> list[Episode]:
        """Fetch the episodes of one season."""
        d = await self._get_json(f"/tv/{tv_id}/season/{season_number}")
        episodes: list[Episode] = []
        for ep in d.get("episodes", []):
            try:
                episodes.append(Episode(
                    season=int(ep.get("season_number", season_number)),
                    episode=int(ep["episode_number"]),
                    name=ep.get("name") or f"Episode {ep['episode_number']}",
                    overview=ep.get("overview") or "",
                    runtime=ep.get("runtime"),
                ))
            except (KeyError, TypeError, ValueError) as e:
                raise ProtocolError(f"malformed TMDB episode: {e}") from e
        return sorted(episodes, key=lambda e: e.episode)
