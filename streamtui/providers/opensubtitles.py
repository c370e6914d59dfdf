"""OpenSubtitles REST provider."""

import logging
from typing import Any

import httpx

from streamtui.errors import (
    AuthFailed, NotFound, ProtocolError, RateLimited, ServerError, TransportError
)
from streamtui.languages import (
    language_name, matches_language, parse_languages, to_three_letter, to_two_letter
)
from streamtui.models import SubtitleDescriptor, SubtitleFormat
from streamtui.providers.base import SubtitleProvider

log = logging.getLogger(__name__)

MAIN_URL = "https://api.opensubtitles.com/api/v1"
HTTP_TIMEOUT = 30.0

HEADERS = {
    "User-Agent": "streamtui v0.3",
    "Accept": "application/json",
}


def _imdb_number(imdb_id: str) -> str:
    """OpenSubtitles wants the numeric part without leading zeros."""
    digits = imdb_id.removeprefix("tt")
    return str(int(digits)) if digits.isdigit() else digits


def _check(res: httpx.Response, what: str) -> None:
    if res.status_code == 429:
        raise RateLimited(f"OpenSubtitles rate limit hit ({what})")
    if res.status_code in (401, 403):
        raise AuthFailed(f"OpenSubtitles refused the request ({what})")
    if res.status_code == 404:
        raise NotFound(f"{what} not found")
    if res.status_code >= 500:
        raise ServerError(res.status_code)
    if not res.is_success:
        raise ProtocolError(f"unexpected HTTP {res.status_code} from OpenSubtitles ({what})")


def _to_descriptor(entry: dict) -> SubtitleDescriptor | None:
    attrs = entry.get("attributes") or {}
    files = attrs.get("files") or []
    if not files:
        return None
    first = files[0]
    language = to_three_letter(attrs.get("language") or "")
    return SubtitleDescriptor(
        id=str(entry.get("id", "")),
        url=attrs.get("url") or "",
        language=language,
        language_name=language_name(language),
        release=attrs.get("release") or first.get("file_name") or "",
        fps=attrs.get("fps") or None,
        format=SubtitleFormat.from_filename(first.get("file_name") or ""),
        downloads=int(attrs.get("download_count") or 0),
        trusted=bool(attrs.get("from_trusted")),
        hearing_impaired=bool(attrs.get("hearing_impaired")),
        ai_translated=bool(attrs.get("ai_translated") or attrs.get("machine_translated")),
        file_id=first.get("file_id"),
    )


class OpenSubtitlesProvider(SubtitleProvider):
    """Search OpenSubtitles and fetch subtitle files."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = MAIN_URL,
        client: httpx.AsyncClient | None = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None

    @property
    def name(self) -> str:
        return "OpenSubtitles"

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=HTTP_TIMEOUT, follow_redirects=True)
        return self._client

    def _headers(self) -> dict[str, str]:
        headers = dict(HEADERS)
        if self._api_key:
            headers["Api-Key"] = self._api_key
        return headers

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def search_movie(self, imdb_id: str, lang: str | None = None) -> list[SubtitleDescriptor]:
        """Search subtitles for a movie."""
        return await self._search({"imdb_id": _imdb_number(imdb_id)}, lang)

    async def search_episode(
        self,
        imdb_id: str,
        season: int,
        episode: int,
        lang: str | None = None
    ) -> list[SubtitleDescriptor]:
        """Search subtitles for one TV episode."""
        params = {
            "parent_imdb_id": _imdb_number(imdb_id),
            "season_number": season,
            "episode_number": episode,
        }
        return await self._search(params, lang)

    async def _search(self, params: dict[str, Any], lang: str | None) -> list[SubtitleDescriptor]:
        requested = parse_languages(lang)
        if requested:
            params["languages"] = ",".join(sorted({to_two_letter(c) for c in requested}))

        url = f"{self._base_url}/subtitles"
        log.debug("GET %s %s", url, params)
        try:
            res = await self._ensure_client().get(url, params=params, headers=self._headers())
        except httpx.HTTPError as e:
            raise TransportError(e) from e
        _check(res, "subtitle search")

        try:
            data = res.json()
        except ValueError as e:
            raise ProtocolError(f"invalid JSON from OpenSubtitles: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            raise ProtocolError("OpenSubtitles response has no data list")

        results = []
        for entry in data["data"]:
            descriptor = _to_descriptor(entry)
            if descriptor and matches_language(descriptor.language, requested):
                results.append(descriptor)
        return results

    async def _resolve_link(self, descriptor: SubtitleDescriptor) -> str:
        """Exchange a file id for a temporary download link."""
        url = f"{self._base_url}/download"
        try:
            res = await self._ensure_client().post(
                url, json={"file_id": descriptor.file_id}, headers=self._headers()
            )
        except httpx.HTTPError as e:
            raise TransportError(e) from e
        _check(res, "subtitle download link")

        try:
            link = res.json().get("link")
        except (ValueError, AttributeError) as e:
            raise ProtocolError(f"invalid download response: {e}") from e
        if not link:
            raise ProtocolError("download response has no link")
        return link

    async def fetch(self, descriptor: SubtitleDescriptor) -> bytes:
        """Fetch the raw subtitle bytes."""
        url = descriptor.url
        if descriptor.file_id is not None:
            url = await self._resolve_link(descriptor)
        if not url:
            raise ProtocolError(f"subtitle {descriptor.id} has no download URL")

        log.debug("Downloading subtitle %s from %s", descriptor.id, url)
        try:
            res = await self._ensure_client().get(url)
        except httpx.HTTPError as e:
            raise TransportError(e) from e
        _check(res, "subtitle file")
        return res.content
