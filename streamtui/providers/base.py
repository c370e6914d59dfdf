"""Abstract base classes for the content providers the core talks to."""

from abc import ABC, abstractmethod

from streamtui.models import (
    Episode, MovieDetail, SearchResult, StreamSource, SubtitleDescriptor, TvDetail
)


class MetadataProvider(ABC):
    """Catalog of movies and TV shows."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for display."""
        ...

    @abstractmethod
    async def search(self, query: str) -> list[SearchResult]:
        """Search movies and TV shows."""
        ...

    @abstractmethod
    async def trending(self, window: str = "day") -> list[SearchResult]:
        """Trending movies and TV shows for a `day` or `week` window."""
        ...

    @abstractmethod
    async def movie_detail(self, movie_id: int) -> MovieDetail:
        ...

    @abstractmethod
    async def tv_detail(self, tv_id: int) -> TvDetail:
        ...

    @abstractmethod
    async def tv_season(self, tv_id: int, season_number: int) -> list[Episode]:
        ...

    async def aclose(self) -> None:
        """Release pooled connections."""


class StreamIndexProvider(ABC):
    """Index of torrent stream sources keyed by IMDb id. Results come back ranked."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def movie_streams(self, imdb_id: str) -> list[StreamSource]:
        ...

    @abstractmethod
    async def episode_streams(self, imdb_id: str, season: int, episode: int) -> list[StreamSource]:
        ...

    async def aclose(self) -> None:
        """Release pooled connections."""


class SubtitleProvider(ABC):
    """Subtitle search and raw file retrieval."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def search_movie(self, imdb_id: str, lang: str | None = None) -> list[SubtitleDescriptor]:
        ...

    @abstractmethod
    async def search_episode(
        self,
        imdb_id: str,
        season: int,
        episode: int,
        lang: str | None = None
    ) -> list[SubtitleDescriptor]:
        ...

    @abstractmethod
    async def fetch(self, descriptor: SubtitleDescriptor) -> bytes:
        """Fetch the raw subtitle file for a descriptor."""
        ...

    async def aclose(self) -> None:
        """Release pooled connections."""
