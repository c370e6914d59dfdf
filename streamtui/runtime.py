"""Runs App requests as asyncio tasks against the services."""

import asyncio
import logging
from typing import Any, Callable, Iterable

from streamtui.app import App, Cancel, Effect, KeyEvent, Quit, Request, RequestKind
from streamtui.errors import StreamTuiError
from streamtui.models import MediaType
from streamtui.services import Services

log = logging.getLogger(__name__)

STATUS_POLL_INTERVAL = 2.0


class Runtime:
    """
    Executes the App's effects. Each request runs in its own task; a Cancel
    effect cancels the task. Failures become error messages on the owning
    view and never stop the loop.
    """

    def __init__(
        self,
        app: App,
        services: Services,
        on_change: Callable[[], None] | None = None,
        poll_interval: float = STATUS_POLL_INTERVAL,
    ):
        self.app = app
        self.services = services
        self._on_change = on_change
        self._poll_interval = poll_interval
        self._tasks: dict[int, asyncio.Task] = {}
        self._timer: asyncio.Task | None = None
        self.quit_event = asyncio.Event()

    @property
    def in_flight(self) -> list[int]:
        return list(self._tasks)

    def start(self) -> None:
        if self._timer is None:
            self._timer = asyncio.create_task(self._poll_status())

    def handle_key(self, event: KeyEvent) -> None:
        self.apply(self.app.handle_key(event))
        self._changed()

    def apply(self, effects: Iterable[Effect]) -> None:
        for effect in effects:
            if isinstance(effect, Cancel):
                task = self._tasks.pop(effect.request_id, None)
                if task is not None:
                    log.debug("Cancelling request %d", effect.request_id)
                    task.cancel()
            elif isinstance(effect, Request):
                self._tasks[effect.id] = asyncio.create_task(self._run(effect))
            elif isinstance(effect, Quit):
                self.quit_event.set()

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    async def _run(self, request: Request) -> None:
        try:
            value = await self.execute(request)
        except asyncio.CancelledError:
            log.debug("Request %d (%s) cancelled", request.id, request.kind.value)
            raise
        except StreamTuiError as e:
            log.warning("%s request failed: %s", request.kind.value, e.detail)
            effects = self.app.on_error(request.id, f"{e.kind}: {e.detail}")
        except Exception as e:
            log.exception("%s request crashed", request.kind.value)
            effects = self.app.on_error(request.id, f"Error: {e}")
        else:
            effects = self.app.on_result(request.id, value)
        finally:
            self._tasks.pop(request.id, None)
        self.apply(effects)
        self._changed()

    async def execute(self, request: Request) -> Any:
        """Perform one request against the services."""
        p = request.params
        s = self.services
        kind = request.kind

        if kind == RequestKind.SEARCH:
            return await s.metadata.search(p["query"])
        if kind == RequestKind.TRENDING:
            return await s.metadata.trending(p.get("window", "day"))
        if kind == RequestKind.DETAIL:
            if p["media_type"] == MediaType.TV:
                return await s.metadata.tv_detail(p["id"])
            return await s.metadata.movie_detail(p["id"])
        if kind == RequestKind.SEASON:
            return await s.metadata.tv_season(p["tv_id"], p["season"])
        if kind == RequestKind.STREAMS:
            if "season" in p:
                return await s.streams.episode_streams(p["imdb_id"], p["season"], p["episode"])
            return await s.streams.movie_streams(p["imdb_id"])
        if kind == RequestKind.SUBTITLES:
            return await s.subtitles.search(
                p["imdb_id"], p.get("season"), p.get("episode"), p.get("lang")
            )
        if kind == RequestKind.PLAY:
            return await s.dispatcher.start(
                p["source"], p["target"], p.get("subtitle"), p.get("title")
            )
        if kind == RequestKind.TRANSPORT:
            action = p["action"]
            if action == "toggle":
                return await s.dispatcher.toggle_pause()
            if action == "seek":
                return await s.dispatcher.seek(p["value"], relative=True)
            if action == "volume":
                return await s.dispatcher.set_volume(p["value"], relative=True)
            raise ValueError(f"unknown transport action {action!r}")
        if kind == RequestKind.STATUS:
            return await s.dispatcher.status()
        if kind == RequestKind.STOP:
            return await s.dispatcher.stop()
        raise ValueError(f"unknown request kind {kind!r}")

    async def _poll_status(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            effects = self.app.tick()
            if effects:
                self.apply(effects)

    async def shutdown(self) -> None:
        """Cancel everything in flight, stop playback and close the clients."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        if self._timer is not None:
            tasks.append(self._timer)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        try:
            await self.services.dispatcher.stop()
        except StreamTuiError as e:
            log.warning("Failed to stop playback on exit: %s", e)
        await self.services.aclose()
