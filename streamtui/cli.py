"""StreamTUI CLI - Main command-line interface."""

import asyncio
import functools
import json
import logging
import re
from enum import IntEnum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from streamtui import __version__, ranker
from streamtui.cast import find_catt
from streamtui.config import get_cache_dir
from streamtui.dispatcher import CastTarget, LocalTarget, PlaybackSession, Target
from streamtui.errors import (
    DeviceNotFound, InvalidArgs, NoSession, NotFound, PlayerUnavailable, StreamTuiError
)
from streamtui.languages import parse_languages
from streamtui.models import (
    CastDevice, MovieDetail, PlaybackStatus, Quality, SearchResult, StreamSource,
    SubtitleDescriptor, TvDetail, format_clock, is_imdb_id, to_jsonable
)
from streamtui.player import get_available_players
from streamtui.services import Services, build_services

log = logging.getLogger(__name__)

T = TypeVar("T")


class ExitCode(IntEnum):
    Success = 0
    Error = 1
    NoResults = 2
    InvalidArgs = 3
    NotFound = 4
    DeviceNotFound = 5
    CastFailed = 6
    NoSession = 7


_ERROR_EXIT_CODES: list[tuple[type[StreamTuiError], ExitCode]] = [
    (InvalidArgs, ExitCode.InvalidArgs),
    (NotFound, ExitCode.NotFound),
    (DeviceNotFound, ExitCode.DeviceNotFound),
    (PlayerUnavailable, ExitCode.CastFailed),
    (NoSession, ExitCode.NoSession),
]


def exit_code_for(error: StreamTuiError, failure: ExitCode = ExitCode.Error) -> ExitCode:
    for cls, code in _ERROR_EXIT_CODES:
        if isinstance(error, cls):
            return code
    return failure


# ===== VALIDATORS =====

_QUALITY_NAMES = {
    "4k": Quality.UHD_4K,
    "2160p": Quality.UHD_4K,
    "1080p": Quality.FHD_1080P,
    "720p": Quality.HD_720P,
    "480p": Quality.SD_480P,
}

_RELATIVE_RE = re.compile(r"[+-]\d+")
_CLOCK_RE = re.compile(r"(?:(\d+):)?(\d{1,2}):(\d{2})")


def validate_imdb_id(value: str) -> str:
    value = value.strip()
    if not is_imdb_id(value):
        raise InvalidArgs(f"invalid IMDb id {value!r} (expected tt followed by at least 7 digits)")
    return value


def parse_quality(value: str) -> Quality:
    quality = _QUALITY_NAMES.get(value.strip().lower())
    if quality is None:
        raise InvalidArgs(f"invalid quality {value!r} (expected 4K, 1080p, 720p or 480p)")
    return quality


def parse_seek(value: str) -> tuple[float, bool]:
    """
    Parse a seek position: `90`, `+30`/`-60` (relative) or `HH:MM:SS`/`MM:SS`.
    Returns (seconds, relative).
    """
    value = value.strip()
    if _RELATIVE_RE.fullmatch(value):
        return float(int(value)), True
    if value.isdigit():
        return float(value), False
    match = _CLOCK_RE.fullmatch(value)
    if match:
        hours, minutes, seconds = (int(g) if g else 0 for g in match.groups())
        if minutes < 60 and seconds < 60:
            return float(hours * 3600 + minutes * 60 + seconds), False
    raise InvalidArgs(f"invalid seek position {value!r} (use seconds, +/-seconds or HH:MM:SS)")


def parse_volume(value: str) -> tuple[int, bool]:
    """Parse a volume level `0..100` or a relative `+10`/`-10`. Returns (level, relative)."""
    value = value.strip()
    if _RELATIVE_RE.fullmatch(value):
        return int(value), True
    if value.isdigit() and 0 <= int(value) <= 100:
        return int(value), False
    raise InvalidArgs(f"invalid volume {value!r} (use 0-100 or +/-N)")


def validate_episode(season: Optional[int], episode: Optional[int]) -> None:
    if (season is None) != (episode is None):
        raise InvalidArgs("--season and --episode must be given together")


# ===== OUTPUT =====

class Output:
    """Human output through rich, or one JSON value per command with --json."""

    def __init__(self, json_mode: bool = False, quiet: bool = False, no_color: bool = False):
        self.json = json_mode
        self.quiet = quiet
        self.console = Console(no_color=no_color, highlight=False)
        self.err_console = Console(stderr=True, no_color=no_color, highlight=False)

    def data(self, value: Any) -> None:
        click.echo(json.dumps(to_jsonable(value), ensure_ascii=False))

    def info(self, message: str) -> None:
        if not (self.json or self.quiet):
            self.err_console.print(f"[dim]{message}[/]")

    def success(self, message: str) -> None:
        if self.json:
            self.data({"ok": True, "message": message})
        elif not self.quiet:
            self.console.print(f"[green]✓ {message}[/]")

    def error(self, error: StreamTuiError) -> None:
        if self.json:
            self.data({"ok": False, "error": error.kind, "detail": error.detail})
        else:
            self.err_console.print(f"[red]{error.kind}: {error.detail}[/]")

    def empty(self, message: str) -> None:
        if self.json:
            self.data([])
        elif not self.quiet:
            self.console.print(f"[yellow]{message}[/]")


# ===== DISPLAY HELPERS =====

def display_results_table(out: Output, items: list[SearchResult], title: str = "Results"):
    """Display a table of search results."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", width=8)
    table.add_column("Title", style="cyan")
    table.add_column("Year", width=6)
    table.add_column("Type", style="green", width=8)
    table.add_column("Rating", style="yellow", width=6)

    for item in items:
        table.add_row(
            str(item.id),
            item.title or "(No title)",
            str(item.year or ""),
            item.media_type.label,
            f"{item.rating:.1f}",
        )
    out.console.print(table)


def display_detail(out: Output, detail: MovieDetail | TvDetail):
    """Display movie or show details."""
    subtitle = f"[dim]{detail.year or 'N/A'}[/] • [yellow]★ {detail.rating:.1f}[/] • {detail.imdb_id}"
    if detail.runtime:
        subtitle += f" • {detail.runtime} min"
    out.console.print(Panel(f"[bold cyan]{detail.title}[/]", subtitle=subtitle))

    if detail.genres:
        out.console.print(f"[magenta]{', '.join(detail.genres)}[/]")
    if detail.overview:
        out.console.print(f"\n[dim]{detail.overview}[/]\n")

    if isinstance(detail, TvDetail) and detail.seasons:
        table = Table(title=f"Seasons ({len(detail.seasons)})", show_header=True)
        table.add_column("S", style="magenta", width=4)
        table.add_column("Name", style="cyan")
        table.add_column("Episodes", style="green", width=9)
        table.add_column("Aired", style="dim", width=12)
        for season in detail.seasons:
            table.add_row(
                str(season.number),
                season.name or f"Season {season.number}",
                str(season.episode_count),
                season.air_date or "",
            )
        out.console.print(table)


def display_streams(out: Output, sources: list[StreamSource]):
    table = Table(title=f"Sources ({len(sources)})", show_header=True, header_style="bold magenta")
    table.add_column("#", style="dim", width=4)
    table.add_column("Quality", style="green", width=8)
    table.add_column("Size", width=9)
    table.add_column("Seeds", style="yellow", width=6)
    table.add_column("Release", style="cyan")

    for i, source in enumerate(sources):
        table.add_row(str(i), str(source.quality), source.format_size(), str(source.seeds), source.title_line)
    out.console.print(table)


def display_subtitles(out: Output, subtitles: list[SubtitleDescriptor]):
    table = Table(title=f"Subtitles ({len(subtitles)})", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Language", style="green")
    table.add_column("Release", style="cyan")
    table.add_column("Downloads", style="yellow")
    table.add_column("Flags", width=8)

    for sub in subtitles:
        flags = " ".join(f for f, on in (("✓", sub.trusted), ("HI", sub.hearing_impaired), ("AI", sub.ai_translated)) if on)
        table.add_row(sub.id, sub.language_name, sub.release, str(sub.downloads), flags)
    out.console.print(table)


def display_devices(out: Output, devices: list[CastDevice]):
    table = Table(title="Cast devices", show_header=True, header_style="bold magenta")
    table.add_column("Name", style="cyan")
    table.add_column("Address", style="dim")
    table.add_column("Model", style="green")
    for device in devices:
        table.add_row(device.name, f"{device.address}:{device.port}", device.model or "")
    out.console.print(table)


def display_status(out: Output, status: PlaybackStatus):
    line = f"[bold]{status.state.value.capitalize()}[/]"
    if status.title:
        line += f" • [cyan]{status.title}[/]"
    out.console.print(line)
    out.console.print(
        f"{format_clock(status.position)} / {format_clock(status.duration)}"
        f" • Volume {round(status.volume * 100)}%"
    )


# ===== ASYNC RUNNERS =====

def run_async(coro):
    """Run an async function."""
    return asyncio.run(coro)


def get_output() -> Output:
    return click.get_current_context().find_root().obj["output"]


def get_services() -> Services:
    obj = click.get_current_context().find_root().obj
    if obj.get("services") is None:
        obj["services"] = build_services()
    return obj["services"]


def with_services(fn: Callable[[Services], Awaitable[T]]) -> T:
    """Run `fn` on a fresh event loop and close the HTTP clients afterwards."""
    services = get_services()

    async def runner():
        try:
            return await fn(services)
        finally:
            await services.aclose()

    return run_async(runner())


def handle_errors(failure: ExitCode = ExitCode.Error):
    """Turn StreamTuiError into output plus the mapped exit code."""
    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                code = fn(*args, **kwargs)
            except StreamTuiError as e:
                log.debug("Command failed", exc_info=True)
                get_output().error(e)
                code = exit_code_for(e, failure)
            click.get_current_context().exit(int(code or ExitCode.Success))
        return wrapper
    return decorator


def json_option(fn):
    """Per-command --json, same as the global flag."""
    def enable(ctx, param, value):
        if value:
            ctx.find_root().obj["output"].json = True
        return value
    return click.option(
        "--json", "as_json", is_flag=True, expose_value=False, callback=enable,
        help="Machine-readable output",
    )(fn)


def configure_logging(verbose: bool = False, quiet: bool = False, log_file: Path | None = None) -> None:
    """Log to stderr through rich, or to a file while the TUI owns the screen."""
    logger = logging.getLogger("streamtui")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    if log_file is not None:
        level = logging.DEBUG if verbose else logging.INFO
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError:
            handler = logging.NullHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    else:
        level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
        handler = RichHandler(console=Console(stderr=True), show_path=False, show_time=verbose)

    logger.setLevel(level)
    logger.addHandler(handler)
    logger.propagate = False


# ===== CLI COMMANDS =====

class UsageFailure(click.ClickException):
    """A click usage error reported like any other InvalidArgs."""

    exit_code = int(ExitCode.InvalidArgs)

    def __init__(self, error: click.UsageError, output: Output):
        super().__init__(error.format_message())
        self.output = output

    def show(self, file=None) -> None:
        self.output.error(InvalidArgs(self.message))


class StreamTuiGroup(click.Group):
    """Routes usage errors through Output with the InvalidArgs exit code."""

    def make_context(self, info_name, args, parent=None, **extra):
        json_requested = "--json" in args
        try:
            ctx = super().make_context(info_name, list(args), parent=parent, **extra)
        except click.UsageError as e:
            raise UsageFailure(e, Output(json_requested, no_color="--no-color" in args)) from e
        ctx.meta["json_requested"] = json_requested
        return ctx

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except click.UsageError as e:
            output = ctx.ensure_object(dict).get("output") or Output()
            if ctx.meta.get("json_requested"):
                output.json = True
            raise UsageFailure(e, output) from e


@click.group(cls=StreamTuiGroup, invoke_without_command=True)
@click.option("--json", "as_json", is_flag=True, help="Machine-readable output")
@click.option("--quiet", "-q", is_flag=True, help="Only print results and errors")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.option("--device", "-d", default=None, help="Cast device name")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.version_option(__version__, "--version", prog_name="StreamTUI")
@click.pass_context
def main(ctx, as_json: bool, quiet: bool, no_color: bool, device: Optional[str], verbose: bool):
    """StreamTUI - Search, stream and cast from your terminal."""
    ctx.ensure_object(dict)
    ctx.obj["output"] = Output(as_json, quiet, no_color)
    ctx.obj["device"] = device

    if ctx.invoked_subcommand is None:
        from streamtui.tui import run_tui

        configure_logging(verbose, log_file=get_cache_dir() / "streamtui.log")
        with_services(run_tui)
        return

    configure_logging(verbose, quiet)


@main.command()
@click.argument("query")
@click.option("--type", "media_type", type=click.Choice(["movie", "tv"]), default=None, help="Only movies or TV shows")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=20, show_default=True)
@json_option
@handle_errors()
def search(query: str, media_type: Optional[str], limit: int):
    """Search movies and TV shows."""
    out = get_output()
    out.info(f"Searching for '{query}'...")

    results = with_services(lambda s: s.metadata.search(query))
    if media_type:
        results = [r for r in results if r.media_type.value == media_type]
    results = results[:limit]

    if not results:
        out.empty("No results found")
        return ExitCode.NoResults
    if out.json:
        out.data(results)
    else:
        display_results_table(out, results, f"Results for '{query}'")
    return ExitCode.Success


@main.command()
@click.option("--window", type=click.Choice(["day", "week"]), default="day", show_default=True)
@click.option("--type", "media_type", type=click.Choice(["movie", "tv"]), default=None, help="Only movies or TV shows")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=20, show_default=True)
@json_option
@handle_errors()
def trending(window: str, media_type: Optional[str], limit: int):
    """Show trending movies and TV shows."""
    out = get_output()
    results = with_services(lambda s: s.metadata.trending(window))
    if media_type:
        results = [r for r in results if r.media_type.value == media_type]
    results = results[:limit]

    if not results:
        out.empty("Nothing trending")
        return ExitCode.NoResults
    if out.json:
        out.data(results)
    else:
        display_results_table(out, results, f"Trending this {window}")
    return ExitCode.Success


@main.command()
@click.argument("tmdb_id", type=int)
@click.option("--type", "media_type", type=click.Choice(["movie", "tv"]), default=None, help="Look up as movie or TV show")
@json_option
@handle_errors()
def info(tmdb_id: int, media_type: Optional[str]):
    """Show details for a TMDB id."""
    out = get_output()

    async def fetch(s: Services):
        if media_type == "tv":
            return await s.metadata.tv_detail(tmdb_id)
        if media_type == "movie":
            return await s.metadata.movie_detail(tmdb_id)
        try:
            return await s.metadata.movie_detail(tmdb_id)
        except NotFound:
            return await s.metadata.tv_detail(tmdb_id)

    detail = with_services(fetch)
    if out.json:
        out.data(detail)
    else:
        display_detail(out, detail)
    return ExitCode.Success


@main.command()
@click.argument("imdb_id")
@click.option("--quality", default=None, help="Minimum quality (4K, 1080p, 720p, 480p)")
@click.option("--season", "-s", type=click.IntRange(min=0), default=None)
@click.option("--episode", "-e", type=click.IntRange(min=1), default=None)
@click.option("--limit", "-n", type=click.IntRange(min=1), default=None)
@json_option
@handle_errors()
def streams(imdb_id: str, quality: Optional[str], season: Optional[int], episode: Optional[int], limit: Optional[int]):
    """List torrent sources, best first."""
    out = get_output()
    imdb_id = validate_imdb_id(imdb_id)
    minimum = parse_quality(quality) if quality else None
    validate_episode(season, episode)

    sources = with_services(lambda s: fetch_sources(s, imdb_id, season, episode))
    if minimum is not None:
        sources = ranker.filter_min_quality(sources, minimum)
    if limit:
        sources = sources[:limit]

    if not sources:
        out.empty("No sources found")
        return ExitCode.NoResults
    if out.json:
        out.data(sources)
    else:
        display_streams(out, sources)
    return ExitCode.Success


async def fetch_sources(s: Services, imdb_id: str, season: Optional[int], episode: Optional[int]) -> list[StreamSource]:
    if season is not None and episode is not None:
        return await s.streams.episode_streams(imdb_id, season, episode)
    return await s.streams.movie_streams(imdb_id)


@main.command()
@click.argument("imdb_id")
@click.option("--season", "-s", type=click.IntRange(min=0), default=None)
@click.option("--episode", "-e", type=click.IntRange(min=1), default=None)
@click.option("--lang", "-l", default=None, help="Language codes, e.g. eng,spa (default: from config)")
@click.option("--hearing-impaired/--no-hearing-impaired", default=None, help="Only (or never) hearing-impaired subtitles")
@click.option("--trusted", is_flag=True, help="Only subtitles from trusted uploaders")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=None)
@json_option
@handle_errors()
def subtitles(
    imdb_id: str,
    season: Optional[int],
    episode: Optional[int],
    lang: Optional[str],
    hearing_impaired: Optional[bool],
    trusted: bool,
    limit: Optional[int]
):
    """Search subtitles for a movie or episode."""
    out = get_output()
    imdb_id = validate_imdb_id(imdb_id)
    validate_episode(season, episode)

    async def search(s: Services):
        languages = lang or ",".join(s.config.config.subtitle_languages)
        return await s.subtitles.search(imdb_id, season, episode, languages, hearing_impaired, trusted)

    results = with_services(search)
    if limit:
        results = results[:limit]

    if not results:
        out.empty("No subtitles found")
        return ExitCode.NoResults
    if out.json:
        out.data(results)
    else:
        display_subtitles(out, results)
    return ExitCode.Success


@main.command()
@json_option
@handle_errors(failure=ExitCode.DeviceNotFound)
def devices():
    """Scan the network for cast devices."""
    out = get_output()
    out.info("Scanning for devices...")
    found = with_services(lambda s: s.cast.scan())

    if not found:
        if out.json:
            out.data([])
        else:
            out.console.print("[yellow]No devices found[/]")
        return ExitCode.DeviceNotFound
    if out.json:
        out.data(found)
    else:
        display_devices(out, found)
    return ExitCode.Success


# ===== PLAYBACK =====

def choose_source(sources: list[StreamSource], index: Optional[int], quality: Optional[Quality]) -> StreamSource:
    """Pick by position in the `streams` listing, else by preferred quality."""
    if index is not None:
        if not 0 <= index < len(sources):
            raise InvalidArgs(f"stream index {index} out of range (0-{len(sources) - 1})")
        return sources[index]
    return ranker.pick_preferred(sources, quality)


async def choose_subtitle(
    s: Services,
    imdb_id: str,
    season: Optional[int],
    episode: Optional[int],
    subtitle_id: Optional[str],
    lang: Optional[str],
) -> Optional[SubtitleDescriptor]:
    """Find a subtitle by id, or the most trusted one for `lang`."""
    if not subtitle_id and not lang:
        return None
    languages = lang or ",".join(s.config.config.subtitle_languages)
    found = await s.subtitles.search(imdb_id, season, episode, languages)
    if subtitle_id:
        for sub in found:
            if sub.id == subtitle_id:
                return sub
        raise InvalidArgs(f"subtitle {subtitle_id!r} not found for {imdb_id}")
    return found[0] if found else None


async def play_in_foreground(
    s: Services,
    out: Output,
    start: Callable[[], Awaitable[PlaybackSession]],
) -> None:
    """Start playback, report it, and keep the stream alive until playback ends."""
    session = await start()
    payload = {
        "ok": True,
        "target": str(session.target),
        "title": session.title,
        "stream_url": session.stream_url,
        "source": session.source,
        "subtitle": str(session.subtitle_path) if session.subtitle_path else None,
    }
    if out.json:
        out.data(payload)
    elif not out.quiet:
        out.console.print(f"[green]▶ Playing: {session.title or session.stream_url}[/]")
        out.console.print(f"[dim]Target: {session.target} | Stream: {session.stream_url}[/]")
        out.console.print("[dim]Press Ctrl+C to stop[/]")
    try:
        await s.dispatcher.wait()
    finally:
        await s.dispatcher.stop()


def resolve_device_name(s: Services, device: Optional[str]) -> str:
    root = click.get_current_context().find_root().obj
    name = device or root.get("device") or s.config.config.default_device
    if not name:
        raise DeviceNotFound("no device specified. Use --device or set default_device in the config")
    return name


def _play_command(
    imdb_id: str,
    season: Optional[int],
    episode: Optional[int],
    quality: Optional[str],
    index: Optional[int],
    subtitle_id: Optional[str],
    lang: Optional[str],
    target_for: Callable[[Services], Awaitable[Target]],
) -> ExitCode:
    out = get_output()
    imdb_id = validate_imdb_id(imdb_id)
    validate_episode(season, episode)
    wanted = parse_quality(quality) if quality else None

    async def run(s: Services):
        target = await target_for(s)
        preferred = wanted or _config_quality(s)
        out.info(f"Finding sources for {imdb_id}...")
        sources = await fetch_sources(s, imdb_id, season, episode)
        if not sources:
            return None
        source = choose_source(sources, index, preferred)
        out.info(f"Selected [{source.quality}] {source.title_line} ({source.seeds} seeds)")
        subtitle = await choose_subtitle(s, imdb_id, season, episode, subtitle_id, lang)
        if subtitle:
            out.info(f"Subtitles: {subtitle}")
        await play_in_foreground(s, out, lambda: s.dispatcher.start(source, target, subtitle))
        return source

    try:
        played = with_services(run)
    except KeyboardInterrupt:
        return ExitCode.Success
    if played is None:
        out.empty("No sources found")
        return ExitCode.NoResults
    return ExitCode.Success


def _config_quality(s: Services) -> Optional[Quality]:
    try:
        return parse_quality(s.config.config.preferred_quality)
    except InvalidArgs:
        log.warning("Ignoring invalid preferred_quality %r", s.config.config.preferred_quality)
        return None


@main.command()
@click.argument("imdb_id")
@click.option("--device", "-d", default=None, help="Cast device name (default: from config)")
@click.option("--quality", default=None, help="Preferred quality (4K, 1080p, 720p, 480p)")
@click.option("--index", "-i", type=click.IntRange(min=0), default=None, help="Pick a source by its # in `streams`")
@click.option("--subtitles", "subtitle_id", default=None, help="Subtitle id from `subtitles`")
@click.option("--lang", "-l", default=None, help="Use the best subtitle in these languages")
@click.option("--season", "-s", type=click.IntRange(min=0), default=None)
@click.option("--episode", "-e", type=click.IntRange(min=1), default=None)
@json_option
@handle_errors(failure=ExitCode.CastFailed)
def cast(
    imdb_id: str,
    device: Optional[str],
    quality: Optional[str],
    index: Optional[int],
    subtitle_id: Optional[str],
    lang: Optional[str],
    season: Optional[int],
    episode: Optional[int]
):
    """Stream a movie or episode to a cast device."""
    async def target_for(s: Services) -> Target:
        name = resolve_device_name(s, device)
        get_output().info(f"Looking for {name}...")
        found = await s.cast.find_device(name)
        return CastTarget(found.name)

    return _play_command(imdb_id, season, episode, quality, index, subtitle_id, lang, target_for)


@main.command("play-local")
@click.argument("imdb_id")
@click.option("--player", type=click.Choice(["vlc", "mpv"]), default=None, help="Player to use (default: from config)")
@click.option("--quality", default=None, help="Preferred quality (4K, 1080p, 720p, 480p)")
@click.option("--index", "-i", type=click.IntRange(min=0), default=None, help="Pick a source by its # in `streams`")
@click.option("--subtitles", "subtitle_id", default=None, help="Subtitle id from `subtitles`")
@click.option("--lang", "-l", default=None, help="Use the best subtitle in these languages")
@click.option("--season", "-s", type=click.IntRange(min=0), default=None)
@click.option("--episode", "-e", type=click.IntRange(min=1), default=None)
@json_option
@handle_errors(failure=ExitCode.CastFailed)
def play_local(
    imdb_id: str,
    player: Optional[str],
    quality: Optional[str],
    index: Optional[int],
    subtitle_id: Optional[str],
    lang: Optional[str],
    season: Optional[int],
    episode: Optional[int]
):
    """Play a movie or episode in VLC or mpv."""
    async def target_for(s: Services) -> Target:
        return LocalTarget(player or s.config.config.default_player)

    return _play_command(imdb_id, season, episode, quality, index, subtitle_id, lang, target_for)


@main.command("cast-magnet")
@click.argument("magnet")
@click.option("--device", "-d", default=None, help="Cast device name (default: from config)")
@click.option("--local", "local_player", is_flag=True, help="Play locally instead of casting")
@click.option("--player", type=click.Choice(["vlc", "mpv"]), default=None, help="Local player (with --local)")
@click.option("--file-idx", type=click.IntRange(min=0), default=None, help="File index inside the torrent")
@click.option("--subtitle-file", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None)
@json_option
@handle_errors(failure=ExitCode.CastFailed)
def cast_magnet(
    magnet: str,
    device: Optional[str],
    local_player: bool,
    player: Optional[str],
    file_idx: Optional[int],
    subtitle_file: Optional[Path]
):
    """Stream a raw magnet link."""
    out = get_output()
    if not magnet.startswith("magnet:?"):
        raise InvalidArgs("invalid magnet link, it must start with 'magnet:?'")

    async def run(s: Services):
        if local_player:
            target: Target = LocalTarget(player or s.config.config.default_player)
        else:
            target = CastTarget((await s.cast.find_device(resolve_device_name(s, device))).name)
        await play_in_foreground(
            s, out, lambda: s.dispatcher.start_magnet(magnet, target, file_idx, subtitle_file)
        )

    try:
        with_services(run)
    except KeyboardInterrupt:
        pass
    return ExitCode.Success


# ===== TRANSPORT =====

async def _restored(s: Services) -> PlaybackSession:
    session = s.dispatcher.restore()
    if session is None:
        raise NoSession()
    return session


@main.command("play")
@handle_errors()
def play_cmd():
    """Resume playback."""
    async def run(s: Services):
        await _restored(s)
        await s.dispatcher.play()

    with_services(run)
    get_output().success("Playing")
    return ExitCode.Success


@main.command()
@handle_errors()
def pause():
    """Pause playback."""
    async def run(s: Services):
        await _restored(s)
        await s.dispatcher.pause()

    with_services(run)
    get_output().success("Paused")
    return ExitCode.Success


@main.command()
@click.option("--kill-stream", is_flag=True, help="Also stop the torrent stream")
@handle_errors()
def stop(kill_stream: bool):
    """Stop playback."""
    async def run(s: Services):
        await _restored(s)
        await s.dispatcher.stop(kill_stream=kill_stream)

    with_services(run)
    get_output().success("Stopped" + (" and closed the stream" if kill_stream else ""))
    return ExitCode.Success


@main.command(context_settings={"ignore_unknown_options": True})
@click.argument("position")
@handle_errors()
def seek(position: str):
    """Seek to SECONDS, +/-SECONDS or HH:MM:SS."""
    value, relative = parse_seek(position)

    async def run(s: Services):
        await _restored(s)
        if relative:
            await s.dispatcher.status()
        return await s.dispatcher.seek(value, relative=relative)

    target = with_services(run)
    get_output().success(f"Seeked to {format_clock(target)}")
    return ExitCode.Success


@main.command(context_settings={"ignore_unknown_options": True})
@click.argument("level")
@handle_errors()
def volume(level: str):
    """Set the volume to 0-100 or change it by +/-N."""
    value, relative = parse_volume(level)

    async def run(s: Services):
        await _restored(s)
        if relative:
            await s.dispatcher.status()
        return await s.dispatcher.set_volume(value, relative=relative)

    target = with_services(run)
    get_output().success(f"Volume {target}%")
    return ExitCode.Success


@main.command()
@json_option
@handle_errors()
def status():
    """Show the playback status."""
    out = get_output()

    async def run(s: Services):
        s.dispatcher.restore()
        return await s.dispatcher.status()

    try:
        current = with_services(run)
    except StreamTuiError as e:
        log.warning("Status unavailable: %s", e.detail)
        current = PlaybackStatus(error=e.detail)
    if out.json:
        out.data(current)
    else:
        display_status(out, current)
    return ExitCode.Success


@main.command()
@click.option("--show", is_flag=True, help="Show current configuration")
@click.option("--device", default=None, help="Set default cast device")
@click.option("--quality", default=None, help="Set preferred quality")
@click.option("--languages", default=None, help="Set subtitle languages, e.g. eng,spa")
@click.option("--player", type=click.Choice(["mpv", "vlc"]), help="Set default player")
@json_option
@handle_errors()
def config(show: bool, device: Optional[str], quality: Optional[str], languages: Optional[str], player: Optional[str]):
    """View or edit configuration."""
    out = get_output()
    store = get_services().config

    changes: dict[str, Any] = {}
    if device:
        changes["default_device"] = device
    if quality:
        changes["preferred_quality"] = str(parse_quality(quality))
    if languages:
        changes["subtitle_languages"] = parse_languages(languages)
    if player:
        changes["default_player"] = player

    if show or not changes:
        players = get_available_players()
        catt = find_catt()
        cfg = store.config
        if out.json:
            data = {k: v for k, v in to_jsonable(cfg).items() if not k.endswith("api_key")}
            data.update(players_found=players, catt=catt)
            out.data(data)
            return ExitCode.Success
        table = Table(title="Configuration")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Config File", str(store.path))
        table.add_row("Default Device", cfg.default_device or "(none)")
        table.add_row("Default Player", cfg.default_player)
        table.add_row("Preferred Quality", cfg.preferred_quality)
        table.add_row("Subtitle Languages", ", ".join(cfg.subtitle_languages) or "(any)")
        table.add_row("Players Found", ", ".join(players) or "(none)")
        table.add_row("catt", catt or "(not found)")
        out.console.print(table)
        return ExitCode.Success

    store.update(**changes)
    out.success("Configuration saved")
    return ExitCode.Success


if __name__ == "__main__":
    main()
