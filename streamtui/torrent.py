"""Torrent helper (webtorrent-cli) adapter."""

import asyncio
import logging
import re
import shutil
import socket
from urllib.parse import urlsplit, urlunsplit

from streamtui.errors import TorrentFailed

log = logging.getLogger(__name__)

DEFAULT_PORT = 8888
STREAM_URL_TIMEOUT = 60.0

ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")
URL_RE = re.compile(r"https?://[^\s'\"<>]+")

LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}


def find_webtorrent() -> str | None:
    """Find webtorrent executable."""
    for name in ("webtorrent", "webtorrent.cmd"):
        path = shutil.which(name)
        if path:
            return path
    return None


def build_torrent_args(
    magnet: str,
    port: int = DEFAULT_PORT,
    file_idx: int | None = None,
    binary: str = "webtorrent"
) -> list[str]:
    """Build webtorrent command arguments."""
    args = [binary, "download", magnet, "--port", str(port)]
    if file_idx is not None:
        args.extend(["-s", str(file_idx)])
    args.append("--keep-seeding")
    return args


def extract_stream_url(line: str) -> str | None:
    """Return the first http(s) URL in a line of helper output, ANSI colours removed."""
    match = URL_RE.search(ANSI_RE.sub("", line))
    if not match:
        return None
    return match.group(0).rstrip(".,;)")


async def wait_for_stream_url(stdout: asyncio.StreamReader, timeout: float = STREAM_URL_TIMEOUT) -> str:
    """
    Scan helper output until it prints a stream URL.

    Raises TorrentFailed if the helper closes its output first or nothing
    shows up within `timeout` seconds.
    """
    async def scan() -> str:
        while True:
            raw = await stdout.readline()
            if not raw:
                raise TorrentFailed("torrent helper exited before printing a stream URL")
            line = raw.decode("utf-8", errors="replace")
            log.debug("webtorrent: %s", line.rstrip())
            url = extract_stream_url(line)
            if url:
                return url

    try:
        return await asyncio.wait_for(scan(), timeout=timeout)
    except asyncio.TimeoutError:
        raise TorrentFailed(f"no stream URL after {timeout:.0f}s") from None


async def drain(stdout: asyncio.StreamReader) -> None:
    """Keep reading helper output so its pipe never fills up."""
    while True:
        raw = await stdout.readline()
        if not raw:
            return
        log.debug("webtorrent: %s", raw.decode("utf-8", errors="replace").rstrip())


def lan_address() -> str:
    """Best guess at this machine's LAN address (no packets are sent)."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(("10.255.255.255", 1))
        return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        sock.close()


def reachable_url(url: str, address: str | None = None) -> str:
    """Rewrite a loopback stream URL so a device on the network can fetch it."""
    parts = urlsplit(url)
    if parts.hostname not in LOOPBACK_HOSTS:
        return url
    host = address or lan_address()
    netloc = f"{host}:{parts.port}" if parts.port else host
    return urlunsplit(parts._replace(netloc=netloc))
