"""Local player (VLC / mpv) adapter."""

import os
import shutil
from pathlib import Path
from typing import Literal

from streamtui.errors import InvalidArgs, PlayerUnavailable

PlayerName = Literal["vlc", "mpv"]
PLAYERS: tuple[PlayerName, ...] = ("vlc", "mpv")


def find_player(player: PlayerName) -> str | None:
    """Find player executable path."""
    if player == "mpv":
        paths = ["mpv", "mpv.exe"]
    elif player == "vlc":
        paths = [
            "vlc",
            "vlc.exe",
            "/Applications/VLC.app/Contents/MacOS/VLC",
            r"C:\Program Files\VideoLAN\VLC\vlc.exe",
            r"C:\Program Files (x86)\VideoLAN\VLC\vlc.exe",
        ]
    else:
        return None

    for p in paths:
        found = shutil.which(p)
        if found:
            return found
        # Absolute install locations are not on PATH
        if os.path.isabs(p) and os.path.isfile(p):
            return p
    return None


def require_player(player: PlayerName) -> str:
    """Like find_player, but a missing binary raises PlayerUnavailable."""
    if player not in PLAYERS:
        raise InvalidArgs(f"unknown player {player!r}; expected vlc or mpv")
    path = find_player(player)
    if not path:
        raise PlayerUnavailable(player)
    return path


def build_mpv_args(
    url: str,
    subtitle: Path | None = None,
    extra_args: list[str] | None = None,
    binary: str = "mpv"
) -> list[str]:
    """Build mpv command arguments."""
    args = [binary, url]
    if subtitle:
        # mpv only accepts the `=` form
        args.append(f"--sub-file={subtitle}")
    args.append("--force-window=immediate")
    if extra_args:
        args.extend(extra_args)
    return args


def build_vlc_args(
    url: str,
    subtitle: Path | None = None,
    extra_args: list[str] | None = None,
    binary: str = "vlc"
) -> list[str]:
    """Build VLC command arguments."""
    args = [binary, url]
    if subtitle:
        args.extend(["--sub-file", str(subtitle)])
    args.append("--no-video-title-show")
    if extra_args:
        args.extend(extra_args)
    return args


def build_player_args(
    player: PlayerName,
    url: str,
    subtitle: Path | None = None,
    extra_args: list[str] | None = None,
    binary: str | None = None
) -> list[str]:
    if player == "mpv":
        return build_mpv_args(url, subtitle, extra_args, binary or "mpv")
    return build_vlc_args(url, subtitle, extra_args, binary or "vlc")


def get_available_players() -> list[str]:
    """Get list of available players."""
    return [p for p in PLAYERS if find_player(p) is not None]
