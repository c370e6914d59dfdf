"""Cast controller adapter built on the `catt` command line tool."""

import asyncio
import ipaddress
import logging
import shutil
from pathlib import Path
from typing import Awaitable, Callable

from streamtui.errors import DeviceNotFound, TransportError
from streamtui.models import CastDevice, PlaybackState, PlaybackStatus

log = logging.getLogger(__name__)

CATT = "catt"
SCAN_TIMEOUT = 15.0
STATUS_TIMEOUT = 2.0
COMMAND_TIMEOUT = 10.0

_CATT_STATES = {
    "PLAYING": PlaybackState.PLAYING,
    "PAUSED": PlaybackState.PAUSED,
    "BUFFERING": PlaybackState.BUFFERING,
    "IDLE": PlaybackState.IDLE,
    "STOPPED": PlaybackState.STOPPED,
}

# (exit code, combined output)
Runner = Callable[[list[str], float], Awaitable[tuple[int, str]]]


def find_catt() -> str | None:
    return shutil.which(CATT)


def parse_scan(output: str) -> list[CastDevice]:
    """Parse `catt scan` lines of the form `IP - Name - Model`."""
    devices = []
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("Scanning") or "No devices" in line:
            continue
        parts = [p.strip() for p in line.split(" - ", 2)]
        if len(parts) < 2:
            continue
        try:
            ipaddress.ip_address(parts[0])
        except ValueError:
            continue
        devices.append(CastDevice(
            id=parts[0],
            name=parts[1],
            address=parts[0],
            model=parts[2] if len(parts) > 2 else None,
        ))
    return devices


def parse_status(output: str) -> PlaybackStatus:
    """Parse `catt status` output (`Key: value` lines; volume is 0-100)."""
    status = PlaybackStatus()
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip().lower()
        value = value.strip()
        try:
            if key == "state":
                status.state = _CATT_STATES.get(value.upper(), PlaybackState.IDLE)
            elif key == "duration":
                status.duration = float(value)
            elif key == "current time":
                status.position = float(value)
            elif key == "volume":
                status.volume = min(1.0, max(0.0, float(value) / 100))
            elif key == "title":
                status.title = value
        except ValueError:
            log.debug("Ignoring unparsable catt status line %r", line)
    return status


def build_cast_args(device: str, url: str, subtitle: Path | None = None) -> list[str]:
    """Build the catt cast command."""
    args = [CATT, "-d", device, "cast", url]
    if subtitle:
        args.extend(["--subtitles", str(subtitle)])
    return args


def build_control_args(device: str, command: str, value: int | None = None) -> list[str]:
    args = [CATT, "-d", device, command]
    if value is not None:
        args.append(str(value))
    return args


def resolve_device(devices: list[CastDevice], wanted: str) -> CastDevice:
    """Pick a device by name (case-insensitive), id or address."""
    wanted_lower = wanted.strip().lower()
    for device in devices:
        if wanted_lower in (device.name.lower(), device.id.lower(), device.address.lower()):
            return device
    raise DeviceNotFound(f"no cast device named {wanted!r}")


async def run_catt(argv: list[str], timeout: float) -> tuple[int, str]:
    """Run catt to completion and return (exit code, combined output)."""
    log.debug("Running %s", argv)
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except FileNotFoundError as e:
        raise TransportError(f"{argv[0]} not found. Install it with: pip install catt") from e

    try:
        out, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise TransportError(f"{' '.join(argv[:4])} timed out after {timeout:.0f}s") from None
    return process.returncode or 0, out.decode("utf-8", errors="replace")


class CastController:
    """Discovery, transport commands and status through catt."""

    def __init__(self, runner: Runner = run_catt):
        self._run = runner

    async def scan(self, timeout: float = SCAN_TIMEOUT) -> list[CastDevice]:
        code, out = await self._run([CATT, "scan"], timeout)
        if code != 0:
            log.warning("catt scan exited with %d", code)
        return parse_scan(out)

    async def find_device(self, wanted: str) -> CastDevice:
        return resolve_device(await self.scan(), wanted)

    async def command(self, device: str, command: str, value: int | None = None) -> None:
        """Send one transport command (play, pause, stop, seek, volume)."""
        argv = build_control_args(device, command, value)
        code, out = await self._run(argv, COMMAND_TIMEOUT)
        if code != 0:
            raise TransportError(f"catt {command} failed: {out.strip() or f'exit {code}'}")

    async def status(self, device: str, timeout: float = STATUS_TIMEOUT) -> PlaybackStatus:
        code, out = await self._run(build_control_args(device, "status"), timeout)
        if code != 0:
            raise TransportError(f"catt status failed: {out.strip() or f'exit {code}'}")
        return parse_status(out)
