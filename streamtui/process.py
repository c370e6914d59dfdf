"""Child process handles and shutdown."""

import asyncio
import logging
import os
import signal
import time
from typing import Protocol

log = logging.getLogger(__name__)

SHUTDOWN_GRACE = 5.0


class ProcessHandle(Protocol):
    """What the dispatcher needs from a child process."""

    pid: int | None
    stdout: asyncio.StreamReader | None

    def is_alive(self) -> bool: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...

    async def wait(self) -> int | None: ...


class ChildProcess:
    """A child started by this process."""

    def __init__(self, process: asyncio.subprocess.Process, argv: list[str]):
        self._process = process
        self.argv = argv

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def stdout(self) -> asyncio.StreamReader | None:
        return self._process.stdout

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    def is_alive(self) -> bool:
        return self._process.returncode is None

    def terminate(self) -> None:
        self._process.terminate()

    def kill(self) -> None:
        self._process.kill()

    async def wait(self) -> int | None:
        return await self._process.wait()

    def __repr__(self) -> str:
        return f"ChildProcess(pid={self.pid}, argv={self.argv[:2]})"


class PidHandle:
    """A process known only by pid, e.g. one started by an earlier invocation."""

    stdout = None

    def __init__(self, pid: int, poll_interval: float = 0.2):
        self.pid = pid
        self.poll_interval = poll_interval

    def is_alive(self) -> bool:
        try:
            os.kill(self.pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    def terminate(self) -> None:
        os.kill(self.pid, signal.SIGTERM)

    def kill(self) -> None:
        os.kill(self.pid, getattr(signal, "SIGKILL", signal.SIGTERM))

    async def wait(self) -> int | None:
        while self.is_alive():
            await asyncio.sleep(self.poll_interval)
        return None

    def __repr__(self) -> str:
        return f"PidHandle(pid={self.pid})"


async def spawn(argv: list[str], capture_stdout: bool = False) -> ChildProcess:
    """
    Start a child in its own session so it outlives a detached parent.

    With `capture_stdout`, stdout and stderr are merged into one pipe.
    Raises FileNotFoundError when the binary does not exist.
    """
    log.debug("Spawning %s", argv)
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE if capture_stdout else asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.STDOUT if capture_stdout else asyncio.subprocess.DEVNULL,
        start_new_session=True,
    )
    return ChildProcess(process, argv)


async def shutdown(handle: ProcessHandle | None, grace: float = SHUTDOWN_GRACE) -> None:
    """Terminate, wait up to `grace` seconds, then kill. Errors are logged, never raised."""
    if handle is None:
        return
    try:
        if not handle.is_alive():
            return
        handle.terminate()
        try:
            await asyncio.wait_for(handle.wait(), timeout=grace)
        except asyncio.TimeoutError:
            log.warning("%r ignored SIGTERM for %.0fs, killing it", handle, grace)
            handle.kill()
            await asyncio.wait_for(handle.wait(), timeout=grace)
        except asyncio.CancelledError:
            # No grace left once the stop itself is cancelled
            log.warning("Stopping %r was cancelled, killing it", handle)
            try:
                handle.kill()
            except ProcessLookupError:
                pass
            raise
    except ProcessLookupError:
        pass
    except (OSError, asyncio.TimeoutError) as e:
        log.warning("Error while stopping %r: %s", handle, e)


class Stopwatch:
    """Wall-clock seconds since a start instant; the instant survives a restore."""

    def __init__(self, started_at: float | None = None):
        self.started_at = time.time() if started_at is None else started_at

    def elapsed(self) -> float:
        return max(0.0, time.time() - self.started_at)
