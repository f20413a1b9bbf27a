"""
Media player facade built on mpv's JSON IPC.

mpv is started idle with ``--input-ipc-server`` and driven over the Unix
socket using line-delimited JSON:

    -> {"command": ["set_property", "pause", true], "request_id": 7}
    <- {"error": "success", "data": null, "request_id": 7}
    <- {"event": "property-change", "id": 1, "name": "pause", "data": true}

Player activity is republished as lifecycle events on the EventBroker:
status, started, paused, resumed, stopped, seek, timeposition, crashed, quit.
When playback stops the player quits after an idle window unless something
starts playing again; only one idle timer is pending at any time.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import os
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

import psutil

from homedash.errors import InternalError, InvalidArgumentError, ToolError
from homedash.events import Event, EventBroker
from homedash.logging import get_logger

if TYPE_CHECKING:
    from homedash.config import PlayerConfig

logger = get_logger(__name__)

LOAD_MODES = ("replace", "append", "append-play")

# Properties observed right after connecting; ids are their 1-based positions
OBSERVED_PROPERTIES = (
    "pause",
    "idle-active",
    "time-pos",
    "volume",
    "mute",
    "duration",
    "filename",
    "media-title",
)

PROPERTY_UNAVAILABLE = "property unavailable"

CONNECT_POLL_INTERVAL = 0.05

_UNSET = object()


class PlayerEventKind(str, Enum):
    """Lifecycle events published by the player."""

    STATUS = "status"
    STARTED = "started"
    PAUSED = "paused"
    RESUMED = "resumed"
    STOPPED = "stopped"
    SEEK = "seek"
    TIMEPOSITION = "timeposition"
    CRASHED = "crashed"
    QUIT = "quit"


PLAYER_EVENT_KINDS = tuple(kind.value for kind in PlayerEventKind)


class MPVCommandError(Exception):
    """mpv answered a command with an error status."""

    def __init__(self, error: str, command: Any) -> None:
        super().__init__(f"mpv command failed: {error}")
        self.error = error
        self.command = command


class PlayerProcess(Protocol):
    """The subset of asyncio.subprocess.Process the service relies on."""

    pid: int
    returncode: int | None

    async def wait(self) -> int: ...

    def kill(self) -> None: ...


ProcessSpawner = Callable[[list[str]], Awaitable[PlayerProcess]]


async def spawn_subprocess(args: list[str]) -> PlayerProcess:
    """Start mpv as a child process with its stdio detached."""
    return await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
    )


class PlayerService:
    """
    Controls a single mpv instance.

    Every public operation starts the player when needed, and wraps failures
    in InternalError with an operation-specific message.

    Example:
        >>> player = PlayerService(EventBroker())
        >>> await player.load("https://radio.example/stream.mp3")
        >>> await player.volume(40)
    """

    def __init__(
        self,
        broker: EventBroker,
        *,
        binary: str = "mpv",
        socket_path: str = "/tmp/homedash-mpv.sock",
        audio_only: bool = True,
        idle_shutdown_seconds: float = 600.0,
        command_timeout: float = 5.0,
        start_timeout: float = 5.0,
        extra_args: list[str] | None = None,
        spawner: ProcessSpawner | None = None,
    ) -> None:
        """
        Initialize the player service.

        Args:
            broker: EventBroker that receives lifecycle events.
            binary: mpv executable.
            socket_path: Unix socket for JSON IPC.
            audio_only: Pass ``--no-video`` to mpv.
            idle_shutdown_seconds: Quit this long after playback stops;
                0 disables the idle shutdown.
            command_timeout: Timeout for a single IPC command.
            start_timeout: How long to wait for the IPC socket after spawning.
            extra_args: Additional mpv arguments.
            spawner: Coroutine function starting the process (tests replace it).
        """
        self.broker = broker
        self.binary = binary
        self.socket_path = socket_path
        self.audio_only = audio_only
        self.idle_shutdown_seconds = idle_shutdown_seconds
        self.command_timeout = command_timeout
        self.start_timeout = start_timeout
        self.extra_args = list(extra_args or [])
        self._spawn = spawner or spawn_subprocess

        self._process: PlayerProcess | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._watch_task: asyncio.Task[None] | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._idle_task: asyncio.Task[None] | None = None
        self._start_lock = asyncio.Lock()
        self._request_ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._properties: dict[str, Any] = {}
        self._quitting = False

    @classmethod
    def from_config(
        cls,
        config: PlayerConfig,
        broker: EventBroker,
        spawner: ProcessSpawner | None = None,
    ) -> PlayerService:
        """Create a player service from the player section of AppConfig."""
        return cls(
            broker,
            binary=config.binary,
            socket_path=config.socket_path,
            audio_only=config.audio_only,
            idle_shutdown_seconds=config.idle_shutdown_seconds,
            command_timeout=config.command_timeout_seconds,
            start_timeout=config.start_timeout_seconds,
            extra_args=config.extra_args,
            spawner=spawner,
        )

    # =========================================================================
    # Process lifecycle
    # =========================================================================

    def build_args(self) -> list[str]:
        """Return the mpv command line."""
        args = [
            self.binary,
            "--idle=yes",
            f"--input-ipc-server={self.socket_path}",
            "--no-terminal",
            "--no-config",
        ]
        if self.audio_only:
            args.append("--no-video")
        args.extend(self.extra_args)
        return args

    def is_running(self) -> bool:
        """Check whether the mpv process is alive."""
        process = self._process
        if process is None or process.returncode is not None:
            return False
        try:
            proc = psutil.Process(process.pid)
            return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
        except psutil.Error:
            return False

    @property
    def connected(self) -> bool:
        return self._writer is not None

    @property
    def idle_shutdown_pending(self) -> bool:
        return self._idle_task is not None and not self._idle_task.done()

    async def start(self) -> None:
        """
        Start mpv and connect to its IPC socket (no-op when already running).

        Raises:
            InternalError: If the process cannot be started or connected.
        """
        try:
            await self._ensure_started()
        except Exception as e:
            logger.error("Failed to start player", extra={"error": str(e)})
            raise InternalError("Failed to start player") from e

    async def _ensure_started(self) -> None:
        async with self._start_lock:
            if self.connected and self.is_running():
                return

            await self._reset()
            stale, self._process = self._process, None
            if stale is not None and stale.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    stale.kill()
            with contextlib.suppress(FileNotFoundError):
                os.unlink(self.socket_path)

            self._quitting = False
            self._properties.clear()
            process = await self._spawn(self.build_args())
            self._process = process

            try:
                reader, writer = await self._connect(process)
            except BaseException:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                self._process = None
                raise

            self._writer = writer
            self._reader_task = asyncio.create_task(self._read_loop(reader, writer))
            self._watch_task = asyncio.create_task(self._watch_process(process))

            for observe_id, name in enumerate(OBSERVED_PROPERTIES, start=1):
                await self._command(["observe_property", observe_id, name])

            logger.info(
                "Player started",
                extra={"pid": process.pid, "socket_path": self.socket_path},
            )

    async def _connect(
        self, process: PlayerProcess
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.start_timeout

        while True:
            try:
                return await asyncio.open_unix_connection(self.socket_path)
            except (FileNotFoundError, ConnectionRefusedError):
                if process.returncode is not None:
                    raise RuntimeError(
                        f"mpv exited during startup with code {process.returncode}"
                    ) from None
                if loop.time() >= deadline:
                    raise TimeoutError(
                        f"mpv IPC socket not ready after {self.start_timeout}s"
                    ) from None
                await asyncio.sleep(CONNECT_POLL_INTERVAL)

    async def _watch_process(self, process: PlayerProcess) -> None:
        returncode = await process.wait()
        if process is not self._process:
            return

        self._cancel_idle_shutdown()
        await self._close_connection()
        self._process = None

        if self._quitting or returncode == 0:
            logger.info("Player quit", extra={"returncode": returncode})
            self._publish(PlayerEventKind.QUIT, {"returncode": returncode})
        else:
            logger.error("Player crashed", extra={"returncode": returncode})
            self._publish(PlayerEventKind.CRASHED, {"returncode": returncode})

    async def quit(self) -> None:
        """
        Ask mpv to quit and wait for the process to exit.

        Raises:
            InternalError: If the process cannot be stopped.
        """
        self._cancel_idle_shutdown()
        process = self._process
        if process is None or process.returncode is not None:
            return

        self._quitting = True
        try:
            if self.connected:
                with contextlib.suppress(ConnectionError, TimeoutError, MPVCommandError):
                    await self._command(["quit"])
            try:
                await asyncio.wait_for(process.wait(), timeout=self.command_timeout)
            except TimeoutError:
                logger.warning("Player did not quit in time, killing", extra={"pid": process.pid})
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
            # Let the watcher publish the quit event before returning
            watch_task = self._watch_task
            if watch_task is not None and watch_task is not asyncio.current_task():
                await asyncio.wait({watch_task}, timeout=self.command_timeout)
        except Exception as e:
            logger.error("Failed to quit player", extra={"error": str(e)})
            raise InternalError("Failed to quit player") from e

    async def close(self) -> None:
        """Quit the player and release the IPC connection and tasks."""
        try:
            await self.quit()
        finally:
            await self._reset()

    async def _reset(self) -> None:
        self._cancel_idle_shutdown()
        watch_task, self._watch_task = self._watch_task, None
        if watch_task is not None and not watch_task.done():
            watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watch_task
        await self._close_connection()

    async def _close_connection(self) -> None:
        reader_task, self._reader_task = self._reader_task, None
        writer, self._writer = self._writer, None

        if reader_task is not None and reader_task is not asyncio.current_task():
            reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader_task

        if writer is not None:
            try:
                writer.close()
                await writer.wait_closed()
            except Exception as e:
                logger.warning(
                    "Exception during player IPC cleanup (ignored)",
                    extra={"error": str(e)},
                )

        self._fail_pending(ConnectionError("Player IPC connection closed"))

    # =========================================================================
    # IPC
    # =========================================================================

    async def _command(self, command: list[Any] | dict[str, Any]) -> Any:
        writer = self._writer
        if writer is None:
            raise ConnectionError("Player IPC is not connected")

        request_id = next(self._request_ids)
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            payload = json.dumps({"command": command, "request_id": request_id})
            writer.write(payload.encode("utf-8") + b"\n")
            await writer.drain()
            response = await asyncio.wait_for(future, timeout=self.command_timeout)
        finally:
            self._pending.pop(request_id, None)

        error = response.get("error", "success")
        if error != "success":
            raise MPVCommandError(error, command)
        return response.get("data")

    async def _read_loop(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                try:
                    message = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON from player", extra={"raw": line[:100]})
                    continue
                if isinstance(message, dict):
                    self._dispatch(message)
        finally:
            if self._writer is writer:
                self._writer = None
            self._fail_pending(ConnectionError("Player IPC connection closed"))

    def _fail_pending(self, exc: Exception) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(exc)

    def _dispatch(self, message: dict[str, Any]) -> None:
        if "event" in message:
            self._handle_event(message)
            return

        future = self._pending.get(message.get("request_id"))
        if future is not None and not future.done():
            future.set_result(message)

    # =========================================================================
    # Events
    # =========================================================================

    def _publish(self, kind: PlayerEventKind, data: Any = None) -> None:
        self.broker.publish(Event(kind.value, data))

    def _handle_event(self, message: dict[str, Any]) -> None:
        name = message["event"]

        if name == "start-file":
            self._cancel_idle_shutdown()
            self._publish(PlayerEventKind.STARTED)
        elif name == "seek":
            self._publish(PlayerEventKind.SEEK)
        elif name == "shutdown":
            self._quitting = True
        elif name == "property-change":
            self._handle_property_change(message.get("name"), message.get("data"))

    def _handle_property_change(self, name: str | None, value: Any) -> None:
        if name is None:
            return
        previous = self._properties.get(name, _UNSET)
        self._properties[name] = value

        if name == "time-pos":
            if value is not None:
                self._publish(PlayerEventKind.TIMEPOSITION, value)
            return

        # The first observation reports the current state and is not a transition
        if name == "pause" and previous is not _UNSET and previous != value:
            self._publish(PlayerEventKind.PAUSED if value else PlayerEventKind.RESUMED)
        elif (
            name == "idle-active"
            and value is True
            and previous is not _UNSET
            and previous is not True
        ):
            self._schedule_idle_shutdown()
            self._publish(PlayerEventKind.STOPPED)

        if previous != value:
            self._publish(PlayerEventKind.STATUS, {"property": name, "value": value})

    def _schedule_idle_shutdown(self) -> None:
        self._cancel_idle_shutdown()
        if self.idle_shutdown_seconds <= 0:
            return
        self._idle_task = asyncio.create_task(
            self._idle_shutdown(self.idle_shutdown_seconds)
        )

    def _cancel_idle_shutdown(self) -> None:
        idle_task, self._idle_task = self._idle_task, None
        if idle_task is not None and idle_task is not asyncio.current_task():
            idle_task.cancel()

    async def _idle_shutdown(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._idle_task = None
        logger.info("Player idle, shutting down", extra={"idle_seconds": delay})
        try:
            await self.quit()
        except InternalError:
            logger.exception("Idle shutdown failed")

    # =========================================================================
    # Operations
    # =========================================================================

    async def _execute(
        self,
        description: str,
        command: list[Any] | dict[str, Any],
        *,
        allow_unavailable: bool = False,
    ) -> Any:
        try:
            await self._ensure_started()
            return await self._command(command)
        except MPVCommandError as e:
            if allow_unavailable and e.error == PROPERTY_UNAVAILABLE:
                return None
            logger.error(f"Failed to {description}", extra={"error": e.error})
            raise InternalError(f"Failed to {description}") from e
        except ToolError:
            raise
        except Exception as e:
            logger.error(f"Failed to {description}", extra={"error": str(e)})
            raise InternalError(f"Failed to {description}") from e

    async def load(
        self,
        content: str,
        mode: str = "replace",
        options: dict[str, Any] | None = None,
    ) -> None:
        """
        Load a file or URL.

        Args:
            content: Path or URL understood by mpv.
            mode: replace, append or append-play.
            options: Per-file mpv options (e.g., {"start": "30"}).
        """
        if mode not in LOAD_MODES:
            raise InvalidArgumentError(
                f"Invalid load mode: {mode}. Must be one of: {', '.join(LOAD_MODES)}",
                details={"parameter": "mode", "value": mode},
            )
        command: dict[str, Any] = {"name": "loadfile", "url": content, "flags": mode}
        if options:
            command["options"] = {key: str(value) for key, value in options.items()}
        await self._execute("load media", command)
        logger.info("Media loaded", extra={"content": content, "mode": mode})

    async def play(self) -> None:
        await self._execute("resume playback", ["set_property", "pause", False])

    async def pause(self) -> None:
        await self._execute("pause playback", ["set_property", "pause", True])

    async def toggle_pause(self) -> None:
        await self._execute("toggle pause", ["cycle", "pause"])

    async def stop(self) -> None:
        await self._execute("stop playback", ["stop"])

    async def next(self) -> None:
        await self._execute("skip to next track", ["playlist-next", "weak"])

    async def prev(self) -> None:
        await self._execute("go to previous track", ["playlist-prev", "weak"])

    async def volume(self, level: float) -> None:
        """Set the volume (0-100)."""
        if not 0 <= level <= 100:
            raise InvalidArgumentError(
                "Volume must be between 0 and 100",
                details={"parameter": "level", "value": level},
            )
        await self._execute("set volume", ["set_property", "volume", level])

    async def mute(self, flag: bool | None = None) -> None:
        """Mute or unmute; toggles when ``flag`` is None."""
        if flag is None:
            await self._execute("toggle mute", ["cycle", "mute"])
        else:
            await self._execute("set mute", ["set_property", "mute", flag])

    async def get_duration(self) -> float | None:
        """Duration of the current file in seconds, None when nothing is loaded."""
        return await self._execute(
            "get duration", ["get_property", "duration"], allow_unavailable=True
        )

    async def get_property(self, name: str) -> Any:
        """Read a property; None when mpv reports it unavailable."""
        return await self._execute(
            f"get property {name}", ["get_property", name], allow_unavailable=True
        )

    async def get_all_properties(self, names: list[str]) -> dict[str, Any]:
        """Read several properties concurrently."""
        values = await asyncio.gather(*(self.get_property(name) for name in names))
        return dict(zip(names, values, strict=True))
