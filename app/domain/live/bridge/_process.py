"""Owned handle to one encoder child process."""

import asyncio
import contextlib
import inspect
import re
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

from loguru import logger

from .bridge_errors import StreamEndedError

ExitListener = Callable[[int], Awaitable[None] | None]

_PUMP_READ_SIZE = 4096
_LINE_BREAK = re.compile(rb"[\r\n]")
_REDACTED = "<redacted>"


class EncoderProcess:
    """Wraps an asyncio subprocess with piped stdin.

    - stdout/stderr are drained continuously so the child never blocks on a full pipe
    - exit is observed by a watcher task that notifies registered listeners
    - writes are serialized per process and wait for the pipe to drain
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        label: str,
        executable: str,
        secrets: Sequence[str] = (),
    ):
        self._process = process
        self.label = label
        self.executable = executable
        # Never echoed in relayed encoder output
        self._secrets = [s for s in secrets if s]
        self.started_at = datetime.now(timezone.utc)

        self._write_lock = asyncio.Lock()
        self._terminated = False
        self._exit_code: int | None = None
        self._exit_listeners: list[ExitListener] = []
        self._notify_tasks: set[asyncio.Task] = set()

        self._pump_tasks = [
            asyncio.create_task(self._pump(process.stdout, "stdout"), name=f"encoder-stdout:{label}"),
            asyncio.create_task(self._pump(process.stderr, "stderr"), name=f"encoder-stderr:{label}"),
        ]
        self._watch_task = asyncio.create_task(self._watch(), name=f"encoder-watch:{label}")

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def terminated(self) -> bool:
        """Whether a termination signal has been sent to the process."""
        return self._terminated

    def is_alive(self) -> bool:
        return self._process.returncode is None and not self._terminated

    def add_exit_listener(self, listener: ExitListener) -> None:
        self._exit_listeners.append(listener)
        if self._exit_code is not None:
            task = asyncio.create_task(self._notify(listener, self._exit_code))
            self._notify_tasks.add(task)
            task.add_done_callback(self._notify_tasks.discard)

    async def write(self, chunk: bytes, timeout: float) -> bool:
        """Forward one chunk into the encoder input.

        Returns whether the pipe buffer was below its high-water mark right after
        the write. Either way the call only returns once the chunk has been
        accepted by the pipe.

        Raises:
            StreamEndedError: the process is gone, the pipe broke, or the
                encoder did not drain its input within `timeout` seconds.
        """
        async with self._write_lock:
            stdin = self._process.stdin
            if not self.is_alive() or stdin is None or stdin.is_closing():
                raise StreamEndedError()

            try:
                stdin.write(chunk)
                transport = stdin.transport
                _, high = transport.get_write_buffer_limits()
                accepted = transport.get_write_buffer_size() <= high
                await asyncio.wait_for(stdin.drain(), timeout)
            except asyncio.TimeoutError as e:
                logger.warning(
                    "Encoder {} pid={} did not drain input within {}s", self.label, self.pid, timeout
                )
                raise StreamEndedError("Stream stalled") from e
            except OSError as e:
                logger.warning("Error writing to encoder {} pid={}: {}", self.label, self.pid, e)
                raise StreamEndedError() from e

            return accepted

    def terminate(self) -> None:
        """Send the graceful termination signal without waiting for exit."""
        self._terminated = True
        if self._process.returncode is not None:
            return
        logger.info("Terminating encoder {} pid={}", self.label, self.pid)
        with contextlib.suppress(ProcessLookupError):
            self._process.terminate()

    def kill(self) -> None:
        self._terminated = True
        if self._process.returncode is not None:
            return
        logger.warning("Killing encoder {} pid={}", self.label, self.pid)
        with contextlib.suppress(ProcessLookupError):
            self._process.kill()

    async def close_input(self) -> None:
        """Close stdin so the encoder can flush and exit on its own."""
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            return
        stdin.close()
        with contextlib.suppress(OSError):
            await stdin.wait_closed()

    async def wait(self, timeout: float | None = None) -> int | None:
        """Wait for the process to exit; None if it is still running after `timeout`."""
        try:
            return await asyncio.wait_for(self._process.wait(), timeout)
        except asyncio.TimeoutError:
            return None

    async def _pump(self, stream: asyncio.StreamReader | None, name: str) -> None:
        if stream is None:
            return
        # Partial lines carry over to the next read
        pending = b""
        while chunk := await stream.read(_PUMP_READ_SIZE):
            *lines, pending = _LINE_BREAK.split(pending + chunk)
            for line in lines:
                self._log_output(name, line)
            if len(pending) > _PUMP_READ_SIZE * 4:
                self._log_output(name, pending)
                pending = b""
        self._log_output(name, pending)

    def _log_output(self, name: str, raw: bytes) -> None:
        line = raw.decode(errors="replace").strip()
        if not line:
            return
        for secret in self._secrets:
            line = line.replace(secret, _REDACTED)
        logger.debug("[rtmp-bridge {}] {}: {}", self.label, name, line)

    async def _watch(self) -> None:
        returncode = await self._process.wait()
        self._exit_code = returncode

        if returncode == 0:
            logger.info("Encoder {} pid={} exited normally", self.label, self.pid)
        else:
            logger.warning("Encoder {} pid={} exited with code {}", self.label, self.pid, returncode)

        for listener in list(self._exit_listeners):
            await self._notify(listener, returncode)

    async def _notify(self, listener: ExitListener, returncode: int) -> None:
        try:
            result = listener(returncode)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("Exit listener failed for encoder {}: {}", self.label, e)


async def spawn_encoder(argv: list[str], *, label: str, secrets: Sequence[str] = ()) -> EncoderProcess:
    """Start `argv` with all three standard streams piped.

    `secrets` are replaced in the relayed stdout/stderr lines.

    Raises OSError (FileNotFoundError, PermissionError, ...) if the executable
    cannot be started.
    """
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    return EncoderProcess(process, label=label, executable=argv[0], secrets=secrets)
