"""Lifecycle of one external assistant subprocess per conversation turn."""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import os
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .config import AssistantSettings

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096


class AssistantLaunchError(RuntimeError):
    """Raised when a turn cannot be started or its input cannot be sent."""


@dataclass(slots=True)
class TurnRequest:
    """Everything needed to run one assistant turn."""

    payload: str
    system_prompt: str
    schema: Dict[str, Any]
    assistant_session_id: str
    resume: bool = False


@dataclass(slots=True)
class TurnEvents:
    """Callbacks receiving a turn's output; all run on the event loop."""

    on_output: Callable[[str], None]
    on_diagnostic: Callable[[str], None]
    on_exit: Callable[[Optional[int]], None]


class AssistantTurn:
    """Handle on a running assistant subprocess.

    Once :meth:`kill` has been called the turn delivers no further events,
    so a superseded process can never leak output into a newer turn.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        events: TurnEvents,
    ) -> None:
        self._process = process
        self._events = events
        self._killed = False
        self._pump_task: Optional[asyncio.Task[None]] = None

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def killed(self) -> bool:
        return self._killed

    @property
    def running(self) -> bool:
        return not self._killed and self._process.returncode is None

    def kill(self) -> None:
        if self._killed:
            return
        self._killed = True
        if self._process.returncode is None:
            with suppress(ProcessLookupError):
                self._process.kill()
        logger.debug("Killed assistant process %s", self._process.pid)

    async def wait(self) -> Optional[int]:
        """Wait until the pump has drained output and reaped the process."""

        if self._pump_task is not None:
            await self._pump_task
        return self._process.returncode

    async def start(self, payload: str) -> None:
        """Start relaying output, then write the single message and close stdin.

        The process is killed when the message cannot be delivered.
        """

        self._pump_task = asyncio.get_running_loop().create_task(self._pump())
        try:
            await self._send(payload)
        except AssistantLaunchError:
            self.kill()
            raise

    async def _send(self, payload: str) -> None:
        stdin = self._process.stdin
        if stdin is None:
            raise AssistantLaunchError("Failed to send message to the assistant: no stdin")
        try:
            stdin.write(payload.encode("utf-8"))
            await stdin.drain()
            stdin.close()
            await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise AssistantLaunchError(
                f"Failed to send message to the assistant: {exc}"
            ) from exc

    async def _pump(self) -> None:
        await asyncio.gather(
            self._relay(self._process.stdout, self._events.on_output),
            self._relay(self._process.stderr, self._events.on_diagnostic),
        )
        code = await self._process.wait()
        logger.info("Assistant process %s exited with code %s", self.pid, code)
        self._deliver(self._events.on_exit, code)

    async def _relay(
        self,
        stream: Optional[asyncio.StreamReader],
        handler: Callable[[str], None],
    ) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(READ_CHUNK_SIZE)
            if not data:
                tail = decoder.decode(b"", final=True)
                if tail:
                    self._deliver(handler, tail)
                return
            text = decoder.decode(data)
            if text:
                self._deliver(handler, text)

    def _deliver(self, handler: Callable[[Any], None], value: Any) -> None:
        if self._killed:
            return
        try:
            handler(value)
        except Exception:  # noqa: BLE001 # pylint: disable=broad-except
            logger.exception("Turn event handler failed")


class AssistantProcessDriver:
    """Builds assistant invocations and spawns one subprocess per turn."""

    def __init__(self, settings: AssistantSettings) -> None:
        self._settings = settings

    def build_command(self, request: TurnRequest) -> List[str]:
        """Return the argv list for a turn; no shell is involved."""

        command = [self._settings.binary, "-p"]
        if request.resume:
            command.extend(["--resume", request.assistant_session_id])
        else:
            command.extend(["--session-id", request.assistant_session_id])
        command.extend(
            [
                "--output-format",
                "json",
                "--json-schema",
                json.dumps(request.schema, separators=(",", ":")),
                "--strict-mcp-config",
                "--tools",
                "",
            ]
        )
        if not request.resume:
            command.extend(["--system-prompt", request.system_prompt])
        command.extend(self._settings.extra_args)
        command.append("-")
        return command

    def build_env(self) -> Dict[str, str]:
        env = dict(os.environ)
        for name in self._settings.stripped_env:
            env.pop(name, None)
        return env

    async def launch(self, request: TurnRequest, events: TurnEvents) -> AssistantTurn:
        """Spawn the assistant, send the turn's single message and close stdin."""

        command = self.build_command(request)
        logger.info(
            "%s assistant session %s",
            "Resuming" if request.resume else "Starting",
            request.assistant_session_id,
        )
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self._settings.workspace_root),
                env=self.build_env(),
            )
        except OSError as exc:
            raise AssistantLaunchError(
                f"Unable to start assistant CLI '{self._settings.binary}': {exc}"
            ) from exc
        turn = AssistantTurn(process, events)
        await turn.start(request.payload)
        logger.debug("Sent %d characters to assistant", len(request.payload))
        return turn
