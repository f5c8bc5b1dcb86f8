"""Command executor: runs one command and streams its output to an observer."""

from __future__ import annotations

import codecs
import logging
import time
from typing import Callable, Protocol

from claudedeploy.exceptions import CommandFailed, TransportError
from claudedeploy.services.transport import STDERR, CommandProcess
from claudedeploy.storage.models import CommandOutcome, ExitClass
from claudedeploy.utils.formatting import format_outcome

logger = logging.getLogger(__name__)

INFO = "info"
SUCCESS = "success"
WARNING = "warning"
ERROR = "error"

Observer = Callable[[str, str], None]

_LOG_LEVELS = {
    INFO: logging.INFO,
    SUCCESS: logging.INFO,
    WARNING: logging.WARNING,
    ERROR: logging.ERROR,
}


class Launcher(Protocol):
    async def start(self, command: str) -> CommandProcess: ...


def null_observer(severity: str, message: str) -> None:
    pass


class _LineSplitter:
    """Incremental UTF-8 decoder that emits complete, non-blank lines."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self.text: list[str] = []

    def feed(self, chunk: bytes) -> list[str]:
        decoded = self._decoder.decode(chunk)
        self.text.append(decoded)
        parts = (self._pending + decoded).split("\n")
        self._pending = parts.pop()
        return [line.strip() for line in parts if line.strip()]

    def flush(self) -> list[str]:
        tail = self._decoder.decode(b"", final=True)
        self.text.append(tail)
        rest, self._pending = self._pending + tail, ""
        return [rest.strip()] if rest.strip() else []

    def value(self) -> str:
        return "".join(self.text)


class CommandExecutor:
    """Execute shell commands through a launcher, reporting every line.

    stdout lines are reported as ``info``, stderr lines as ``warning``; all
    lines of a command are reported before its success/error line. In
    dry-run mode the launcher is never touched.
    """

    def __init__(
        self,
        launcher: Launcher | None,
        observer: Observer | None = None,
        dry_run: bool = False,
        label: str = "remote",
    ) -> None:
        self.launcher = launcher
        self.observer = observer or null_observer
        self.dry_run = dry_run
        self.label = label

    def report(self, severity: str, message: str) -> None:
        logger.log(_LOG_LEVELS.get(severity, logging.INFO), "[%s] %s", self.label, message)
        self.observer(severity, message)

    async def execute(self, command: str, description: str = "") -> CommandOutcome:
        description = description or command
        if self.dry_run:
            self.report(INFO, f"[DRY-RUN][{self.label}] {command}")
            return CommandOutcome(command=command, description=description, exit_class=ExitClass.SUCCESS)

        if self.launcher is None:
            raise TransportError("No command launcher available")

        start = time.monotonic()
        out = _LineSplitter()
        err = _LineSplitter()
        try:
            process = await self.launcher.start(command)
            async for stream, chunk in process:
                splitter, severity = (err, WARNING) if stream == STDERR else (out, INFO)
                for line in splitter.feed(chunk):
                    self.report(severity, line)
            exit_code = process.exit_code
        except TransportError as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            self.report(ERROR, f"Failed: {description}: {e}")
            return CommandOutcome(
                command=command,
                description=description,
                exit_class=ExitClass.TRANSPORT_ERROR,
                exit_code=None,
                stdout=out.value(),
                stderr=err.value() or str(e),
                execution_time_ms=elapsed_ms,
            )

        for line in out.flush():
            self.report(INFO, line)
        for line in err.flush():
            self.report(WARNING, line)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        outcome = CommandOutcome(
            command=command,
            description=description,
            exit_class=ExitClass.SUCCESS if exit_code == 0 else ExitClass.NONZERO_EXIT,
            exit_code=exit_code,
            stdout=out.value(),
            stderr=err.value(),
            execution_time_ms=elapsed_ms,
        )
        logger.debug("[%s] %s", self.label, format_outcome(outcome))
        if outcome.ok:
            self.report(SUCCESS, description)
        else:
            self.report(ERROR, f"{description}: {outcome.error_message}")
        return outcome

    async def run(self, command: str, description: str = "") -> CommandOutcome:
        """Like ``execute`` but raises ``CommandFailed`` on any failure."""
        outcome = await self.execute(command, description)
        if not outcome.ok:
            raise CommandFailed(command, outcome.exit_code, outcome.error_message)
        return outcome
