"""Tests for the command executor."""

from __future__ import annotations

import pytest

from claudedeploy.exceptions import CommandFailed, TransportError
from claudedeploy.services.executor import ERROR, INFO, SUCCESS, WARNING, CommandExecutor
from claudedeploy.services.transport import STDERR, STDOUT, LocalShell
from claudedeploy.storage.models import ExitClass

from conftest import FakeProcess


class ScriptedLauncher:
    def __init__(self, chunks=(), exit_code=0, error=None):
        self.chunks = list(chunks)
        self.exit_code = exit_code
        self.error = error
        self.commands = []

    async def start(self, command):
        self.commands.append(command)
        if self.error is not None:
            raise self.error
        return FakeProcess(command, self.chunks, self.exit_code)


class ExplodingLauncher:
    async def start(self, command):
        raise AssertionError("launcher must not be used")


@pytest.mark.asyncio
async def test_lines_reported_in_order_before_result(observer):
    launcher = ScriptedLauncher(
        [(STDOUT, b"first\nsec"), (STDERR, b"careful\n"), (STDOUT, b"ond\n\n  \n")],
    )
    executor = CommandExecutor(launcher, observer)

    outcome = await executor.execute("do-thing", "Doing thing")

    assert outcome.ok
    assert outcome.exit_class is ExitClass.SUCCESS
    assert observer.events == [
        (INFO, "first"),
        (WARNING, "careful"),
        (INFO, "second"),
        (SUCCESS, "Doing thing"),
    ]


@pytest.mark.asyncio
async def test_trailing_output_without_newline(observer):
    launcher = ScriptedLauncher([(STDOUT, b"v20.11.1")])
    outcome = await CommandExecutor(launcher, observer).execute("node --version", "Checking")
    assert observer.events == [(INFO, "v20.11.1"), (SUCCESS, "Checking")]
    assert outcome.stdout == "v20.11.1"


@pytest.mark.asyncio
async def test_multibyte_character_split_across_chunks(observer):
    data = "héllo\n".encode()
    launcher = ScriptedLauncher([(STDOUT, data[:2]), (STDOUT, data[2:])])
    await CommandExecutor(launcher, observer).execute("echo", "Echo")
    assert observer.messages(INFO) == ["héllo"]


@pytest.mark.asyncio
async def test_nonzero_exit_uses_stderr(observer):
    launcher = ScriptedLauncher([(STDERR, b"E: Unable to locate package\n")], exit_code=100)
    outcome = await CommandExecutor(launcher, observer).execute("apt-get install x", "Installing x")

    assert outcome.exit_class is ExitClass.NONZERO_EXIT
    assert outcome.exit_code == 100
    assert outcome.error_message == "E: Unable to locate package"
    assert observer.events[-1] == (ERROR, "Installing x: E: Unable to locate package")


@pytest.mark.asyncio
async def test_nonzero_exit_with_empty_stderr(observer):
    launcher = ScriptedLauncher([], exit_code=2)
    outcome = await CommandExecutor(launcher, observer).execute("false")
    assert outcome.error_message == "Command failed with exit code 2"
    assert outcome.description == "false"


@pytest.mark.asyncio
async def test_run_raises_command_failed():
    launcher = ScriptedLauncher([(STDERR, b"boom\n")], exit_code=1)
    with pytest.raises(CommandFailed) as exc_info:
        await CommandExecutor(launcher).run("explode", "Exploding")
    assert exc_info.value.command == "explode"
    assert exc_info.value.exit_code == 1
    assert str(exc_info.value) == "boom"


@pytest.mark.asyncio
async def test_run_returns_outcome_on_success():
    outcome = await CommandExecutor(ScriptedLauncher([(STDOUT, b"ok\n")])).run("true")
    assert outcome.stdout == "ok\n"


@pytest.mark.asyncio
async def test_transport_error_outcome(observer):
    launcher = ScriptedLauncher(error=TransportError("channel closed"))
    outcome = await CommandExecutor(launcher, observer).execute("ls", "Listing")

    assert outcome.exit_class is ExitClass.TRANSPORT_ERROR
    assert outcome.exit_code is None
    assert outcome.error_message == "channel closed"
    assert observer.messages(ERROR) == ["Failed: Listing: channel closed"]


@pytest.mark.asyncio
async def test_dry_run_never_touches_launcher(observer):
    executor = CommandExecutor(ExplodingLauncher(), observer, dry_run=True, label="remote")
    outcome = await executor.execute("sudo npm install -g pkg", "Installing pkg")

    assert outcome.ok
    assert observer.events == [(INFO, "[DRY-RUN][remote] sudo npm install -g pkg")]


@pytest.mark.asyncio
async def test_dry_run_without_launcher():
    outcome = await CommandExecutor(None, dry_run=True, label="local").execute("node --version")
    assert outcome.ok


@pytest.mark.asyncio
async def test_missing_launcher_raises():
    with pytest.raises(TransportError):
        await CommandExecutor(None).execute("ls")


@pytest.mark.asyncio
async def test_local_shell_end_to_end(observer, tmp_path):
    executor = CommandExecutor(LocalShell(cwd=str(tmp_path)), observer, label="local")
    outcome = await executor.execute("echo hello && echo oops 1>&2 && exit 4", "Mixed")

    assert outcome.exit_code == 4
    assert "hello" in observer.messages(INFO)
    assert "oops" in observer.messages(WARNING)
    assert observer.events[-1] == (ERROR, "Mixed: oops")
