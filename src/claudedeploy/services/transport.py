"""Command transports: SSH sessions (paramiko) and the local shell.

Both hand out ``CommandProcess`` objects. Iterating one yields
``(stream, chunk)`` events in the order each stream produced them; once the
iteration ends ``exit_code`` holds the command's exit status. A process can
be consumed only once.
"""

from __future__ import annotations

import asyncio
import logging
import os
import posixpath
import shlex
import threading
from typing import AsyncIterator, Callable

import paramiko

from claudedeploy.exceptions import AuthenticationFailed, TransportError
from claudedeploy.services.credentials import load_private_key
from claudedeploy.storage.models import ConnectionDescriptor, CredentialKind

logger = logging.getLogger(__name__)

STDOUT = "stdout"
STDERR = "stderr"

CONNECT_TIMEOUT = 30
POLL_INTERVAL = 0.05
_CHUNK = 32768
_FALLBACK_PATH = "/usr/local/bin:/usr/bin:/bin"


class CommandProcess:
    """A running command whose output is consumed as an async stream."""

    def __init__(self, command: str) -> None:
        self.command = command
        self.exit_code: int | None = None
        self._consumed = False

    def __aiter__(self) -> AsyncIterator[tuple[str, bytes]]:
        if self._consumed:
            raise RuntimeError(f"Output of {self.command!r} was already consumed")
        self._consumed = True
        return self._events()

    async def _events(self) -> AsyncIterator[tuple[str, bytes]]:
        raise NotImplementedError
        yield  # pragma: no cover

    async def wait(self) -> int | None:
        """Drain remaining output and return the exit code."""
        if not self._consumed:
            async for _ in self:
                pass
        return self.exit_code


class RemoteProcess(CommandProcess):
    def __init__(self, command: str, channel: paramiko.Channel, on_close: Callable[[paramiko.Channel], None]) -> None:
        super().__init__(command)
        self._channel = channel
        self._on_close = on_close

    async def _events(self) -> AsyncIterator[tuple[str, bytes]]:
        channel = self._channel
        try:
            while True:
                progressed = False
                if channel.recv_ready():
                    data = channel.recv(_CHUNK)
                    if data:
                        progressed = True
                        yield STDOUT, data
                if channel.recv_stderr_ready():
                    data = channel.recv_stderr(_CHUNK)
                    if data:
                        progressed = True
                        yield STDERR, data
                if progressed:
                    continue
                if channel.exit_status_ready() or channel.closed:
                    if not channel.recv_ready() and not channel.recv_stderr_ready():
                        break
                    continue
                await asyncio.sleep(POLL_INTERVAL)
            if not channel.exit_status_ready():
                # Closed without an exit status: the connection went away.
                raise TransportError(f"Connection lost while running {self.command!r}")
            self.exit_code = channel.recv_exit_status()
        finally:
            self._on_close(channel)


class SSHSession:
    """One authenticated SSH connection and the channels opened over it.

    Use as ``async with SSHSession(descriptor) as session:`` so the
    connection is always released.
    """

    def __init__(
        self,
        descriptor: ConnectionDescriptor,
        timeout: int = CONNECT_TIMEOUT,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ) -> None:
        self.descriptor = descriptor
        self.timeout = timeout
        self._client_factory = client_factory
        self._client: paramiko.SSHClient | None = None
        self._channels: set = set()
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def open_channel_count(self) -> int:
        with self._lock:
            return len(self._channels)

    async def __aenter__(self) -> SSHSession:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()

    def _connect_kwargs(self) -> dict:
        d = self.descriptor
        kwargs: dict = {
            "hostname": d.host,
            "port": d.port,
            "username": d.username,
            "timeout": self.timeout,
            "banner_timeout": self.timeout,
            "auth_timeout": self.timeout,
            "look_for_keys": False,
            "allow_agent": False,
        }
        cred = d.credential
        if cred.kind is CredentialKind.PASSWORD:
            kwargs["password"] = cred.password
        elif cred.kind is CredentialKind.PRIVATE_KEY:
            try:
                kwargs["pkey"] = load_private_key(cred.key_material, cred.passphrase)
            except paramiko.PasswordRequiredException as e:
                raise AuthenticationFailed(f"SSH key {cred.source} is encrypted; a passphrase is required") from e
            except paramiko.SSHException as e:
                raise AuthenticationFailed(f"Could not load SSH key {cred.source}: {e}") from e
        else:
            kwargs["allow_agent"] = True
        return kwargs

    async def connect(self) -> None:
        if self._client is not None:
            return
        d = self.descriptor
        kwargs = self._connect_kwargs()
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        logger.info("Connecting to %s@%s:%s (%s)", d.username, d.host, d.port, d.credential.kind.value)
        try:
            await asyncio.to_thread(client.connect, **kwargs)
        except paramiko.AuthenticationException as e:
            client.close()
            raise AuthenticationFailed(f"Authentication failed for {d.username}@{d.host}: {e}") from e
        except (paramiko.SSHException, OSError, EOFError) as e:
            client.close()
            raise TransportError(f"Connection to {d.host}:{d.port} failed: {e}") from e
        self._client = client
        logger.info("Connected to %s", d.host)

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        with self._lock:
            leftovers = list(self._channels)
            self._channels.clear()
        for channel in leftovers:
            try:
                channel.close()
            except Exception:
                logger.debug("Error closing channel", exc_info=True)
        client.close()
        logger.info("Disconnected from %s", self.descriptor.host)

    def _transport(self) -> paramiko.Transport:
        if self._client is None:
            raise TransportError("SSH session is not connected")
        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            raise TransportError(f"SSH connection to {self.descriptor.host} is no longer active")
        return transport

    def _register(self, channel) -> None:
        with self._lock:
            self._channels.add(channel)

    def _release(self, channel) -> None:
        with self._lock:
            self._channels.discard(channel)
        channel.close()

    def _open_exec(self, command: str) -> paramiko.Channel:
        channel = self._transport().open_session(timeout=self.timeout)
        self._register(channel)
        try:
            channel.exec_command(command)
        except Exception:
            self._release(channel)
            raise
        return channel

    async def start(self, command: str) -> RemoteProcess:
        """Run ``command`` on a new exec channel."""
        try:
            channel = await asyncio.to_thread(self._open_exec, command)
        except TransportError:
            raise
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise TransportError(f"Could not open channel on {self.descriptor.host}: {e}") from e
        return RemoteProcess(command, channel, self._release)

    def _sftp_write(self, remote_path: str, data: bytes, mode: int) -> None:
        client = self._client
        if client is None:
            raise TransportError("SSH session is not connected")
        sftp = client.open_sftp()
        self._register(sftp)
        try:
            with sftp.open(remote_path, "wb") as f:
                sftp.chmod(remote_path, mode)
                f.write(data)
        finally:
            self._release(sftp)

    async def write_file(self, remote_path: str, data: bytes, mode: int = 0o600, dir_mode: int = 0o700) -> None:
        """Write ``data`` to ``remote_path``, creating its directory first.

        SFTP does not create parent directories, so ``mkdir -p`` runs as a
        separate command before the file is opened.
        """
        self._transport()
        parent = posixpath.dirname(remote_path) or "."
        quoted = shlex.quote(parent)
        process = await self.start(f"mkdir -p {quoted} && chmod {dir_mode:o} {quoted}")
        stderr = b""
        async for stream, chunk in process:
            if stream == STDERR:
                stderr += chunk
        if process.exit_code != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            message = f"Failed to create remote directory {parent}"
            raise TransportError(f"{message}: {detail}" if detail else message)
        try:
            await asyncio.to_thread(self._sftp_write, remote_path, data, mode)
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise TransportError(f"Failed to write {remote_path}: {e}") from e
        logger.info("Wrote %d bytes to %s:%s", len(data), self.descriptor.host, remote_path)


class LocalProcess(CommandProcess):
    def __init__(self, command: str, proc: asyncio.subprocess.Process) -> None:
        super().__init__(command)
        self._proc = proc

    async def _events(self) -> AsyncIterator[tuple[str, bytes]]:
        queue: asyncio.Queue[tuple[str, bytes | None]] = asyncio.Queue()

        async def pump(name: str, reader: asyncio.StreamReader) -> None:
            while chunk := await reader.read(_CHUNK):
                await queue.put((name, chunk))
            await queue.put((name, None))

        tasks = [
            asyncio.create_task(pump(STDOUT, self._proc.stdout)),
            asyncio.create_task(pump(STDERR, self._proc.stderr)),
        ]
        try:
            open_streams = len(tasks)
            while open_streams:
                name, chunk = await queue.get()
                if chunk is None:
                    open_streams -= 1
                    continue
                yield name, chunk
            self.exit_code = await self._proc.wait()
        finally:
            for task in tasks:
                task.cancel()


class LocalShell:
    """Runs commands through the local shell with an inherited PATH."""

    def __init__(self, cwd: str | None = None, path: str | None = None) -> None:
        self.cwd = cwd
        self.path = path

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        env["PATH"] = self.path or env.get("PATH") or _FALLBACK_PATH
        return env

    async def start(self, command: str) -> LocalProcess:
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd or os.getcwd(),
                env=self._env(),
            )
        except OSError as e:
            raise TransportError(f"Could not start local command: {e}") from e
        return LocalProcess(command, proc)
