"""Remote session transports for guestplay.

Defines the Transport interface used by every component that talks to the
guest, and SSHTransport, an asyncssh based implementation.

Features:
- Async SSH connections with asyncssh, opened on first use and cached
- Line-by-line output streaming to a sink, per stream
- Privileged execution through sudo
- SFTP uploads for staged files
"""

import asyncio
import logging
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import asyncssh

from .exceptions import TransportError
from .logging import TRACE

logger = logging.getLogger(__name__)

STDOUT = "stdout"
STDERR = "stderr"

# Receives (stream, line) for each line of remote output as it arrives.
OutputSink = Callable[[str, str], None]


def discard_output(stream: str, data: str) -> None:
    """Output sink that drops everything."""


class Transport(ABC):
    """Remote session used to drive a guest."""

    @abstractmethod
    async def execute(self, command: str, sink: OutputSink = discard_output) -> int:
        """Run a command, streaming its output to sink.

        Returns:
            The command's exit status
        """

    @abstractmethod
    async def upload(self, local_path: str | Path, remote_path: str) -> None:
        """Copy a local file to remote_path on the guest."""

    @abstractmethod
    async def sudo(self, command: str, check: bool = True) -> int:
        """Run a command with elevated privileges.

        Raises:
            TransportError: If check is True and the command exits non-zero
        """

    async def close(self) -> None:
        """Release the session. Default is a no-op."""


@dataclass
class SSHConfig:
    """SSH connection configuration.

    Attributes:
        hostname: Remote hostname or IP
        port: SSH port (default 22)
        username: SSH username (default current user)
        password: Password for authentication (optional)
        client_keys: List of private key paths (optional)
        known_hosts: Path to known_hosts file (None to disable checking)
        connect_timeout: Connection timeout in seconds
        keepalive_interval: Keepalive interval (0 to disable)
        command_timeout: Per-command timeout in seconds (None for no limit)
    """

    hostname: str
    port: int = 22
    username: str | None = None
    password: str | None = None
    client_keys: list[str] | None = None
    known_hosts: str | None = ()  # Empty tuple = use default known_hosts
    connect_timeout: float = 30.0
    keepalive_interval: float = 30.0
    command_timeout: float | None = None

    def to_asyncssh_options(self) -> dict[str, Any]:
        """Convert to asyncssh.connect() kwargs."""
        options: dict[str, Any] = {
            "host": self.hostname,
            "port": self.port,
            "connect_timeout": self.connect_timeout,
            "keepalive_interval": self.keepalive_interval,
        }

        if self.username:
            options["username"] = self.username
        if self.password:
            options["password"] = self.password
        if self.client_keys:
            options["client_keys"] = self.client_keys
        if self.known_hosts is None:
            options["known_hosts"] = None  # Disable host key checking
        elif self.known_hosts != ():
            options["known_hosts"] = self.known_hosts

        return options


class SSHTransport(Transport):
    """Transport over a single cached asyncssh connection.

    Example:
        transport = SSHTransport(SSHConfig("192.168.56.10", username="vagrant"))
        async with transport:
            rc = await transport.execute("uptime", print_sink)
    """

    def __init__(self, config: SSHConfig) -> None:
        self.config = config
        self._conn: asyncssh.SSHClientConnection | None = None
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        """Host name for identification."""
        return self.config.hostname

    async def connect(self) -> asyncssh.SSHClientConnection:
        """Establish SSH connection.

        Returns cached connection if available.
        """
        async with self._lock:
            if self._conn is None or self._conn.is_closed():
                logger.debug(f"Connecting to {self.config.hostname}:{self.config.port}")
                try:
                    self._conn = await asyncssh.connect(**self.config.to_asyncssh_options())
                except (OSError, asyncssh.Error) as e:
                    raise TransportError(
                        f"Could not connect to {self.config.hostname}:{self.config.port}: {e}"
                    ) from e
                logger.info(f"Connected to {self.config.hostname}")
            return self._conn

    async def close(self) -> None:
        """Close SSH connection."""
        async with self._lock:
            if self._conn is not None and not self._conn.is_closed():
                self._conn.close()
                await self._conn.wait_closed()
                logger.debug(f"Disconnected from {self.config.hostname}")
            self._conn = None

    async def __aenter__(self) -> "SSHTransport":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def execute(self, command: str, sink: OutputSink = discard_output) -> int:
        conn = await self.connect()
        logger.log(TRACE, f"Running on {self.config.hostname}: {command}")

        async def pump(stream: str, reader: Any) -> None:
            async for line in reader:
                sink(stream, line)

        try:
            # Undecodable bytes in ansible output must not abort the stream
            async with conn.create_process(command, errors="replace") as process:
                process.stdin.write_eof()
                try:
                    await asyncio.wait_for(
                        asyncio.gather(
                            pump(STDOUT, process.stdout),
                            pump(STDERR, process.stderr),
                        ),
                        timeout=self.config.command_timeout,
                    )
                except asyncio.TimeoutError:
                    process.kill()
                    logger.error(
                        f"Command timed out after {self.config.command_timeout}s: {command[:50]}"
                    )
                    sink(STDERR, f"Command timed out after {self.config.command_timeout}s\n")
                    return -1

                await process.wait()
        except (OSError, asyncssh.Error) as e:
            raise TransportError(
                f"Command failed to run on {self.config.hostname}: {e}", command=command
            ) from e

        return_code = process.returncode if process.returncode is not None else -1
        logger.debug(f"Command completed on {self.config.hostname}: rc={return_code}")
        return return_code

    async def sudo(self, command: str, check: bool = True) -> int:
        conn = await self.connect()
        wrapped = f"sudo -n sh -c {shlex.quote(command)}"
        logger.log(TRACE, f"Running (sudo) on {self.config.hostname}: {command}")

        try:
            result = await conn.run(wrapped, check=False, errors="replace")
        except (OSError, asyncssh.Error) as e:
            raise TransportError(
                f"Privileged command failed to run on {self.config.hostname}: {e}",
                command=command,
            ) from e

        return_code = result.returncode if result.returncode is not None else -1
        if check and return_code != 0:
            stderr = (result.stderr or "").strip()
            raise TransportError(
                f"Privileged command failed on {self.config.hostname} "
                f"(rc={return_code}): {command}" + (f"\n{stderr}" if stderr else ""),
                command=command,
                exit_code=return_code,
            )
        return return_code

    async def upload(self, local_path: str | Path, remote_path: str) -> None:
        conn = await self.connect()
        logger.debug(f"Uploading {local_path} to {self.config.hostname}:{remote_path}")

        try:
            async with conn.start_sftp_client() as sftp:
                await sftp.put(str(local_path), remote_path)
        except (OSError, asyncssh.Error) as e:
            raise TransportError(
                f"Upload to {self.config.hostname}:{remote_path} failed: {e}",
                command=f"put {remote_path}",
            ) from e
