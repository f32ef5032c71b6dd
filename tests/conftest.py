"""Shared test doubles for guestplay tests."""

from pathlib import Path

import pytest

from guestplay.capabilities import Capability
from guestplay.exceptions import TransportError
from guestplay.notify import Notifier
from guestplay.transport import Transport, discard_output
from guestplay.types import GuestTarget, InstallMode


class FakeTransport(Transport):
    """In-memory transport recording every remote operation.

    Exit codes are chosen by the first `failures` pattern contained in the
    command (default 0). `output` maps patterns to (stream, line) pairs
    fed to the sink.
    """

    def __init__(self, failures=None, output=None, fail_upload=False):
        self.failures = dict(failures or {})
        self.output = dict(output or {})
        self.fail_upload = fail_upload
        self.events: list[tuple[str, str]] = []
        self.uploads: list[tuple[str, str]] = []
        self.local_paths: list[str] = []
        self.closed = False

    def rc_for(self, command):
        for pattern, rc in self.failures.items():
            if pattern in command:
                return rc
        return 0

    @property
    def commands(self):
        return [c for kind, c in self.events if kind == "execute"]

    @property
    def sudo_commands(self):
        return [c for kind, c in self.events if kind == "sudo"]

    async def execute(self, command, sink=discard_output):
        self.events.append(("execute", command))
        for pattern, lines in self.output.items():
            if pattern in command:
                for stream, line in lines:
                    sink(stream, line)
        return self.rc_for(command)

    async def sudo(self, command, check=True):
        self.events.append(("sudo", command))
        rc = self.rc_for(command)
        if check and rc != 0:
            raise TransportError(f"sudo failed: {command}", command=command, exit_code=rc)
        return rc

    async def upload(self, local_path, remote_path):
        self.events.append(("upload", remote_path))
        self.local_paths.append(str(local_path))
        if self.fail_upload:
            raise TransportError(f"upload failed: {remote_path}")
        self.uploads.append((remote_path, Path(local_path).read_text()))

    async def close(self):
        self.closed = True


class FakeCapability(Capability):
    """Capability double with a scripted installation state."""

    def __init__(
        self,
        detection=True,
        installed=False,
        versions=(),
        install_error=None,
        install_provides=(),
    ):
        self.detection = detection
        self.installed = installed
        self.versions = set(versions)
        self.install_error = install_error
        self.install_provides = set(install_provides)
        self.install_calls: list[tuple[InstallMode, str]] = []
        self.detect_calls: list[str] = []

    def supports_detection(self):
        return self.detection

    async def is_installed(self, version=""):
        self.detect_calls.append(version)
        if version and version != "latest":
            return version in self.versions
        return self.installed

    async def install(self, mode, version="", pip_args="", pip_install_cmd=""):
        self.install_calls.append((mode, version))
        if self.install_error is not None:
            raise self.install_error
        self.installed = True
        self.versions |= self.install_provides


class RecordingNotifier(Notifier):
    """Notifier keeping every notice in order."""

    def __init__(self):
        self.messages: list[tuple[str, str]] = []
        self.lines: list[tuple[str, str]] = []

    def info(self, message):
        self.messages.append(("info", message))

    def detail(self, message):
        self.messages.append(("detail", message))

    def warn(self, message):
        self.messages.append(("warn", message))

    def output(self, stream, data):
        self.lines.append((stream, data))

    @property
    def warnings(self):
        return [m for kind, m in self.messages if kind == "warn"]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def target(transport):
    return GuestTarget(name="web", transport=transport, username="vagrant", guest_type="ubuntu")
