"""Guest capabilities: detecting and installing ansible.

Each guest OS family installs ansible differently. A capability provider is
picked once per guest at composition time (capability_for) and injected
into the InstallationManager, which never inspects the guest type itself.

Installation modes:
- default: the distribution package manager
- pip: bootstrap pip, then `pip install ansible[==version]`
- pip_args_only: bootstrap pip, then `pip install <pip_args>`
"""

import logging
import re
import shlex
from abc import ABC, abstractmethod

from .exceptions import DetectionUnsupportedError, TransportError
from .transport import STDOUT, Transport, discard_output
from .types import LATEST_VERSION, InstallMode

logger = logging.getLogger(__name__)

DEFAULT_PIP_INSTALL_CMD = "curl https://bootstrap.pypa.io/get-pip.py | sudo python3"


class Capability(ABC):
    """Detect/install behaviour for one kind of guest."""

    @abstractmethod
    def supports_detection(self) -> bool:
        """Whether this guest can tell if ansible is installed."""

    @abstractmethod
    async def is_installed(self, version: str = "") -> bool:
        """Check for ansible, optionally a specific version."""

    @abstractmethod
    async def install(
        self,
        mode: InstallMode,
        version: str = "",
        pip_args: str = "",
        pip_install_cmd: str = "",
    ) -> None:
        """Install ansible. Failures propagate to the caller."""


class UnsupportedCapability(Capability):
    """Guest family without detection or installation support."""

    def __init__(self, guest_type: str = "") -> None:
        self.guest_type = guest_type

    def supports_detection(self) -> bool:
        return False

    async def is_installed(self, version: str = "") -> bool:
        raise DetectionUnsupportedError(self.guest_type)

    async def install(
        self,
        mode: InstallMode,
        version: str = "",
        pip_args: str = "",
        pip_install_cmd: str = "",
    ) -> None:
        raise DetectionUnsupportedError(self.guest_type, action="install")


class PackageManagerCapability(Capability):
    """POSIX guest installing ansible with a package manager or pip.

    Subclasses list the privileged commands for their distribution.
    """

    # Commands installing ansible from distribution packages
    package_commands: tuple[str, ...] = ()
    # Commands installing what pip needs to build ansible
    pip_setup_commands: tuple[str, ...] = ()

    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    def supports_detection(self) -> bool:
        return True

    async def is_installed(self, version: str = "") -> bool:
        command = 'test -x "$(command -v ansible)"'
        if version and version != LATEST_VERSION:
            # "ansible 2.9.x" on classic releases, "ansible [core 2.16.x]" on ansible-core.
            # 2.1 must not match 2.10.8.
            pattern = "^ansible (\\[core )?" + re.escape(version) + "([^0-9]|$)"
            command += f" && ansible --version | grep -qE {shlex.quote(pattern)}"
        return await self.transport.execute(command, discard_output) == 0

    async def install(
        self,
        mode: InstallMode,
        version: str = "",
        pip_args: str = "",
        pip_install_cmd: str = "",
    ) -> None:
        mode = InstallMode(mode)
        if mode is InstallMode.PIP:
            await self.setup_pip(pip_install_cmd)
            await self.pip_install("ansible", version, pip_args, upgrade=True)
        elif mode is InstallMode.PIP_ARGS_ONLY:
            await self.setup_pip(pip_install_cmd)
            await self.pip_install("", "", pip_args, upgrade=False)
        else:
            await self.install_packages()

    async def install_packages(self) -> None:
        logger.info(f"Installing ansible with {type(self).__name__}")
        for command in self.package_commands:
            await self.transport.sudo(command)

    async def setup_pip(self, pip_install_cmd: str = "") -> None:
        for command in self.pip_setup_commands:
            await self.transport.sudo(command)

        command = pip_install_cmd or DEFAULT_PIP_INSTALL_CMD
        logger.info(f"Installing pip: {command}")
        rc = await self.transport.execute(command, discard_output)
        if rc != 0:
            raise TransportError(f"pip installation failed (rc={rc})", command=command, exit_code=rc)

    async def pip_install(
        self,
        package: str = "",
        version: str = "",
        pip_args: str = "",
        upgrade: bool = True,
    ) -> None:
        upgrade_arg = "--upgrade" if upgrade else ""
        version_arg = ""
        if version and version != LATEST_VERSION:
            # A pinned version cancels the upgrade
            upgrade_arg = ""
            version_arg = f"=={version}"

        args = [pip_args, upgrade_arg, f"{package}{version_arg}"]
        await self.transport.sudo("python3 -m pip install " + " ".join(a for a in args if a))


class AptCapability(PackageManagerCapability):
    package_commands = (
        "apt-get update -y -qq",
        "DEBIAN_FRONTEND=noninteractive apt-get install -y -qq ansible",
    )
    pip_setup_commands = (
        "apt-get update -y -qq",
        "DEBIAN_FRONTEND=noninteractive apt-get install -y -qq "
        "build-essential curl git libssl-dev libffi-dev python3-dev",
    )


class DnfCapability(PackageManagerCapability):
    package_commands = (
        "dnf -y install epel-release || true",
        "dnf -y install ansible",
    )
    pip_setup_commands = (
        "dnf -y install curl gcc libffi-devel openssl-devel python3-devel",
    )


class PacmanCapability(PackageManagerCapability):
    package_commands = (
        "pacman -Syy --noconfirm",
        "pacman -S --noconfirm ansible",
    )
    pip_setup_commands = (
        "pacman -Syy --noconfirm",
        "pacman -S --noconfirm base-devel curl git python",
    )


class ZypperCapability(PackageManagerCapability):
    package_commands = ("zypper --non-interactive --quiet install ansible",)
    pip_setup_commands = (
        "zypper --non-interactive --quiet install curl git libffi-devel openssl-devel python3-devel",
    )


class ApkCapability(PackageManagerCapability):
    package_commands = ("apk add --update --no-cache ansible",)
    pip_setup_commands = (
        "apk add --update --no-cache curl git build-base libffi-dev openssl-dev python3 python3-dev",
    )


CAPABILITIES: dict[str, type[PackageManagerCapability]] = {
    "debian": AptCapability,
    "ubuntu": AptCapability,
    "rhel": DnfCapability,
    "redhat": DnfCapability,
    "centos": DnfCapability,
    "fedora": DnfCapability,
    "rocky": DnfCapability,
    "almalinux": DnfCapability,
    "arch": PacmanCapability,
    "suse": ZypperCapability,
    "opensuse": ZypperCapability,
    "sles": ZypperCapability,
    "alpine": ApkCapability,
}


def capability_for(guest_type: str, transport: Transport) -> Capability:
    """Pick the capability provider for a guest OS family.

    Example:
        >>> capability_for("ubuntu", transport)
        <guestplay.capabilities.AptCapability object at ...>
    """
    capability_class = CAPABILITIES.get(guest_type.lower())
    if capability_class is None:
        logger.debug(f"No ansible capability for guest type '{guest_type}'")
        return UnsupportedCapability(guest_type)
    return capability_class(transport)


async def detect_guest_type(transport: Transport) -> str:
    """Read the OS family from /etc/os-release on the guest.

    Returns the first of ID and ID_LIKE that a capability exists for, the
    bare ID when none match, or "" when os-release is unreadable.
    """
    lines: list[str] = []

    def collect(stream: str, data: str) -> None:
        if stream == STDOUT:
            lines.append(data)

    rc = await transport.execute('. /etc/os-release && echo "$ID $ID_LIKE"', collect)
    if rc != 0:
        return ""

    candidates = "".join(lines).replace('"', "").split()
    for candidate in candidates:
        if candidate.lower() in CAPABILITIES:
            return candidate.lower()
    return candidates[0].lower() if candidates else ""
