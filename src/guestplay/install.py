"""Ansible installation checks for the guest.

Current limitations:
- Installing a specific ansible version is only attempted through the pip
  modes; the package manager route installs whatever the distribution ships.
- There is no guarantee that an automated installation replaces a previous
  ansible installation.
"""

import logging
from dataclasses import dataclass, field

from .capabilities import Capability
from .exceptions import ErrorRecord, ErrorTypes, ToolNotFoundError, VersionNotFoundError
from .executor import RemoteExecutor
from .logging import get_logger
from .notify import Notifier, NullNotifier
from .types import GuestTarget, ProvisionConfig

logger = logging.getLogger(__name__)

# Both binaries answer --help on every supported ansible release
BASELINE_CHECK = "ansible-galaxy info --help && ansible-playbook --help"


@dataclass
class InstallReport:
    """What ensure_installed did.

    Attributes:
        install_attempted: Whether the capability's install was invoked
        warnings: Non-fatal conditions (detection unsupported)
    """

    install_attempted: bool = False
    warnings: list[ErrorRecord] = field(default_factory=list)


class InstallationManager:
    """Makes sure a usable ansible is present on the guest.

    The live check of the ansible binaries is the authority on whether
    ansible works; what the capability reports after installing is not
    trusted on its own.
    """

    def __init__(
        self,
        capability: Capability,
        executor: RemoteExecutor,
        notifier: Notifier | None = None,
    ) -> None:
        self.capability = capability
        self.executor = executor
        self.notifier = notifier or NullNotifier()

    async def ensure_installed(self, target: GuestTarget, config: ProvisionConfig) -> InstallReport:
        """Install ansible if needed and requested, then verify it.

        Raises:
            ToolNotFoundError: If the ansible binaries do not respond
            VersionNotFoundError: If the requested version is still absent
        """
        logger.info(f"Checking for Ansible installation on {target.name}...")
        report = InstallReport()

        detection = self.capability.supports_detection()
        if not detection:
            message = (
                f"Cannot detect Ansible on guest type '{target.guest_type or 'unknown'}'; "
                "the installation step is skipped."
            )
            get_logger(__name__, guest=target.name).warning(message)
            self.notifier.warn(message)
            report.warnings.append(
                ErrorRecord(ErrorTypes.DETECTION_UNSUPPORTED, message, {"guest": target.name})
            )
        elif config.install and (
            config.wants_latest or not await self.capability.is_installed(config.version)
        ):
            self.notifier.detail("Installing Ansible...")
            report.install_attempted = True
            await self.capability.install(
                config.install_mode,
                config.version,
                pip_args=config.pip_args,
                pip_install_cmd=config.pip_install_cmd,
            )

        if not await self.executor.check(BASELINE_CHECK):
            raise ToolNotFoundError(guest=target.name)

        required = config.specific_version
        if detection and required and not await self.capability.is_installed(required):
            raise VersionNotFoundError(required=required, guest=target.name)

        return report
