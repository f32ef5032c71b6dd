"""guestplay - provision guests with ansible running on the guest itself.

Verifies (and optionally installs) ansible on a remote guest, checks the
required files are present, ships a generated inventory of peer machines
and runs ansible-galaxy and ansible-playbook there.

Quick Start:
    from guestplay import GuestTarget, ProvisionConfig, Provisioner
    from guestplay.transport import SSHConfig, SSHTransport

    async with SSHTransport(SSHConfig("192.168.56.10", username="vagrant")) as transport:
        target = GuestTarget(name="web", transport=transport, username="vagrant")
        await Provisioner(machine_names=["web", "db"]).provision(
            target, ProvisionConfig(playbook="site.yml")
        )
"""

__version__ = "0.1.0"

from guestplay.exceptions import ErrorRecord, ProvisionError
from guestplay.provisioner import Provisioner, ProvisionResult, Stage, provision_many
from guestplay.types import GuestTarget, InstallMode, ProvisionConfig

__all__ = [
    "__version__",
    "ErrorRecord",
    "GuestTarget",
    "InstallMode",
    "ProvisionConfig",
    "ProvisionError",
    "ProvisionResult",
    "Provisioner",
    "Stage",
    "provision_many",
]
