"""Type definitions for guestplay.

Core data types shared by the provisioning components: the guest being
provisioned, the immutable provisioning configuration, inventory entries
and command outcomes.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

from .exceptions import ConfigError

if TYPE_CHECKING:
    from .transport import Transport

LATEST_VERSION = "latest"


class InstallMode(str, Enum):
    """How ansible gets installed on the guest."""

    DEFAULT = "default"
    PIP = "pip"
    PIP_ARGS_ONLY = "pip_args_only"


@dataclass
class GuestTarget:
    """The remote machine being provisioned.

    Attributes:
        name: Machine name, as it appears in the generated inventory
        transport: Connection handle used for every remote operation
        username: Elevated-privilege username (owner of staged files)
        guest_type: OS family used to select a capability provider
            ("" means detect it from the guest)

    Example:
        >>> target = GuestTarget(name="web", transport=transport, username="vagrant")
    """

    name: str
    transport: "Transport"
    username: str
    guest_type: str = ""


@dataclass(frozen=True)
class ProvisionConfig:
    """Immutable configuration snapshot for one provisioning run.

    Attributes:
        playbook: Playbook entry point, relative to provisioning_path
        install: Install ansible on the guest when missing
        version: Required ansible version ("latest", explicit, or "" for any)
        install_mode: Installation route (package manager or pip)
        provisioning_path: Working directory on the guest
        tmp_path: Staging directory on the guest
        galaxy_role_file: Role requirements file (enables the galaxy step)
        galaxy_roles_path: Where roles are installed (defaults next to the playbook)
        galaxy_command: %-style template with role_file and roles_path keys
        playbook_command: Executable used for the playbook step
        inventory_path: Existing inventory on the guest; generated when None
        config_file: ANSIBLE_CONFIG file on the guest
        vault_password_file: Vault password file on the guest
        limit: Host pattern passed as --limit
        extra_vars: Mapping passed as JSON, or a "@file" reference
        tags: Only run plays and tasks tagged with these values
        skip_tags: Skip plays and tasks tagged with these values
        start_at_task: Task name to start at
        verbose: Verbosity flag ("v", "vv", ...), True for "v"
        become: Run operations with become
        become_user: User to become
        raw_arguments: Extra arguments appended verbatim
        host_vars: Per-machine inventory variables (mapping or string)
        groups: Inventory groups (group -> members, "group:vars" -> mapping)
        pip_args: Extra arguments for pip installs
        pip_install_cmd: Command that bootstraps pip on the guest
    """

    playbook: str
    install: bool = True
    version: str = ""
    install_mode: InstallMode = InstallMode.DEFAULT
    provisioning_path: str = "/vagrant"
    tmp_path: str = "/tmp/guestplay-ansible"
    galaxy_role_file: str | None = None
    galaxy_roles_path: str | None = None
    galaxy_command: str = (
        "ansible-galaxy install --role-file=%(role_file)s "
        "--roles-path=%(roles_path)s --force"
    )
    playbook_command: str = "ansible-playbook"
    inventory_path: str | None = None
    config_file: str | None = None
    vault_password_file: str | None = None
    limit: str | list[str] | None = None
    extra_vars: dict[str, Any] | str | None = None
    tags: str | list[str] | None = None
    skip_tags: str | list[str] | None = None
    start_at_task: str | None = None
    verbose: str | bool = False
    become: bool = False
    become_user: str | None = None
    raw_arguments: tuple[str, ...] = ()
    host_vars: Mapping[str, Any] = field(default_factory=dict)
    groups: Mapping[str, Any] = field(default_factory=dict)
    pip_args: str = ""
    pip_install_cmd: str = "curl https://bootstrap.pypa.io/get-pip.py | sudo python3"

    def __post_init__(self) -> None:
        """Validate and normalize configuration after initialization."""
        if not self.playbook:
            raise ConfigError("`playbook` must be set", option="playbook")
        try:
            object.__setattr__(self, "install_mode", InstallMode(self.install_mode))
        except ValueError:
            valid = ", ".join(m.value for m in InstallMode)
            raise ConfigError(
                f"Invalid install_mode: {self.install_mode}. Valid modes: {valid}",
                option="install_mode",
            ) from None
        object.__setattr__(self, "version", str(self.version or "").strip())
        if not isinstance(self.raw_arguments, (list, tuple)):
            raise ConfigError("`raw_arguments` must be a list", option="raw_arguments")
        # YAML turns `--forks 5` into a str and an int
        object.__setattr__(self, "raw_arguments", tuple(str(a) for a in self.raw_arguments))
        for option in ("host_vars", "groups"):
            value = getattr(self, option)
            if not isinstance(value, Mapping):
                raise ConfigError(f"`{option}` must be a mapping", option=option)
            object.__setattr__(self, option, MappingProxyType(dict(value)))
        if self.extra_vars is not None and not isinstance(self.extra_vars, (dict, str)):
            raise ConfigError(
                "`extra_vars` must be a mapping or a @file reference", option="extra_vars"
            )

    @property
    def wants_latest(self) -> bool:
        """Whether the "latest" sentinel was requested."""
        return self.version == LATEST_VERSION

    @property
    def specific_version(self) -> str | None:
        """The explicitly requested version, if any."""
        if self.version and not self.wants_latest:
            return self.version
        return None

    @property
    def generates_inventory(self) -> bool:
        """Whether an inventory must be generated and shipped to the guest."""
        return self.inventory_path is None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProvisionConfig":
        """Create from a dictionary, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(
                f"Unknown configuration option(s): {', '.join(unknown)}",
                option=unknown[0],
            )
        if "playbook" not in data:
            raise ConfigError("`playbook` must be set", option="playbook")
        return cls(**data)


@dataclass
class InventoryEntry:
    """One inventory line describing a known machine.

    Attributes:
        name: Machine name
        is_self: Whether this is the guest running ansible (local connection)
        host_vars: Rendered "key=value" string appended to the line
    """

    name: str
    is_self: bool = False
    host_vars: str | None = None

    def render(self) -> str:
        """Render the entry as a newline-terminated inventory line."""
        line = f"{self.name} ansible_connection=local" if self.is_self else self.name
        if self.host_vars:
            line = f"{line} {self.host_vars}"
        return line + "\n"


@dataclass
class CommandOutcome:
    """Exit status of a named remote step.

    Attributes:
        step: Logical step name ("galaxy" or "playbook")
        exit_code: Remote exit status
    """

    step: str
    exit_code: int

    @property
    def succeeded(self) -> bool:
        """Check if the step exited cleanly."""
        return self.exit_code == 0
