"""Error taxonomy for guestplay.

Every fatal condition detected during a provisioning run is raised as a
subclass of :class:`ProvisionError`. Each error carries a structured
:class:`ErrorRecord` (kind plus contextual fields) so that callers can
render a precise message without parsing exception text.
"""

from dataclasses import dataclass, field
from typing import Any


class ErrorTypes:
    """Error kind identifiers used in error records."""

    DETECTION_UNSUPPORTED = "DetectionUnsupported"
    TOOL_NOT_FOUND = "ToolNotFound"
    VERSION_NOT_FOUND = "VersionNotFound"
    CONFIG_FILE_NOT_FOUND = "ConfigFileNotFound"
    COMMAND_FAILED = "CommandFailed"
    CONFIG_ERROR = "ConfigError"
    TRANSPORT_ERROR = "TransportError"


@dataclass
class ErrorRecord:
    """Tagged failure description.

    Attributes:
        kind: One of the ErrorTypes identifiers
        message: Human-readable summary
        fields: Contextual values (path, required version, step name, ...)

    Example:
        >>> record = ErrorRecord(ErrorTypes.COMMAND_FAILED, "failed", {"step": "galaxy"})
        >>> record.to_dict()["step"]
        'galaxy'
    """

    kind: str
    message: str
    fields: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"kind": self.kind, "msg": self.message, **self.fields}

    def __getitem__(self, key: str) -> Any:
        return self.fields[key]


class ProvisionError(Exception):
    """Base class for all provisioning failures.

    Attributes:
        msg: Human-readable error message
        kind: Error kind (see ErrorTypes)
        record: Structured ErrorRecord with the contextual fields
    """

    kind = "ProvisionError"

    def __init__(self, msg: str, **fields: Any) -> None:
        super().__init__(msg)
        self.msg = msg
        self.record = ErrorRecord(kind=self.kind, message=msg, fields=fields)

    def __str__(self) -> str:
        return self.msg


class DetectionUnsupportedError(ProvisionError):
    """Raised when asked to detect or install ansible on an unsupported guest.

    Provisioning itself only records this kind as a warning; the error is
    for callers that skip the supports_detection() check.
    """

    kind = ErrorTypes.DETECTION_UNSUPPORTED

    def __init__(self, guest_type: str, action: str = "detect") -> None:
        super().__init__(
            f"Cannot {action} ansible on guest type '{guest_type or 'unknown'}'",
            guest_type=guest_type,
            action=action,
        )
        self.guest_type = guest_type


class ToolNotFoundError(ProvisionError):
    """Raised when the ansible binaries do not respond on the guest."""

    kind = ErrorTypes.TOOL_NOT_FOUND

    def __init__(self, guest: str) -> None:
        super().__init__(
            f"Ansible software could not be found on guest '{guest}'. "
            "Please verify that Ansible is correctly installed.",
            guest=guest,
        )


class VersionNotFoundError(ProvisionError):
    """Raised when the requested ansible version is still absent after install."""

    kind = ErrorTypes.VERSION_NOT_FOUND

    def __init__(self, required: str, guest: str = "") -> None:
        super().__init__(
            f"The requested Ansible version ({required}) was not found on the guest.",
            required=required,
            guest=guest,
        )
        self.required = required


class ConfigFileNotFoundError(ProvisionError):
    """Raised when a required file or directory is missing on the guest."""

    kind = ErrorTypes.CONFIG_FILE_NOT_FOUND

    def __init__(self, path: str, option: str, system: str = "guest") -> None:
        super().__init__(
            f"`{option}` does not exist on the {system}: {path}",
            path=path,
            option=option,
            system=system,
        )
        self.path = path
        self.option = option
        self.system = system


class CommandFailedError(ProvisionError):
    """Raised when ansible-galaxy or ansible-playbook exits non-zero."""

    kind = ErrorTypes.COMMAND_FAILED

    def __init__(self, step: str, exit_code: int) -> None:
        super().__init__(
            f"Ansible failed to complete successfully ({step} exited with {exit_code}). "
            "Any error output should be visible above.",
            step=step,
            exit_code=exit_code,
        )
        self.step = step
        self.exit_code = exit_code


class ConfigError(ProvisionError, ValueError):
    """Raised when the provisioning configuration is invalid."""

    kind = ErrorTypes.CONFIG_ERROR

    def __init__(self, msg: str, option: str = "") -> None:
        super().__init__(msg, option=option)


class TransportError(ProvisionError):
    """Raised by transports for connection failures and checked commands."""

    kind = ErrorTypes.TRANSPORT_ERROR

    def __init__(self, msg: str, command: str = "", exit_code: int | None = None) -> None:
        super().__init__(msg, command=command, exit_code=exit_code)
        self.command = command
        self.exit_code = exit_code
