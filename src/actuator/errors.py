"""Error taxonomy for machine reconciliation.

MachineError values are directed at the owner of a Machine record: they are
raised to the caller and, when a machine client is available, mirrored into
``Machine.status`` so failures stay observable without inspecting the
exception.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class MachineStatusError(str, Enum):
    """Reason codes written into ``Machine.status.errorReason``."""

    INVALID_CONFIGURATION = "InvalidConfiguration"
    UNSUPPORTED_CHANGE = "UnsupportedChange"
    INSUFFICIENT_RESOURCES = "InsufficientResources"
    CREATE = "CreateError"
    UPDATE = "UpdateError"
    DELETE = "DeleteError"


class ActuatorError(Exception):
    """Base class for all reconciliation errors."""

    pass


class MachineError(ActuatorError):
    """An error carrying a reason code and message for a Machine's status."""

    def __init__(self, reason: MachineStatusError, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message

    def __repr__(self) -> str:
        return f"MachineError(reason={self.reason.value!r}, message={self.message!r})"


class OperationError(ActuatorError):
    """Raised when a provider operation finishes with errors."""

    pass


class OperationTimeoutError(OperationError):
    """Raised when a provider operation does not finish in time."""

    def __init__(self, operation_type: str, name: str, elapsed_seconds: float) -> None:
        super().__init__(
            f"gce operation {operation_type} {name!r} timed out after {elapsed_seconds:.1f}s"
        )
        self.operation_type = operation_type
        self.name = name
        self.elapsed_seconds = elapsed_seconds


class CurrentStateUnavailableError(ActuatorError):
    """Raised when update cannot find the observed state of a machine."""

    pass


class RemoteCommandError(ActuatorError):
    """Raised when a command executed on a machine fails."""

    def __init__(self, target: str, command: str, detail: str) -> None:
        super().__init__(f"remote command on {target} failed: {detail}")
        self.target = target
        self.command = command
        self.detail = detail


def _format(msg: str, args: tuple[Any, ...]) -> str:
    return msg % args if args else msg


def invalid_machine_configuration(msg: str, *args: Any) -> MachineError:
    """Build an error for malformed or missing machine configuration."""
    return MachineError(MachineStatusError.INVALID_CONFIGURATION, _format(msg, args))


def create_machine(msg: str, *args: Any) -> MachineError:
    """Build an error for a failed instance creation."""
    return MachineError(MachineStatusError.CREATE, _format(msg, args))


def update_machine(msg: str, *args: Any) -> MachineError:
    """Build an error for a failed machine update."""
    return MachineError(MachineStatusError.UPDATE, _format(msg, args))


def delete_machine(msg: str, *args: Any) -> MachineError:
    """Build an error for a failed instance deletion."""
    return MachineError(MachineStatusError.DELETE, _format(msg, args))
