"""Error taxonomy shared by all engines.

Errors are classified by who can act on them:

    InvalidInput   caller's fault, never retried
    NotFound       target absent; idempotent deletes treat it as success
    UserAborted    operator declined a confirmation gate
    ServerError    provider-side failure, surfaced with a console link when known
"""

from __future__ import annotations

from typing import Any, Optional


class StackOpsError(Exception):
    """Base class for all stackops errors."""


class InvalidInput(StackOpsError):
    """Bad or missing arguments."""


class InvalidEnvironment(InvalidInput):
    """A required local tool or setting is missing."""


class NotFound(StackOpsError):
    """A stack, resource, release or setting does not exist."""


class UserAborted(StackOpsError):
    """The operator declined a confirmation prompt."""

    def __init__(self, message: str = "aborted by user") -> None:
        super().__init__(message)


class ServerError(StackOpsError):
    """Provider-side failure.

    Attributes:
        link: Console URL where the operator can inspect the failure (optional)
    """

    def __init__(self, message: str, link: Optional[str] = None) -> None:
        super().__init__(message)
        self.link = link

    def __str__(self) -> str:
        message = super().__str__()
        if self.link:
            return f"{message} ({self.link})"
        return message


class StackBusy(ServerError):
    """The stack is already being updated by someone else. Retry later."""


class RestoreIncomplete(StackOpsError):
    """A restore failed after some resources were already restored.

    Attributes:
        completed: Physical ids of resources restored before the failure
        failed: Physical id of the resource that failed
    """

    def __init__(self, message: str, completed: list[str], failed: Optional[str] = None) -> None:
        super().__init__(message)
        self.completed = completed
        self.failed = failed


class TeardownIncomplete(StackOpsError):
    """Some resources could not be deleted during teardown.

    Attributes:
        operation: The TeardownOperation with per-resource records
    """

    def __init__(self, message: str, operation: Any) -> None:
        super().__init__(message)
        self.operation = operation
