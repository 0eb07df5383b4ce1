"""Custom exception hierarchy for hybrid_e2e.

All package exceptions inherit from HybridE2EError, so a test driver can
catch every provisioning failure with a single except clause.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hybrid_e2e.aws.ssm import CommandOutcome


class HybridE2EError(Exception):
    """Base exception for all hybrid_e2e errors."""


class ConfigurationError(HybridE2EError):
    """Raised for invalid configuration or missing required settings."""


class ParseError(HybridE2EError):
    """Raised when an object-storage locator is malformed."""


class SigningError(HybridE2EError):
    """Raised when the storage backend fails to presign a URL."""


class RegistrationError(HybridE2EError):
    """Raised when the identity broker fails an activation or registration call."""


class CertificateIssueError(HybridE2EError):
    """Raised when CA material is malformed or signing fails."""


class CommandError(HybridE2EError):
    """Base for managed-command channel failures."""


class CommandSubmissionError(CommandError):
    """Raised when a command cannot be submitted or its status cannot be read."""


class CommandStatusError(CommandError):
    """Raised when a command reaches a status the completion policy rejects."""

    def __init__(
        self,
        instance_id: str,
        outcome: CommandOutcome,
        outcomes: tuple[CommandOutcome, ...],
        *,
        total: int | None = None,
    ) -> None:
        self.instance_id = instance_id
        self.outcome = outcome
        self.outcomes = outcomes
        self.total = len(outcomes) if total is None else total
        super().__init__(
            f"Command {outcome.position} of {self.total} on {instance_id} "
            f"finished with status {outcome.status.value}: {outcome.command}"
        )

    @property
    def position(self) -> int:
        """1-based position of the failing command in the submitted list."""
        return self.outcome.position


class TimeoutError(HybridE2EError):  # noqa: A001
    """Raised when a polling deadline is exceeded."""


class CancellationError(HybridE2EError):
    """Raised when the caller cancels an in-flight operation."""
