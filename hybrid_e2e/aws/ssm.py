"""AWS Systems Manager (SSM) as the identity broker and managed-command channel.

SSM plays two roles for hybrid nodes: it issues the hybrid activations that
let an instance register itself as a managed instance, and it runs shell
commands on registered instances without SSH.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from functools import cached_property
from typing import TYPE_CHECKING, Protocol

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from hybrid_e2e.exceptions import CommandSubmissionError, RegistrationError

if TYPE_CHECKING:
    from mypy_boto3_ssm import SSMClient

log = logger.bind(component="ssm")

RUN_SHELL_SCRIPT = "AWS-RunShellScript"


# =============================================================================
# Command status
# =============================================================================


class CommandStatus(StrEnum):
    """Status of one command invocation on one instance."""

    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    DELAYED = "Delayed"
    SUCCESS = "Success"
    CANCELLED = "Cancelled"
    TIMED_OUT = "TimedOut"
    FAILED = "Failed"
    CANCELLING = "Cancelling"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def is_pending(self) -> bool:
        """Not yet picked up (or still being wound down) by the agent."""
        return self in (CommandStatus.PENDING, CommandStatus.DELAYED, CommandStatus.CANCELLING)


_TERMINAL = frozenset({
    CommandStatus.SUCCESS,
    CommandStatus.CANCELLED,
    CommandStatus.TIMED_OUT,
    CommandStatus.FAILED,
})


@dataclass(frozen=True, slots=True)
class CommandInvocation:
    """Raw invocation state as reported by the broker."""

    status: CommandStatus
    output: str = ""


@dataclass(frozen=True, slots=True)
class CommandOutcome:
    """Final observed state of one submitted command line."""

    position: int
    command: str
    command_id: str
    status: CommandStatus
    output: str = ""

    @property
    def success(self) -> bool:
        return self.status is CommandStatus.SUCCESS


@dataclass(frozen=True, slots=True)
class Activation:
    """One-time credentials for registering a managed instance."""

    activation_id: str
    activation_code: str

    def __repr__(self) -> str:
        return f"Activation(activation_id={self.activation_id!r}, activation_code='***')"


# =============================================================================
# Broker protocol
# =============================================================================


class IdentityBroker(Protocol):
    """Activation, registration and command API of the identity broker."""

    def register_activation(self, role: str, name: str) -> Activation:
        """Create a new activation. Every call creates a new one."""
        ...

    def describe_managed_instance(self, instance_id: str) -> bool:
        """True while the instance is registered as a managed instance."""
        ...

    def send_command(self, instance_id: str, commands: Sequence[str]) -> str:
        """Submit shell commands to an instance and return the command id."""
        ...

    def list_command_invocations(self, command_id: str) -> list[CommandInvocation]:
        """Invocations of a command, empty until the broker has fanned it out."""
        ...


# =============================================================================
# SSM Broker (implements IdentityBroker)
# =============================================================================


class SSMBroker:
    """IdentityBroker backed by the boto3 SSM client."""

    def __init__(
        self,
        region: str,
        *,
        client: SSMClient | None = None,
        command_timeout: int = 600,
    ) -> None:
        self.region = region
        self.command_timeout = command_timeout
        self._client = client

    @cached_property
    def _ssm(self) -> SSMClient:
        if self._client is not None:
            return self._client

        import boto3

        return boto3.client("ssm", region_name=self.region)

    def register_activation(self, role: str, name: str) -> Activation:
        try:
            response = self._ssm.create_activation(
                DefaultInstanceName=name,
                Description=name,
                IamRole=role,
                RegistrationLimit=1,
            )
        except (ClientError, BotoCoreError) as e:
            raise RegistrationError(f"Creating SSM activation {name!r} for role {role}: {e}") from e

        return Activation(
            activation_id=response["ActivationId"],
            activation_code=response["ActivationCode"],
        )

    def describe_managed_instance(self, instance_id: str) -> bool:
        try:
            response = self._ssm.describe_instance_information(
                Filters=[{"Key": "InstanceIds", "Values": [instance_id]}],
            )
        except (ClientError, BotoCoreError) as e:
            raise RegistrationError(f"Describing managed instance {instance_id}: {e}") from e

        return any(
            info.get("InstanceId") == instance_id
            for info in response.get("InstanceInformationList", [])
        )

    def send_command(self, instance_id: str, commands: Sequence[str]) -> str:
        try:
            response = self._ssm.send_command(
                InstanceIds=[instance_id],
                DocumentName=RUN_SHELL_SCRIPT,
                Parameters={"commands": list(commands)},
                TimeoutSeconds=min(self.command_timeout, 3600),
            )
        except (ClientError, BotoCoreError) as e:
            raise CommandSubmissionError(f"Sending command to {instance_id}: {e}") from e

        command_id: str = response["Command"]["CommandId"]
        log.debug(f"Sent command {command_id} to {instance_id}")
        return command_id

    def list_command_invocations(self, command_id: str) -> list[CommandInvocation]:
        try:
            response = self._ssm.list_command_invocations(CommandId=command_id, Details=True)
        except (ClientError, BotoCoreError) as e:
            raise CommandSubmissionError(f"Listing invocations of command {command_id}: {e}") from e

        invocations: list[CommandInvocation] = []
        for raw in response.get("CommandInvocations", []):
            try:
                status = CommandStatus(raw["Status"])
            except ValueError as e:
                raise CommandSubmissionError(
                    f"Command {command_id} reported unrecognized status {raw['Status']!r}"
                ) from e
            output = "".join(plugin.get("Output", "") for plugin in raw.get("CommandPlugins", []))
            invocations.append(CommandInvocation(status=status, output=output))
        return invocations
