"""Remote command execution over the SSM managed-command channel.

Each command line is submitted as its own SSM command, in order, and its
invocation is polled until the runner's completion policy is satisfied.

Two policies exist because some commands cannot report their own end:
``nodeadm uninstall`` on an SSM node tears down the very agent that would
report the final status. For those, reaching InProgress is all that can be
observed.

Example:
    runner = SSMCommandRunner(broker)
    outcomes = runner.run("i-0abc", ["nodeadm debug"], CancelToken(timeout=300))

    uninstall = replace(runner, policy=CompletionPolicy.IN_PROGRESS_ACCEPTABLE)
    uninstall.run("i-0abc", ["sudo nodeadm uninstall"], token)
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from loguru import logger
from tenacity import retry, retry_if_exception_type, wait_fixed

from hybrid_e2e.aws.ssm import CommandInvocation, CommandOutcome, CommandStatus
from hybrid_e2e.exceptions import CommandStatusError

if TYPE_CHECKING:
    from hybrid_e2e.aws.ssm import IdentityBroker
    from hybrid_e2e.cancel import CancelToken

type Tolerance = Callable[[CommandOutcome], bool]
"""Predicate marking a rejected outcome as an expected, logged-only failure."""


class _CommandPendingError(Exception):
    """Command has not settled yet - retry."""


class CompletionPolicy(Enum):
    """When the runner stops waiting on a command, and what counts as success."""

    TERMINAL = "terminal"
    IN_PROGRESS_ACCEPTABLE = "in-progress-acceptable"

    def settled(self, status: CommandStatus) -> bool:
        match self:
            case CompletionPolicy.TERMINAL:
                return status.is_terminal
            case CompletionPolicy.IN_PROGRESS_ACCEPTABLE:
                return status.is_terminal or status is CommandStatus.IN_PROGRESS

    def accepts(self, status: CommandStatus) -> bool:
        match self:
            case CompletionPolicy.TERMINAL:
                return status is CommandStatus.SUCCESS
            case CompletionPolicy.IN_PROGRESS_ACCEPTABLE:
                return status in (CommandStatus.SUCCESS, CommandStatus.IN_PROGRESS)


@dataclass(frozen=True, slots=True)
class SSMCommandRunner:
    """Runs command lines on one instance and aggregates their outcomes.

    Attributes:
        broker: Managed-command channel.
        policy: Completion policy applied to every command of a run.
        poll_interval: Seconds between status polls.
        command_timeout: Seconds a single command may take to settle.
        stop_on_failure: Stop submitting at the first rejected,
            non-tolerated outcome instead of running every command.
    """

    broker: IdentityBroker
    policy: CompletionPolicy = CompletionPolicy.TERMINAL
    poll_interval: float = 2.0
    command_timeout: float = 300.0
    stop_on_failure: bool = False

    def run(
        self,
        instance_id: str,
        commands: Sequence[str],
        token: CancelToken,
        *,
        tolerate: Tolerance | None = None,
    ) -> tuple[CommandOutcome, ...]:
        """Run ``commands`` in order on ``instance_id``.

        Unless ``stop_on_failure`` is set, every command is run even if an
        earlier one failed, so the result always has one outcome per
        submitted command, in submission order.

        Args:
            instance_id: Target managed instance.
            commands: Shell command lines.
            token: Deadline and cancellation for the whole run.
            tolerate: Rejected outcomes for which this returns True are
                logged as warnings instead of raising.

        Returns:
            One outcome per command, in submission order.

        Raises:
            CommandSubmissionError: If the channel rejects a submission or poll.
            CommandStatusError: For the first rejected, non-tolerated outcome.
            TimeoutError: If a command does not settle within command_timeout,
                or the token's deadline passes.
            CancellationError: If the token is cancelled.
        """
        log = logger.bind(component="commands", instance_id=instance_id)
        total = len(commands)

        def rejected(outcome: CommandOutcome) -> bool:
            if self.policy.accepts(outcome.status):
                return False
            if tolerate is not None and tolerate(outcome):
                log.warning(
                    f"Ignoring status {outcome.status.value} of command "
                    f"{outcome.position}/{total}: {outcome.command}"
                )
                return False
            return True

        outcomes: list[CommandOutcome] = []
        for position, command in enumerate(commands, start=1):
            outcome = self._run_one(instance_id, position, command, token)
            log.info(f"Command {position}/{total} {outcome.status.value}: {command}")
            if outcome.output:
                log.debug(f"Command {position}/{total} output:\n{outcome.output}")
            outcomes.append(outcome)
            if self.stop_on_failure and rejected(outcome):
                raise CommandStatusError(instance_id, outcome, tuple(outcomes), total=total)

        result = tuple(outcomes)
        if self.stop_on_failure:
            return result
        for outcome in result:
            if rejected(outcome):
                raise CommandStatusError(instance_id, outcome, result)
        return result

    def _run_one(
        self,
        instance_id: str,
        position: int,
        command: str,
        token: CancelToken,
    ) -> CommandOutcome:
        token.check(f"submitting command {position} to {instance_id}")
        command_id = self.broker.send_command(instance_id, [command])
        invocation = self._wait(instance_id, command_id, token.with_timeout(self.command_timeout))
        return CommandOutcome(
            position=position,
            command=command,
            command_id=command_id,
            status=invocation.status,
            output=invocation.output,
        )

    def _wait(self, instance_id: str, command_id: str, token: CancelToken) -> CommandInvocation:
        """Poll until the policy settles; ``token`` bounds this command alone."""

        @retry(
            wait=wait_fixed(self.poll_interval),
            retry=retry_if_exception_type(_CommandPendingError),
            sleep=token.sleep,
        )
        def _poll() -> CommandInvocation:
            token.check(f"command {command_id} on {instance_id}")
            invocations = self.broker.list_command_invocations(command_id)
            if not invocations:
                raise _CommandPendingError()

            invocation = invocations[0]
            if not self.policy.settled(invocation.status):
                raise _CommandPendingError()
            return invocation

        return _poll()
