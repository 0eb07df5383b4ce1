from __future__ import annotations

import threading

import pytest

from hybrid_e2e.aws.commands import CompletionPolicy, SSMCommandRunner
from hybrid_e2e.aws.ssm import CommandStatus
from hybrid_e2e.cancel import CancelToken
from hybrid_e2e.exceptions import CancellationError, CommandStatusError, TimeoutError

pytestmark = [pytest.mark.unit]

S = CommandStatus


def runner(broker, policy: CompletionPolicy = CompletionPolicy.TERMINAL, **kwargs) -> SSMCommandRunner:
    kwargs.setdefault("poll_interval", 0)
    return SSMCommandRunner(broker, policy=policy, **kwargs)


class TestCompletionPolicy:
    @pytest.mark.parametrize("status", [S.SUCCESS, S.FAILED, S.CANCELLED, S.TIMED_OUT])
    def test_terminal_settles_on_terminal(self, status: CommandStatus) -> None:
        assert CompletionPolicy.TERMINAL.settled(status)

    @pytest.mark.parametrize("status", [S.PENDING, S.IN_PROGRESS, S.DELAYED, S.CANCELLING])
    def test_terminal_keeps_waiting(self, status: CommandStatus) -> None:
        assert not CompletionPolicy.TERMINAL.settled(status)

    def test_in_progress_acceptable_settles_on_in_progress(self) -> None:
        assert CompletionPolicy.IN_PROGRESS_ACCEPTABLE.settled(S.IN_PROGRESS)
        assert CompletionPolicy.IN_PROGRESS_ACCEPTABLE.accepts(S.IN_PROGRESS)
        assert not CompletionPolicy.IN_PROGRESS_ACCEPTABLE.settled(S.PENDING)

    def test_only_success_accepted_when_terminal(self) -> None:
        assert CompletionPolicy.TERMINAL.accepts(S.SUCCESS)
        assert not CompletionPolicy.TERMINAL.accepts(S.IN_PROGRESS)
        assert not CompletionPolicy.IN_PROGRESS_ACCEPTABLE.accepts(S.FAILED)


class TestWaitForTerminal:
    def test_waits_through_pending_and_in_progress(self, make_broker, token: CancelToken) -> None:
        broker = make_broker([[S.PENDING, S.IN_PROGRESS, S.IN_PROGRESS, S.SUCCESS]])
        outcomes = runner(broker).run("i-1", ["echo hi"], token)
        assert len(outcomes) == 1
        assert outcomes[0].success
        assert outcomes[0].output == "output of cmd-1"
        assert broker.polls("cmd-1") == 4

    def test_empty_invocation_list_is_pending(self, make_broker, token: CancelToken) -> None:
        broker = make_broker([[None, None, S.SUCCESS]])
        outcomes = runner(broker).run("i-1", ["echo hi"], token)
        assert outcomes[0].status is S.SUCCESS
        assert broker.polls("cmd-1") == 3

    def test_each_line_is_its_own_command(self, make_broker, token: CancelToken) -> None:
        broker = make_broker([[S.SUCCESS], [S.SUCCESS]])
        runner(broker).run("i-1", ["first", "second"], token)
        assert broker.sent == [("i-1", ["first"]), ("i-1", ["second"])]

    def test_outcomes_keep_submission_order(self, make_broker, token: CancelToken) -> None:
        broker = make_broker([[S.SUCCESS]] * 4)
        commands = ["a", "b", "c", "d"]
        outcomes = runner(broker).run("i-1", commands, token)
        assert [o.command for o in outcomes] == commands
        assert [o.position for o in outcomes] == [1, 2, 3, 4]
        assert [o.command_id for o in outcomes] == ["cmd-1", "cmd-2", "cmd-3", "cmd-4"]

    def test_failure_reports_position(self, make_broker, token: CancelToken) -> None:
        broker = make_broker([[S.SUCCESS], [S.FAILED]])
        with pytest.raises(CommandStatusError) as excinfo:
            runner(broker).run("i-1", ["install", "init"], token)
        assert excinfo.value.position == 2
        assert excinfo.value.outcome.status is S.FAILED
        assert "Command 2 of 2 on i-1" in str(excinfo.value)

    def test_empty_command_list(self, broker, token: CancelToken) -> None:
        assert runner(broker).run("i-1", [], token) == ()
        assert broker.sent == []


class TestWaitForInProgress:
    def test_in_progress_accepted_without_waiting_further(self, make_broker, token: CancelToken) -> None:
        broker = make_broker([[S.PENDING, S.IN_PROGRESS, S.FAILED]])
        outcomes = runner(broker, CompletionPolicy.IN_PROGRESS_ACCEPTABLE).run("i-1", ["uninstall"], token)
        assert outcomes[0].status is S.IN_PROGRESS
        assert broker.polls("cmd-1") == 2

    def test_later_commands_still_run_after_failure(self, make_broker, token: CancelToken) -> None:
        broker = make_broker([[S.IN_PROGRESS], [S.FAILED], [S.SUCCESS]])
        with pytest.raises(CommandStatusError) as excinfo:
            runner(broker, CompletionPolicy.IN_PROGRESS_ACCEPTABLE).run(
                "i-1", ["one", "two", "three"], token,
            )
        error = excinfo.value
        assert error.position == 2
        assert len(error.outcomes) == 3
        assert [o.status for o in error.outcomes] == [S.IN_PROGRESS, S.FAILED, S.SUCCESS]
        assert len(broker.sent) == 3

    def test_first_rejected_outcome_is_reported(self, make_broker, token: CancelToken) -> None:
        broker = make_broker([[S.TIMED_OUT], [S.FAILED]])
        with pytest.raises(CommandStatusError) as excinfo:
            runner(broker, CompletionPolicy.IN_PROGRESS_ACCEPTABLE).run("i-1", ["a", "b"], token)
        assert excinfo.value.position == 1


class TestStopOnFailure:
    def test_stops_submitting_after_first_failure(self, make_broker, token: CancelToken) -> None:
        broker = make_broker([[S.SUCCESS], [S.FAILED], [S.SUCCESS]])
        with pytest.raises(CommandStatusError) as excinfo:
            runner(broker, stop_on_failure=True).run("i-1", ["a", "b", "c"], token)
        assert excinfo.value.position == 2
        assert len(excinfo.value.outcomes) == 2
        assert excinfo.value.total == 3
        assert "Command 2 of 3 on i-1" in str(excinfo.value)
        assert [cmd for _, [cmd] in broker.sent] == ["a", "b"]

    def test_tolerated_failure_does_not_stop(self, make_broker, token: CancelToken) -> None:
        broker = make_broker([[S.FAILED], [S.SUCCESS]])
        outcomes = runner(broker, stop_on_failure=True).run(
            "i-1", ["a", "b"], token, tolerate=lambda o: o.status is S.FAILED,
        )
        assert [o.status for o in outcomes] == [S.FAILED, S.SUCCESS]


class TestTolerance:
    def test_tolerated_failure_is_returned(self, make_broker, token: CancelToken) -> None:
        broker = make_broker([[S.FAILED]])
        outcomes = runner(broker, CompletionPolicy.IN_PROGRESS_ACCEPTABLE).run(
            "i-1", ["uninstall"], token, tolerate=lambda o: o.status is S.FAILED,
        )
        assert outcomes[0].status is S.FAILED

    def test_untolerated_status_still_raises(self, make_broker, token: CancelToken) -> None:
        broker = make_broker([[S.TIMED_OUT]])
        with pytest.raises(CommandStatusError):
            runner(broker, CompletionPolicy.IN_PROGRESS_ACCEPTABLE).run(
                "i-1", ["uninstall"], token, tolerate=lambda o: o.status is S.FAILED,
            )


class TestDeadlines:
    def test_command_never_settles(self, make_broker, token: CancelToken) -> None:
        broker = make_broker([[S.PENDING]])
        with pytest.raises(TimeoutError, match="cmd-1"):
            runner(broker, command_timeout=0).run("i-1", ["sleep"], token)

    def test_command_timeout_follows_token_clock(self, make_broker, clock) -> None:
        clock.step = 1.0
        token = CancelToken(clock=clock)
        broker = make_broker([[S.IN_PROGRESS]])
        with pytest.raises(TimeoutError, match="cmd-1"):
            runner(broker, command_timeout=5).run("i-1", ["sleep"], token)
        assert 0 < broker.polls("cmd-1") < 5
        assert not token.expired

    def test_command_timeout_applies_per_command(self, make_broker, clock) -> None:
        clock.step = 1.0
        token = CancelToken(clock=clock)
        broker = make_broker([[S.IN_PROGRESS, S.IN_PROGRESS, S.SUCCESS]] * 3)
        outcomes = runner(broker, command_timeout=10).run("i-1", ["a", "b", "c"], token)
        assert all(o.success for o in outcomes)

    def test_token_deadline_stops_polling(self, make_broker, clock) -> None:
        clock.step = 1.0
        token = CancelToken(timeout=5, clock=clock)
        broker = make_broker([[S.IN_PROGRESS]])
        with pytest.raises(TimeoutError, match="deadline"):
            runner(broker).run("i-1", ["sleep"], token)
        assert broker.polls("cmd-1") < 5

    def test_cancelled_before_submission(self, broker) -> None:
        token = CancelToken()
        token.cancel()
        with pytest.raises(CancellationError):
            runner(broker).run("i-1", ["echo"], token)
        assert broker.sent == []

    def test_cancel_from_another_thread(self, make_broker) -> None:
        token = CancelToken(timeout=30)
        broker = make_broker([[S.IN_PROGRESS]])
        timer = threading.Timer(0.05, token.cancel)
        timer.start()
        try:
            with pytest.raises(CancellationError):
                runner(broker, poll_interval=0.01).run("i-1", ["sleep"], token)
        finally:
            timer.cancel()
