from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta

import pytest

from hybrid_e2e.aws.ssm import Activation, CommandInvocation, CommandStatus
from hybrid_e2e.cancel import CancelToken
from hybrid_e2e.exceptions import RegistrationError, SigningError
from hybrid_e2e.pki import CertificateAuthority

# None in a command script means "no invocation yet" (not fanned out).
type StatusScript = Sequence[CommandStatus | None]


class FakeClock:
    """Monotonic clock that advances by ``step`` on every read."""

    def __init__(self, start: float = 1000.0, step: float = 0.0) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBroker:
    """In-memory IdentityBroker.

    Each submitted command consumes the next script from ``command_scripts``;
    each poll of it advances one step, the last step repeating forever.
    ``registration`` works the same way for describe_managed_instance.
    """

    def __init__(
        self,
        command_scripts: Sequence[StatusScript] = (),
        registration: Sequence[bool] = (False,),
    ) -> None:
        self.command_scripts = [list(s) for s in command_scripts]
        self.registration = list(registration)
        self.sent: list[tuple[str, list[str]]] = []
        self.activations: list[tuple[str, str]] = []
        self.describe_calls: list[str] = []
        self.activation_error: Exception | None = None
        self._polls: dict[str, int] = {}

    def register_activation(self, role: str, name: str) -> Activation:
        if self.activation_error is not None:
            raise self.activation_error
        self.activations.append((role, name))
        n = len(self.activations)
        return Activation(activation_id=f"act-{n}", activation_code=f"code-{n}")

    def describe_managed_instance(self, instance_id: str) -> bool:
        self.describe_calls.append(instance_id)
        if len(self.registration) > 1:
            return self.registration.pop(0)
        return self.registration[0]

    def send_command(self, instance_id: str, commands: Sequence[str]) -> str:
        self.sent.append((instance_id, list(commands)))
        command_id = f"cmd-{len(self.sent)}"
        self._polls[command_id] = 0
        return command_id

    def list_command_invocations(self, command_id: str) -> list[CommandInvocation]:
        index = int(command_id.removeprefix("cmd-")) - 1
        script = self.command_scripts[index]
        step = min(self._polls[command_id], len(script) - 1)
        self._polls[command_id] += 1
        status = script[step]
        if status is None:
            return []
        return [CommandInvocation(status=status, output=f"output of {command_id}")]

    def polls(self, command_id: str) -> int:
        return self._polls[command_id]


class FakeStorage:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[str, str, timedelta]] = []

    def presign_get(self, bucket: str, key: str, ttl: timedelta) -> str:
        self.calls.append((bucket, key, ttl))
        if self.error is not None:
            raise self.error
        return f"https://{bucket}.s3.amazonaws.com/{key}?X-Amz-Expires={int(ttl.total_seconds())}"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token() -> CancelToken:
    return CancelToken(timeout=30)


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def make_broker():
    return FakeBroker


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def failing_storage() -> FakeStorage:
    return FakeStorage(error=SigningError("Presigning s3://b/k: AccessDenied"))


@pytest.fixture
def broker_error() -> RegistrationError:
    return RegistrationError("Creating SSM activation: AccessDeniedException")


@pytest.fixture(scope="session")
def ca() -> CertificateAuthority:
    return CertificateAuthority.generate("hybrid-e2e-test-ca")
