"""SSM hybrid activation registration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from hybrid_e2e.aws.ssm import Activation, IdentityBroker
    from hybrid_e2e.cancel import CancelToken

log = logger.bind(component="activation")

SSM_ACTIVATION_NAME = "eks-hybrid-ssm-provider"


@dataclass(frozen=True, slots=True)
class ActivationRegistrar:
    """Registers managed-instance activations with the identity broker.

    Registration is not idempotent: each call creates a new activation, so
    nothing here retries. A caller that retries after an ambiguous failure
    may leave an orphaned activation behind.
    """

    broker: IdentityBroker

    def register(self, role: str, name: str, token: CancelToken) -> Activation:
        """Create an activation for ``role`` named ``name``.

        Raises:
            RegistrationError: If the broker rejects the request.
            CancellationError: If the token was cancelled before the call.
            TimeoutError: If the token's deadline passed before the call.
        """
        token.check(f"registering activation {name!r}")
        activation = self.broker.register_activation(role, name)
        log.info(f"Created activation {activation.activation_id} ({name}) for role {role}")
        return activation
