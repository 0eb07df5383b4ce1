"""Managed-instance registration polling."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger
from tenacity import retry, retry_if_result, wait_fixed

if TYPE_CHECKING:
    from hybrid_e2e.aws.ssm import IdentityBroker
    from hybrid_e2e.cancel import CancelToken


@dataclass(frozen=True, slots=True)
class UninstallVerifier:
    """Waits for an instance to drop out of the broker's managed-instance list.

    Polls at a constant interval. The loop is bounded only by the caller's
    token, optionally narrowed by ``timeout``.
    """

    broker: IdentityBroker
    poll_interval: float = 5.0
    timeout: float | None = None

    def wait_for_deregistration(self, instance_id: str, token: CancelToken) -> None:
        """Block until ``instance_id`` is no longer a managed instance.

        Raises:
            TimeoutError: If the deadline passes while still registered.
            CancellationError: If the token is cancelled.
            RegistrationError: If the broker call fails.
        """
        log = logger.bind(component="registration", instance_id=instance_id)
        bounded = token.with_timeout(self.timeout)

        @retry(
            retry=retry_if_result(bool),
            wait=wait_fixed(self.poll_interval),
            sleep=bounded.sleep,
        )
        def _still_registered() -> bool:
            bounded.check(f"waiting for {instance_id} to deregister")
            registered = self.broker.describe_managed_instance(instance_id)
            if registered:
                log.debug("Instance still registered")
            return registered

        _still_registered()
        log.info("Instance deregistered")
