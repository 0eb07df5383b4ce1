"""nodeadm lifecycle on a provisioned hybrid node.

Drives install and uninstall through the managed-command channel and wires
in each credential provider's teardown confirmation.
"""

from __future__ import annotations

import shlex
from dataclasses import replace
from datetime import timedelta
from typing import TYPE_CHECKING

from loguru import logger

from hybrid_e2e.aws.commands import CompletionPolicy
from hybrid_e2e.aws.ssm import CommandStatus
from hybrid_e2e.credentials import CredentialProviderName

if TYPE_CHECKING:
    from hybrid_e2e.api import HybridCluster, HybridNode
    from hybrid_e2e.aws.commands import SSMCommandRunner, Tolerance
    from hybrid_e2e.aws.s3 import ArtifactLocator
    from hybrid_e2e.aws.ssm import CommandOutcome
    from hybrid_e2e.cancel import CancelToken
    from hybrid_e2e.credentials import CredentialProvider

NODEADM_PATH = "/tmp/nodeadm"
NODEADM_CONFIG_PATH = "/nodeadm-config.yaml"
NODEADM_URL_EXPIRATION = timedelta(minutes=15)

# TODO: drop the validation skips once uninstall cordons and drains the node first.
UNINSTALL_SKIPPED_VALIDATIONS = ("node-validation", "pod-validation")


def nodeadm_url(locator: ArtifactLocator, url: str, token: CancelToken) -> str:
    """Presigned download URL for the nodeadm binary at ``url``."""
    return locator.presign(url, NODEADM_URL_EXPIRATION, token)


def install_commands(
    cluster: HybridCluster,
    provider: CredentialProvider,
    config_path: str = NODEADM_CONFIG_PATH,
) -> list[str]:
    return [
        f"sudo {NODEADM_PATH} install {shlex.quote(cluster.kubernetes_version)} "
        f"--credential-provider {provider.name.value}",
        f"sudo {NODEADM_PATH} init -c file://{config_path}",
    ]


def uninstall_commands() -> list[str]:
    return [f"sudo {NODEADM_PATH} uninstall -skip {','.join(UNINSTALL_SKIPPED_VALIDATIONS)}"]


def install_node(
    runner: SSMCommandRunner,
    provider: CredentialProvider,
    node: HybridNode,
    cluster: HybridCluster,
    token: CancelToken,
) -> tuple[CommandOutcome, ...]:
    """Install and initialize nodeadm, waiting for every command to finish.

    Install runs before the node has any hybrid registration, so commands go
    to the EC2 instance id. ``init`` is never submitted after a failed
    ``install``.
    """
    log = logger.bind(provider=provider.name.value, instance_id=node.instance_id)
    log.info(f"Installing nodeadm for Kubernetes {cluster.kubernetes_version}")
    terminal = replace(runner, policy=CompletionPolicy.TERMINAL, stop_on_failure=True)
    return terminal.run(node.instance_id, install_commands(cluster, provider), token)


def uninstall_node(
    runner: SSMCommandRunner,
    provider: CredentialProvider,
    node: HybridNode,
    token: CancelToken,
) -> tuple[CommandOutcome, ...]:
    """Uninstall nodeadm and wait for the provider to confirm teardown.

    Commands and the teardown check both target ``provider.instance_id(node)``:
    an SSM node is reachable only as its managed-instance id once joined.
    The uninstall command takes down the agent reporting its status, so the
    runner only waits for it to be picked up (InProgress).
    """
    instance_id = provider.instance_id(node)
    log = logger.bind(provider=provider.name.value, instance_id=instance_id)
    log.info("Uninstalling nodeadm")
    in_progress = replace(runner, policy=CompletionPolicy.IN_PROGRESS_ACCEPTABLE)
    outcomes = in_progress.run(
        instance_id,
        uninstall_commands(),
        token,
        tolerate=uninstall_tolerance(provider),
    )
    provider.verify_uninstall(instance_id, token)
    log.info("nodeadm uninstalled")
    return outcomes


def uninstall_tolerance(provider: CredentialProvider) -> Tolerance | None:
    """Failures to tolerate from the uninstall command for ``provider``.

    With SSM credentials, uninstall deregisters the managed instance while
    the command is still running, and SSM may record the invocation as
    Failed even though teardown went through. Only that status, and only
    for SSM, is tolerated; teardown itself is still confirmed afterwards by
    ``provider.verify_uninstall``.
    """
    if provider.name is not CredentialProviderName.SSM:
        return None
    return _ssm_agent_torn_down


def _ssm_agent_torn_down(outcome: CommandOutcome) -> bool:
    return outcome.status is CommandStatus.FAILED
