"""Credential providers: how a hybrid node proves its identity to EKS.

Mechanisms differ in three ways:

- whether the node identity is known before join (IAM Roles Anywhere) or
  assigned at registration (SSM),
- whether secrets travel inside the NodeConfig (SSM activation) or as
  separate files (certificate and key),
- whether teardown leaves broker-side state that must be polled away (SSM
  managed-instance registration) or not.

Each mechanism is a variant of NodeadmCredentialsProvider; a test driver
only talks to the CredentialProvider protocol.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from loguru import logger

from hybrid_e2e.api import (
    SSM,
    File,
    HybridOptions,
    IAMRolesAnywhere,
    NodeConfig,
    NodeConfigSpec,
)
from hybrid_e2e.aws.activation import SSM_ACTIVATION_NAME, ActivationRegistrar
from hybrid_e2e.aws.registration import UninstallVerifier
from hybrid_e2e.pki import issue_certificate

if TYPE_CHECKING:
    from hybrid_e2e.api import HybridCluster, HybridNode
    from hybrid_e2e.aws.ssm import IdentityBroker
    from hybrid_e2e.cancel import CancelToken
    from hybrid_e2e.pki import CertificateAuthority

IAM_PKI_DIR = "/etc/iam/pki"
NODE_CERT_PATH = f"{IAM_PKI_DIR}/server.pem"
NODE_KEY_PATH = f"{IAM_PKI_DIR}/server.key"


class CredentialProviderName(StrEnum):
    """Values of nodeadm's ``--credential-provider`` flag."""

    SSM = "ssm"
    IAM_ROLES_ANYWHERE = "iam-ra"


@runtime_checkable
class CredentialProvider(Protocol):
    """Capability interface shared by every credential mechanism."""

    @property
    def name(self) -> CredentialProviderName:
        """Mechanism identifier, passed to ``nodeadm install``."""
        ...

    @property
    def node_name(self) -> str:
        """Node name known before join, or "" when assigned at join time."""
        ...

    def nodeadm_config(self, cluster: HybridCluster, token: CancelToken) -> NodeConfig:
        """Build the NodeConfig for a new node of ``cluster``."""
        ...

    def files_for_node(self) -> list[File]:
        """Files to place on the instance before nodeadm install."""
        ...

    def instance_id(self, node: HybridNode) -> str:
        """The identity this mechanism treats as authoritative for ``node``."""
        ...

    def verify_uninstall(self, instance_id: str, token: CancelToken) -> None:
        """Block until teardown of ``instance_id`` is confirmed."""
        ...


# =============================================================================
# SSM
# =============================================================================


@dataclass(frozen=True, slots=True)
class SsmProvider:
    """Nodes join with a one-time SSM hybrid activation.

    SSM tracks these nodes as managed instances (``mi-...``), and that id is
    also the node name in the cluster, so the cluster-registered name is the
    authoritative identity.
    """

    broker: IdentityBroker
    role: str
    activation_name: str = SSM_ACTIVATION_NAME
    uninstall_poll_interval: float = 5.0
    uninstall_timeout: float | None = None

    @property
    def name(self) -> CredentialProviderName:
        return CredentialProviderName.SSM

    @property
    def node_name(self) -> str:
        return ""

    def nodeadm_config(self, cluster: HybridCluster, token: CancelToken) -> NodeConfig:
        activation = ActivationRegistrar(self.broker).register(self.role, self.activation_name, token)
        return NodeConfig(
            spec=NodeConfigSpec(
                cluster=cluster.details,
                hybrid=HybridOptions(
                    ssm=SSM(
                        activation_id=activation.activation_id,
                        activation_code=activation.activation_code,
                    ),
                ),
            ),
        )

    def files_for_node(self) -> list[File]:
        return []

    def instance_id(self, node: HybridNode) -> str:
        return node.node_name

    def verify_uninstall(self, instance_id: str, token: CancelToken) -> None:
        verifier = UninstallVerifier(
            self.broker,
            poll_interval=self.uninstall_poll_interval,
            timeout=self.uninstall_timeout,
        )
        verifier.wait_for_deregistration(instance_id, token)


# =============================================================================
# IAM Roles Anywhere
# =============================================================================


@dataclass(frozen=True, slots=True)
class IamRolesAnywhereProvider:
    """Nodes join with a CA-signed certificate and IAM Roles Anywhere.

    The node is launched directly on EC2 and holds no broker-side
    registration, so the EC2 instance id is authoritative and there is
    nothing to poll on uninstall.
    """

    node_name: str
    trust_anchor_arn: str
    profile_arn: str
    role_arn: str
    ca: CertificateAuthority

    @property
    def name(self) -> CredentialProviderName:
        return CredentialProviderName.IAM_ROLES_ANYWHERE

    def nodeadm_config(self, cluster: HybridCluster, token: CancelToken) -> NodeConfig:
        return NodeConfig(
            spec=NodeConfigSpec(
                cluster=cluster.details,
                hybrid=HybridOptions(
                    node_name=self.node_name,
                    iam_roles_anywhere=IAMRolesAnywhere(
                        role_arn=self.role_arn,
                        trust_anchor_arn=self.trust_anchor_arn,
                        profile_arn=self.profile_arn,
                    ),
                ),
            ),
        )

    def files_for_node(self) -> list[File]:
        certificate = issue_certificate(self.ca, self.node_name)
        logger.bind(provider=self.name.value, node_name=self.node_name).debug(
            "Issued node certificate"
        )
        return [
            File(path=NODE_CERT_PATH, content=certificate.cert_pem),
            File(path=NODE_KEY_PATH, content=certificate.key_pem),
        ]

    def instance_id(self, node: HybridNode) -> str:
        return node.instance_id

    def verify_uninstall(self, instance_id: str, token: CancelToken) -> None:
        return None


type NodeadmCredentialsProvider = SsmProvider | IamRolesAnywhereProvider
