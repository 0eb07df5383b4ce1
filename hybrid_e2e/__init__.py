"""End-to-end provisioning of EKS hybrid nodes.

Credential providers generate nodeadm bootstrap configuration and node
secrets; the SSM command runner drives nodeadm on the instance and the
providers confirm teardown.

Example:
    from hybrid_e2e import (
        CancelToken, HybridCluster, HybridNode, SSMBroker, SSMCommandRunner, SsmProvider,
    )
    from hybrid_e2e.nodeadm import uninstall_node

    broker = SSMBroker(region="us-west-2")
    provider = SsmProvider(broker=broker, role="hybrid-e2e-ssm-role")
    config = provider.nodeadm_config(HybridCluster("hybrid-1", "us-west-2"), CancelToken(60))
    ...
    uninstall_node(SSMCommandRunner(broker), provider, node, CancelToken(600))
"""

from loguru import logger

from hybrid_e2e.api import File, HybridCluster, HybridNode, NodeConfig
from hybrid_e2e.aws import (
    ActivationRegistrar,
    ArtifactLocator,
    CommandOutcome,
    CommandStatus,
    CompletionPolicy,
    S3Storage,
    SSMBroker,
    SSMCommandRunner,
    UninstallVerifier,
)
from hybrid_e2e.cancel import CancelToken
from hybrid_e2e.credentials import (
    CredentialProvider,
    CredentialProviderName,
    IamRolesAnywhereProvider,
    NodeadmCredentialsProvider,
    SsmProvider,
)
from hybrid_e2e.exceptions import (
    CancellationError,
    CertificateIssueError,
    CommandError,
    CommandStatusError,
    CommandSubmissionError,
    ConfigurationError,
    HybridE2EError,
    ParseError,
    RegistrationError,
    SigningError,
    TimeoutError,
)
from hybrid_e2e.pki import Certificate, CertificateAuthority, issue_certificate

# Disable by default (library behavior)
logger.disable("hybrid_e2e")

__all__ = [
    "ActivationRegistrar",
    "ArtifactLocator",
    "CancelToken",
    "CancellationError",
    "Certificate",
    "CertificateAuthority",
    "CertificateIssueError",
    "CommandError",
    "CommandOutcome",
    "CommandStatus",
    "CommandStatusError",
    "CommandSubmissionError",
    "CompletionPolicy",
    "ConfigurationError",
    "CredentialProvider",
    "CredentialProviderName",
    "File",
    "HybridCluster",
    "HybridE2EError",
    "HybridNode",
    "IamRolesAnywhereProvider",
    "NodeConfig",
    "NodeadmCredentialsProvider",
    "ParseError",
    "RegistrationError",
    "S3Storage",
    "SSMBroker",
    "SSMCommandRunner",
    "SigningError",
    "SsmProvider",
    "TimeoutError",
    "UninstallVerifier",
    "issue_certificate",
]
