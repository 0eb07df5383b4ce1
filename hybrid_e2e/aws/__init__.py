"""AWS collaborators: SSM (activations, registration, commands) and S3."""

from hybrid_e2e.aws.activation import SSM_ACTIVATION_NAME, ActivationRegistrar
from hybrid_e2e.aws.commands import CompletionPolicy, SSMCommandRunner
from hybrid_e2e.aws.registration import UninstallVerifier
from hybrid_e2e.aws.s3 import ArtifactLocator, ObjectStorage, S3Storage, parse_s3_url
from hybrid_e2e.aws.ssm import (
    Activation,
    CommandInvocation,
    CommandOutcome,
    CommandStatus,
    IdentityBroker,
    SSMBroker,
)

__all__ = [
    "SSM_ACTIVATION_NAME",
    "Activation",
    "ActivationRegistrar",
    "ArtifactLocator",
    "CommandInvocation",
    "CommandOutcome",
    "CommandStatus",
    "CompletionPolicy",
    "IdentityBroker",
    "ObjectStorage",
    "S3Storage",
    "SSMBroker",
    "SSMCommandRunner",
    "UninstallVerifier",
    "parse_s3_url",
]
