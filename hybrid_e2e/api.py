"""Node bootstrap model: the NodeConfig document and node identity types.

NodeConfig mirrors the ``node.eks.aws/v1alpha1`` schema consumed by nodeadm.
Field names are snake_case in Python and camelCase on the wire.

Example:
    config = NodeConfig(
        spec=NodeConfigSpec(
            cluster=ClusterDetails(name="hybrid-1", region="us-west-2"),
            hybrid=HybridOptions(ssm=SSM(activation_id="...", activation_code="...")),
        )
    )
    user_data_fragment = config.to_yaml()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Self

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

API_VERSION = "node.eks.aws/v1alpha1"
KIND = "NodeConfig"

# =============================================================================
# NodeConfig document
# =============================================================================


class _Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )


class ClusterDetails(_Document):
    """Identity of the EKS cluster the node joins."""

    name: str = Field(min_length=1, description="EKS cluster name")
    region: str = Field(min_length=1, description="AWS region of the cluster")


class SSM(_Document):
    """SSM hybrid activation credentials."""

    activation_id: str = Field(min_length=1)
    activation_code: str = Field(min_length=1)


class IAMRolesAnywhere(_Document):
    """IAM Roles Anywhere trust configuration."""

    role_arn: str = Field(min_length=1)
    trust_anchor_arn: str = Field(min_length=1)
    profile_arn: str = Field(min_length=1)


class HybridOptions(_Document):
    """Hybrid node credentials: exactly one mechanism payload.

    ``node_name`` belongs to IAM Roles Anywhere, where the node identity is
    known before join. SSM assigns the name (the managed-instance id) at
    registration time, so it must be absent there.
    """

    node_name: str | None = Field(default=None, min_length=1)
    ssm: SSM | None = None
    iam_roles_anywhere: IAMRolesAnywhere | None = None

    @model_validator(mode="after")
    def _exactly_one_mechanism(self) -> Self:
        populated = [p for p in (self.ssm, self.iam_roles_anywhere) if p is not None]
        if len(populated) != 1:
            raise ValueError(
                "hybrid options require exactly one of 'ssm' or 'iamRolesAnywhere', "
                f"got {len(populated)}"
            )
        if self.iam_roles_anywhere is not None and self.node_name is None:
            raise ValueError("'nodeName' is required with 'iamRolesAnywhere'")
        if self.ssm is not None and self.node_name is not None:
            raise ValueError("'nodeName' is assigned by SSM and must not be set")
        return self


class NodeConfigSpec(_Document):
    cluster: ClusterDetails
    hybrid: HybridOptions


class NodeConfig(_Document):
    """Versioned configuration document consumed by nodeadm."""

    api_version: Literal["node.eks.aws/v1alpha1"] = API_VERSION
    kind: Literal["NodeConfig"] = KIND
    spec: NodeConfigSpec

    def to_dict(self) -> dict[str, object]:
        """Wire representation: camelCase keys, absent variants omitted."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False)

    @classmethod
    def from_yaml(cls, text: str) -> NodeConfig:
        return cls.model_validate(yaml.safe_load(text))


# =============================================================================
# Node identity
# =============================================================================


@dataclass(frozen=True, slots=True)
class File:
    """A file to materialize on the instance before nodeadm install."""

    path: str
    content: str

    def __post_init__(self) -> None:
        if not self.path.startswith("/"):
            raise ValueError(f"File path must be absolute: {self.path!r}")


@dataclass(frozen=True, slots=True)
class HybridNode:
    """A provisioned instance, known by both of its identities.

    Attributes:
        instance_id: EC2 instance id (``i-...``), tracked by the compute layer.
        node_name: Name the node registered with in the cluster. For SSM
            nodes this is the managed-instance id (``mi-...``).
    """

    instance_id: str
    node_name: str


@dataclass(frozen=True, slots=True)
class HybridCluster:
    """Cluster identity handed to credential providers."""

    name: str
    region: str
    kubernetes_version: str = "1.31"

    @property
    def details(self) -> ClusterDetails:
        return ClusterDetails(name=self.name, region=self.region)
