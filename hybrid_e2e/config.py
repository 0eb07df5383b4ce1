"""TOML-based test run configuration.

Loads ~/.hybrid-e2e/defaults.toml (global) and hybrid-e2e.toml (project),
merges them, and resolves the result into settings and credential providers.

Example hybrid-e2e.toml:

    [cluster]
    name = "hybrid-e2e-1"
    region = "us-west-2"
    kubernetes_version = "1.31"

    [artifacts]
    nodeadm_url = "s3://my-bucket.s3.amazonaws.com/latest/bin/linux/amd64/nodeadm"

    [ssm]
    role = "hybrid-e2e-ssm-role"

    [iam_roles_anywhere]
    role_arn = "arn:aws:iam::123456789012:role/hybrid-e2e-ira"
    trust_anchor_arn = "arn:aws:rolesanywhere:us-west-2:123456789012:trust-anchor/..."
    profile_arn = "arn:aws:rolesanywhere:us-west-2:123456789012:profile/..."
    ca_cert = "ca.pem"
    ca_key = "ca.key"
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any

from hybrid_e2e.api import HybridCluster
from hybrid_e2e.aws.activation import SSM_ACTIVATION_NAME
from hybrid_e2e.credentials import (
    CredentialProviderName,
    IamRolesAnywhereProvider,
    SsmProvider,
)
from hybrid_e2e.exceptions import ConfigurationError
from hybrid_e2e.logging import LogConfig
from hybrid_e2e.pki import CertificateAuthority

if TYPE_CHECKING:
    from hybrid_e2e.aws.ssm import IdentityBroker
    from hybrid_e2e.credentials import NodeadmCredentialsProvider

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".hybrid-e2e" / "defaults.toml"
PROJECT_CONFIG_NAME = "hybrid-e2e.toml"


# =============================================================================
# Settings
# =============================================================================


@dataclass(frozen=True, slots=True)
class ArtifactSettings:
    nodeadm_url: str | None = None


@dataclass(frozen=True, slots=True)
class SsmSettings:
    role: str
    activation_name: str = SSM_ACTIVATION_NAME


@dataclass(frozen=True, slots=True)
class IamRolesAnywhereSettings:
    role_arn: str
    trust_anchor_arn: str
    profile_arn: str
    ca_cert: Path
    ca_key: Path


@dataclass(frozen=True, slots=True)
class CommandSettings:
    poll_interval: float = 2.0
    command_timeout: float = 300.0


@dataclass(frozen=True, slots=True)
class UninstallSettings:
    poll_interval: float = 5.0
    timeout: float | None = 600.0


@dataclass(frozen=True, slots=True)
class Settings:
    """Resolved configuration of one test run."""

    cluster: HybridCluster
    artifacts: ArtifactSettings = ArtifactSettings()
    ssm: SsmSettings | None = None
    iam_roles_anywhere: IamRolesAnywhereSettings | None = None
    commands: CommandSettings = CommandSettings()
    uninstall: UninstallSettings = UninstallSettings()
    logging: LogConfig = LogConfig()


# =============================================================================
# Loading
# =============================================================================


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        try:
            return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)
    return _deep_merge(global_cfg, project_cfg)


def _build[T](cls: type[T], section: str, raw: RawConfig) -> T:
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = set(raw) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown key(s) in [{section}]: {', '.join(sorted(unknown))}"
        )
    try:
        return cls(**raw)
    except TypeError as e:
        raise ConfigurationError(f"Invalid [{section}] section: {e}") from e


def _resolve_paths(raw: RawConfig, keys: tuple[str, ...], base_dir: Path) -> RawConfig:
    resolved = dict(raw)
    for key in keys:
        if key in resolved:
            path = Path(resolved[key]).expanduser()
            resolved[key] = path if path.is_absolute() else base_dir / path
    return resolved


def resolve_config(
    raw: RawConfig | None = None,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> Settings:
    """Build Settings from a raw mapping, loading the TOML files if none is given.

    Relative CA paths are resolved against the project directory.

    Raises:
        ConfigurationError: On missing required sections or keys, or unknown keys.
    """
    if raw is None:
        raw = load_config(project_dir=project_dir, global_path=global_path)
    base_dir = project_dir or Path.cwd()

    raw_cluster = raw.get("cluster")
    if raw_cluster is None:
        raise ConfigurationError("Missing [cluster] section")

    raw_ira = raw.get("iam_roles_anywhere")
    if raw_ira is not None:
        raw_ira = _resolve_paths(raw_ira, ("ca_cert", "ca_key"), base_dir)

    return Settings(
        cluster=_build(HybridCluster, "cluster", raw_cluster),
        artifacts=_build(ArtifactSettings, "artifacts", raw.get("artifacts", {})),
        ssm=_build(SsmSettings, "ssm", raw["ssm"]) if "ssm" in raw else None,
        iam_roles_anywhere=(
            _build(IamRolesAnywhereSettings, "iam_roles_anywhere", raw_ira)
            if raw_ira is not None
            else None
        ),
        commands=_build(CommandSettings, "commands", raw.get("commands", {})),
        uninstall=_build(UninstallSettings, "uninstall", raw.get("uninstall", {})),
        logging=_build(LogConfig, "logging", raw.get("logging", {})),
    )


# =============================================================================
# Provider resolution
# =============================================================================


def resolve_provider(
    name: str | CredentialProviderName,
    settings: Settings,
    *,
    broker: IdentityBroker | None = None,
    node_name: str | None = None,
    ca: CertificateAuthority | None = None,
) -> NodeadmCredentialsProvider:
    """Build the credential provider variant for mechanism ``name``.

    Args:
        name: ``"ssm"`` or ``"iam-ra"``.
        settings: Resolved run settings.
        broker: Identity broker, required for SSM.
        node_name: Node name, required for IAM Roles Anywhere.
        ca: Shared CA; loaded from the configured files when omitted.

    Raises:
        ConfigurationError: If the mechanism is unknown or its settings or
            arguments are missing.
    """
    try:
        mechanism = CredentialProviderName(name)
    except ValueError:
        valid = ", ".join(m.value for m in CredentialProviderName)
        raise ConfigurationError(f"Unknown credential provider '{name}'. Valid: {valid}") from None

    match mechanism:
        case CredentialProviderName.SSM:
            if settings.ssm is None:
                raise ConfigurationError("Missing [ssm] section")
            if broker is None:
                raise ConfigurationError("The SSM credential provider needs an identity broker")
            return SsmProvider(
                broker=broker,
                role=settings.ssm.role,
                activation_name=settings.ssm.activation_name,
                uninstall_poll_interval=settings.uninstall.poll_interval,
                uninstall_timeout=settings.uninstall.timeout,
            )
        case CredentialProviderName.IAM_ROLES_ANYWHERE:
            ira = settings.iam_roles_anywhere
            if ira is None:
                raise ConfigurationError("Missing [iam_roles_anywhere] section")
            if not node_name:
                raise ConfigurationError("The IAM Roles Anywhere provider needs a node name")
            if ca is None:
                try:
                    ca = CertificateAuthority.from_files(ira.ca_cert, ira.ca_key)
                except OSError as e:
                    raise ConfigurationError(f"Reading CA material: {e}") from e
            return IamRolesAnywhereProvider(
                node_name=node_name,
                trust_anchor_arn=ira.trust_anchor_arn,
                profile_arn=ira.profile_arn,
                role_arn=ira.role_arn,
                ca=ca,
            )
