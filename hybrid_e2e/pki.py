"""Node certificates for IAM Roles Anywhere.

IAM Roles Anywhere authenticates a node by an X.509 certificate chained to a
registered trust anchor (the CA). The CA is loaded once per run and shared,
read-only, by every node flow; each node gets a fresh leaf key pair.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from hybrid_e2e.exceptions import CertificateIssueError

DEFAULT_CA_VALIDITY = timedelta(days=30)
DEFAULT_CERT_VALIDITY = timedelta(days=7)
_CLOCK_SKEW = timedelta(minutes=5)

type PrivateKey = ec.EllipticCurvePrivateKey


@dataclass(frozen=True, slots=True)
class Certificate:
    """PEM-encoded certificate and its private key."""

    cert_pem: str
    key_pem: str

    def __repr__(self) -> str:
        return "Certificate(cert_pem=..., key_pem='***')"


@dataclass(frozen=True, slots=True)
class CertificateAuthority:
    """CA material used to sign node certificates.

    Immutable after construction: parallel node flows may share one instance.
    """

    cert_pem: str
    key_pem: str

    def __repr__(self) -> str:
        return "CertificateAuthority(cert_pem=..., key_pem='***')"

    @classmethod
    def from_files(cls, cert_path: str | Path, key_path: str | Path) -> CertificateAuthority:
        return cls(
            cert_pem=Path(cert_path).read_text(encoding="utf-8"),
            key_pem=Path(key_path).read_text(encoding="utf-8"),
        )

    @classmethod
    def generate(
        cls,
        common_name: str = "hybrid-e2e-ca",
        validity: timedelta = DEFAULT_CA_VALIDITY,
    ) -> CertificateAuthority:
        """Create a self-signed CA suitable as a Roles Anywhere trust anchor."""
        key = ec.generate_private_key(ec.SECP256R1())
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        now = datetime.now(UTC)
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - _CLOCK_SKEW)
            .not_valid_after(now + validity)
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            .sign(key, hashes.SHA256())
        )
        return cls(cert_pem=_cert_to_pem(cert), key_pem=_key_to_pem(key))

    def load(self) -> tuple[x509.Certificate, PrivateKeyTypes]:
        """Parse the PEM material.

        Raises:
            CertificateIssueError: If either PEM block is malformed or the key
                does not belong to the certificate.
        """
        try:
            cert = x509.load_pem_x509_certificate(self.cert_pem.encode())
            key = serialization.load_pem_private_key(self.key_pem.encode(), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise CertificateIssueError(f"Malformed CA material: {e}") from e

        if _public_bytes(key.public_key()) != _public_bytes(cert.public_key()):
            raise CertificateIssueError("CA private key does not match the CA certificate")
        return cert, key


def issue_certificate(
    ca: CertificateAuthority,
    node_name: str,
    validity: timedelta = DEFAULT_CERT_VALIDITY,
) -> Certificate:
    """Issue a leaf certificate for ``node_name`` signed by ``ca``.

    Fresh key material is generated on every call.

    Raises:
        CertificateIssueError: If the CA material is unusable, ``node_name``
            cannot be a certificate subject (over 64 characters, not an
            ASCII DNS label), or signing fails.
    """
    ca_cert, ca_key = ca.load()

    key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.now(UTC)
    try:
        builder = _leaf_builder(ca_cert, key, node_name, now, validity)
        cert = builder.sign(ca_key, hashes.SHA256())  # type: ignore[arg-type]
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CertificateIssueError(f"Issuing certificate for {node_name!r}: {e}") from e

    return Certificate(cert_pem=_cert_to_pem(cert), key_pem=_key_to_pem(key))


def _leaf_builder(
    ca_cert: x509.Certificate,
    key: PrivateKey,
    node_name: str,
    now: datetime,
    validity: timedelta,
) -> x509.CertificateBuilder:
    return (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, node_name)]))
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - _CLOCK_SKEW)
        .not_valid_after(now + validity)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CLIENT_AUTH]), critical=False)
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(node_name)]), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_cert.public_key()),  # type: ignore[arg-type]
            critical=False,
        )
    )


def _cert_to_pem(cert: x509.Certificate) -> str:
    return cert.public_bytes(serialization.Encoding.PEM).decode()


def _key_to_pem(key: PrivateKey) -> str:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def _public_bytes(public_key: object) -> bytes:
    return public_key.public_bytes(  # type: ignore[attr-defined]
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
