"""S3 artifact locator: turns ``s3://`` locators into presigned GET URLs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from functools import cached_property
from typing import TYPE_CHECKING, Protocol
from urllib.parse import unquote, urlsplit

from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from hybrid_e2e.exceptions import ParseError, SigningError

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

    from hybrid_e2e.cancel import CancelToken

log = logger.bind(component="s3")


class ObjectStorage(Protocol):
    """Protocol for the object store that signs fetch URLs."""

    def presign_get(self, bucket: str, key: str, ttl: timedelta) -> str:
        """Return a GET URL for bucket/key that stops working after ttl."""
        ...


class S3Storage:
    """ObjectStorage backed by the boto3 S3 client."""

    def __init__(self, region: str | None = None, *, client: S3Client | None = None) -> None:
        self.region = region
        self._client = client

    @cached_property
    def _s3(self) -> S3Client:
        if self._client is not None:
            return self._client

        import boto3

        return boto3.client(
            "s3",
            region_name=self.region,
            config=Config(signature_version="s3v4"),
        )

    def presign_get(self, bucket: str, key: str, ttl: timedelta) -> str:
        try:
            return self._s3.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=int(ttl.total_seconds()),
            )
        except (ClientError, BotoCoreError) as e:
            raise SigningError(f"Presigning s3://{bucket}/{key}: {e}") from e


def parse_s3_url(url: str) -> tuple[str, str]:
    """Split ``scheme://bucket.host/key`` into (bucket, key).

    The bucket is the first dot-separated segment of the host; the key is the
    percent-decoded path without its leading slash.

    Raises:
        ParseError: If the locator is not a URI or its host has no ``.``.
    """
    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise ParseError(f"Invalid S3 URL {url!r}: {e}") from e

    bucket, dot, _ = parts.netloc.partition(".")
    if not dot or not bucket:
        raise ParseError(f"Invalid S3 URL format {url!r}: host must be '<bucket>.<endpoint>'")

    return bucket, unquote(parts.path).removeprefix("/")


@dataclass(frozen=True, slots=True)
class ArtifactLocator:
    """Produces short-lived fetch URLs for artifacts in object storage."""

    storage: ObjectStorage

    def presign(self, url: str, expiration: timedelta, token: CancelToken) -> str:
        """Presign the artifact behind ``url`` for ``expiration``.

        Expiry is enforced by the storage backend; nothing here re-checks it.

        Raises:
            ParseError: If the locator is malformed.
            SigningError: If the storage backend cannot sign.
        """
        bucket, key = parse_s3_url(url)
        token.check(f"presigning {url}")
        presigned = self.storage.presign_get(bucket, key, expiration)
        log.debug(f"Presigned s3://{bucket}/{key} for {expiration}")
        return presigned
