"""S3 URI parsing and object key helpers.

Rollout profiles name S3 serving locations as ``s3://bucket/prefix``.
Parsing happens once at profile load so a bad URI fails before any
bundle is staged, and the parsed location builds every object key the
S3 serving location touches.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.errors import SanctionsConfigError

_S3_SCHEME = "s3://"


@dataclass(frozen=True)
class S3Location:
    """Bucket and key prefix of one S3 serving location."""

    bucket: str
    prefix: str

    def key(self, *parts: str) -> str:
        """Join path parts under the location prefix."""
        return "/".join((self.prefix, *(part.strip("/") for part in parts)))

    def url(self, object_key: str) -> str:
        return f"{_S3_SCHEME}{self.bucket}/{object_key}"


def parse_s3_uri(uri: str) -> S3Location:
    """Parse and validate an S3 URI.

    Raises:
        SanctionsConfigError: If the scheme, bucket or prefix is missing.
    """
    if not uri.startswith(_S3_SCHEME):
        raise _uri_error(uri)
    bucket, _, prefix = uri.removeprefix(_S3_SCHEME).partition("/")
    prefix = prefix.strip("/")
    if not bucket or not prefix:
        raise _uri_error(uri)
    return S3Location(bucket=bucket, prefix=prefix)


def _uri_error(uri: str) -> SanctionsConfigError:
    return SanctionsConfigError(
        f"Invalid S3 URI '{uri}': expected s3://bucket/prefix. "
        "Serving locations need a key prefix, not a bare bucket."
    )
