"""Runtime configuration model for the sanctions registry.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import (
    DEFAULT_BUILD_WORKERS,
    DEFAULT_DATA_ROOT,
    DEFAULT_FEED_URLS,
    DEFAULT_FETCH_DELAY_SECONDS,
    DEFAULT_FETCH_RETRIES,
    DEFAULT_FETCH_TIMEOUT_SECONDS,
    HASH_ALGORITHM,
    SUPPORTED_HASH_ALGORITHMS,
)
from core.errors import SanctionsConfigError


@dataclass(frozen=True)
class RegistryConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Local root directory for snapshots, trees and rollout state.
        hash_algorithm: Field hash primitive shared with the circuit.
        feed_urls: Ordered feed sources, primary first.
        fetch_retries: Attempts per feed source.
        fetch_delay_seconds: Sleep between attempts on one source.
        fetch_timeout_seconds: HTTP timeout per attempt.
        build_workers: Process count for per-category tree builds.
        s3_region: Optional default AWS region for S3 serving locations.
        s3_profile: Optional AWS profile for boto3 session initialization.
        profile_path: Optional YAML rollout profile path.
    """

    data_root: Path
    hash_algorithm: str
    feed_urls: tuple[str, ...]
    fetch_retries: int
    fetch_delay_seconds: float
    fetch_timeout_seconds: float
    build_workers: int
    s3_region: str | None
    s3_profile: str | None
    profile_path: Path | None

    @classmethod
    def from_env(cls) -> "RegistryConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            SanctionsConfigError: If environment values are invalid.
        """
        data_root_value = os.getenv("SANCTIONS_DATA_ROOT", str(DEFAULT_DATA_ROOT))
        profile_value = os.getenv("SANCTIONS_PROFILE")
        return cls(
            data_root=Path(data_root_value).expanduser().resolve(),
            hash_algorithm=_parse_hash_algorithm(
                os.getenv("SANCTIONS_HASH_ALGORITHM", HASH_ALGORITHM)
            ),
            feed_urls=_parse_feed_urls(os.getenv("SANCTIONS_FEED_URLS")),
            fetch_retries=_parse_positive_int(
                "SANCTIONS_FETCH_RETRIES",
                os.getenv("SANCTIONS_FETCH_RETRIES", str(DEFAULT_FETCH_RETRIES)),
            ),
            fetch_delay_seconds=_parse_non_negative_float(
                "SANCTIONS_FETCH_DELAY_SECONDS",
                os.getenv("SANCTIONS_FETCH_DELAY_SECONDS", str(DEFAULT_FETCH_DELAY_SECONDS)),
            ),
            fetch_timeout_seconds=_parse_non_negative_float(
                "SANCTIONS_FETCH_TIMEOUT_SECONDS",
                os.getenv("SANCTIONS_FETCH_TIMEOUT_SECONDS", str(DEFAULT_FETCH_TIMEOUT_SECONDS)),
            ),
            build_workers=_parse_positive_int(
                "SANCTIONS_BUILD_WORKERS",
                os.getenv("SANCTIONS_BUILD_WORKERS", str(DEFAULT_BUILD_WORKERS)),
            ),
            s3_region=os.getenv("SANCTIONS_S3_REGION"),
            s3_profile=os.getenv("SANCTIONS_S3_PROFILE"),
            profile_path=Path(profile_value).expanduser().resolve() if profile_value else None,
        )


def _parse_hash_algorithm(raw_value: str) -> str:
    """Validate the configured hash primitive name.

    Raises:
        SanctionsConfigError: If the algorithm is not supported.
    """
    normalized = raw_value.strip().lower()
    if normalized not in SUPPORTED_HASH_ALGORITHMS:
        raise SanctionsConfigError(
            f"Invalid SANCTIONS_HASH_ALGORITHM value '{raw_value}'. "
            f"Supported: {', '.join(SUPPORTED_HASH_ALGORITHMS)}."
        )
    return normalized


def _parse_feed_urls(raw_value: str | None) -> tuple[str, ...]:
    if raw_value is None:
        return DEFAULT_FEED_URLS
    urls = tuple(url.strip() for url in raw_value.split(",") if url.strip())
    if not urls:
        raise SanctionsConfigError(
            "Invalid SANCTIONS_FEED_URLS value: expected comma-separated URLs. "
            "Unset it to use the default feed sources."
        )
    for url in urls:
        if not url.startswith(("https://", "http://")):
            raise SanctionsConfigError(
                f"Invalid feed URL '{url}' in SANCTIONS_FEED_URLS: expected http(s) URL."
            )
    return urls


def _parse_positive_int(env_name: str, raw_value: str) -> int:
    """Parse an integer environment value that must be at least 1.

    Args:
        env_name: Variable name for error messages.
        raw_value: Raw string from environment.

    Returns:
        Parsed integer.

    Raises:
        SanctionsConfigError: If value is not a positive integer.
    """
    try:
        parsed = int(raw_value)
    except ValueError as error:
        raise SanctionsConfigError(
            f"Invalid {env_name} value: expected integer, got '{raw_value}'. "
            f"Set {env_name} to a numeric value."
        ) from error
    if parsed < 1:
        raise SanctionsConfigError(
            f"Invalid {env_name} value: expected at least 1, got {parsed}."
        )
    return parsed


def _parse_non_negative_float(env_name: str, raw_value: str) -> float:
    try:
        parsed = float(raw_value)
    except ValueError as error:
        raise SanctionsConfigError(
            f"Invalid {env_name} value: expected number, got '{raw_value}'. "
            f"Set {env_name} to a numeric value."
        ) from error
    if parsed < 0:
        raise SanctionsConfigError(
            f"Invalid {env_name} value: expected non-negative number, got {parsed}."
        )
    return parsed
