"""S3 serving location.

Bundles are uploaded under ``<prefix>/bundles/<bundle_id>/`` with the
manifest written last, so a bundle counts as staged only once complete.
The active pointer is the single ``<prefix>/active.json`` object; one
``put_object`` replaces it atomically for every reader.
"""

from __future__ import annotations

from datetime import datetime, timezone
import json
from pathlib import Path
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from core.config import RegistryConfig
from core.constants import ACTIVE_POINTER_FILE_NAME, BUNDLE_MANIFEST_FILE_NAME, BUNDLES_DIR_NAME
from core.errors import SanctionsDistributionError
from core.s3_uri import parse_s3_uri
from distribution.bundle_types import BundleManifest, manifest_from_payload


def create_s3_client(config: RegistryConfig) -> Any:
    """Create boto3 S3 client for serving locations.

    Args:
        config: Runtime config with optional session settings.

    Returns:
        Boto3 S3 client.
    """
    session_kwargs: dict[str, str] = {}
    if config.s3_profile:
        session_kwargs["profile_name"] = config.s3_profile
    if config.s3_region:
        session_kwargs["region_name"] = config.s3_region
    session = boto3.session.Session(**session_kwargs)
    return session.client("s3")


class S3ServingLocation:
    """Serving location backed by an S3 bucket prefix."""

    def __init__(self, name: str, s3_client: Any, uri: str) -> None:
        self._location = parse_s3_uri(uri)
        self.name = name
        self._s3_client = s3_client

    def stage_bundle(self, manifest: BundleManifest, source_dir: Path) -> None:
        """Upload bundle files, then the manifest that marks them complete.

        Re-staging an existing bundle is a no-op once its manifest matches;
        nothing is uploaded over a bundle readers may already be pinned to.
        """
        if self.has_bundle(manifest.bundle_id):
            if self.read_manifest(manifest.bundle_id).files == manifest.files:
                return
            raise SanctionsDistributionError(
                f"Bundle {manifest.bundle_id} already exists at {self.name} with different files."
            )
        bundle_prefix = self._bundle_prefix(manifest.bundle_id)
        for file_name in sorted(manifest.files):
            local_file = source_dir / file_name
            object_key = f"{bundle_prefix}/{file_name}"
            try:
                self._s3_client.upload_file(str(local_file), self._location.bucket, object_key)
            except (BotoCoreError, ClientError, OSError) as error:
                raise SanctionsDistributionError(
                    f"Failed to stage {local_file} to {self._location.url(object_key)}: {error}. "
                    "Check AWS credentials and retry prestage."
                ) from error
        self._put_json(f"{bundle_prefix}/{BUNDLE_MANIFEST_FILE_NAME}", manifest.to_payload())

    def has_bundle(self, bundle_id: str) -> bool:
        manifest_key = f"{self._bundle_prefix(bundle_id)}/{BUNDLE_MANIFEST_FILE_NAME}"
        return self._get_json(manifest_key) is not None

    def read_manifest(self, bundle_id: str) -> BundleManifest:
        object_key = f"{self._bundle_prefix(bundle_id)}/{BUNDLE_MANIFEST_FILE_NAME}"
        payload = self._get_json(object_key)
        if payload is None:
            raise SanctionsDistributionError(f"Bundle {bundle_id} is not staged at {self.name}.")
        return manifest_from_payload(payload, self._location.url(object_key))

    def activate(self, bundle_id: str) -> None:
        """Swap the active pointer object to a staged bundle."""
        if not self.has_bundle(bundle_id):
            raise SanctionsDistributionError(
                f"Bundle {bundle_id} is not staged at {self.name}; pre-stage before promotion."
            )
        self._put_json(
            self._location.key(ACTIVE_POINTER_FILE_NAME),
            {"bundle_id": bundle_id, "promoted_at": datetime.now(timezone.utc).isoformat()},
        )

    def active_bundle_id(self) -> str | None:
        payload = self._get_json(self._location.key(ACTIVE_POINTER_FILE_NAME))
        if payload is None:
            return None
        if not isinstance(payload, dict) or not payload.get("bundle_id"):
            raise SanctionsDistributionError(f"Invalid active pointer at {self.name}.")
        return str(payload["bundle_id"])

    def list_bundles(self) -> tuple[str, ...]:
        bundles_prefix = self._location.key(BUNDLES_DIR_NAME) + "/"
        bundle_ids: set[str] = set()
        for object_key in self._list_keys(bundles_prefix):
            bundle_id = object_key.removeprefix(bundles_prefix).split("/", 1)[0]
            if bundle_id:
                bundle_ids.add(bundle_id)
        return tuple(sorted(bundle_ids))

    def delete_bundle(self, bundle_id: str) -> None:
        if bundle_id == self.active_bundle_id():
            raise SanctionsDistributionError(
                f"Refusing to delete active bundle {bundle_id} at {self.name}."
            )
        object_keys = self._list_keys(f"{self._bundle_prefix(bundle_id)}/")
        if not object_keys:
            return
        try:
            self._s3_client.delete_objects(
                Bucket=self._location.bucket,
                Delete={"Objects": [{"Key": object_key} for object_key in object_keys]},
            )
        except (BotoCoreError, ClientError) as error:
            raise SanctionsDistributionError(
                f"Failed to delete bundle {bundle_id} at {self.name}: {error}."
            ) from error

    def _bundle_prefix(self, bundle_id: str) -> str:
        return self._location.key(BUNDLES_DIR_NAME, bundle_id)

    def _put_json(self, object_key: str, payload: object) -> None:
        try:
            self._s3_client.put_object(
                Bucket=self._location.bucket,
                Key=object_key,
                Body=(json.dumps(payload, indent=2, sort_keys=True) + "\n").encode("utf-8"),
                ContentType="application/json",
            )
        except (BotoCoreError, ClientError) as error:
            raise SanctionsDistributionError(
                f"Failed to write {self._location.url(object_key)}: {error}."
            ) from error

    def _get_json(self, object_key: str) -> object | None:
        try:
            response = self._s3_client.get_object(Bucket=self._location.bucket, Key=object_key)
        except ClientError as error:
            if error.response.get("Error", {}).get("Code") in {"NoSuchKey", "404"}:
                return None
            raise SanctionsDistributionError(
                f"Failed to read {self._location.url(object_key)}: {error}."
            ) from error
        except BotoCoreError as error:
            raise SanctionsDistributionError(
                f"Failed to read {self._location.url(object_key)}: {error}."
            ) from error
        try:
            return json.loads(response["Body"].read())
        except json.JSONDecodeError as error:
            raise SanctionsDistributionError(
                f"Invalid JSON at {self._location.url(object_key)}: {error.msg}."
            ) from error

    def _list_keys(self, prefix: str) -> list[str]:
        object_keys: list[str] = []
        request: dict[str, str] = {"Bucket": self._location.bucket, "Prefix": prefix}
        while True:
            try:
                response = self._s3_client.list_objects_v2(**request)
            except (BotoCoreError, ClientError) as error:
                raise SanctionsDistributionError(
                    f"Failed to list {self._location.url(prefix)}: {error}."
                ) from error
            object_keys.extend(item["Key"] for item in response.get("Contents", []))
            if not response.get("IsTruncated"):
                return object_keys
            request["ContinuationToken"] = response["NextContinuationToken"]
