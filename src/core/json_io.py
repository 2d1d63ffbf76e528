"""JSON I/O helpers for registry state, tree files and pointers."""

from __future__ import annotations

import json
import os
from pathlib import Path

from core.errors import SanctionsStoreError


def read_json_file(payload_path: Path, default_value: object | None = None) -> object:
    """Read JSON payload from disk with optional default when missing."""
    if default_value is not None and not payload_path.exists():
        return default_value
    try:
        return json.loads(payload_path.read_text(encoding="utf-8"))
    except FileNotFoundError as error:
        raise SanctionsStoreError(
            f"Missing required state file at {payload_path}. A previous step may be incomplete."
        ) from error
    except json.JSONDecodeError as error:
        raise SanctionsStoreError(f"Failed to parse JSON at {payload_path}: {error.msg}.") from error
    except OSError as error:
        raise SanctionsStoreError(f"Failed to read state file {payload_path}: {error}.") from error


def write_json_file(payload_path: Path, payload: object) -> None:
    """Write one JSON payload atomically with traceable errors.

    The payload lands in a sibling temp file first and replaces the target
    with ``os.replace``, so readers observe either the old or new content.
    """
    temp_path = payload_path.with_name(f".{payload_path.name}.{os.getpid()}.tmp")
    try:
        payload_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
        os.replace(temp_path, payload_path)
    except OSError as error:
        temp_path.unlink(missing_ok=True)
        raise SanctionsStoreError(f"Failed to write state file {payload_path}: {error}.") from error


def write_bytes_atomic(target_path: Path, payload: bytes) -> None:
    """Write raw bytes atomically through a temp file and rename."""
    temp_path = target_path.with_name(f".{target_path.name}.{os.getpid()}.tmp")
    try:
        target_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path.write_bytes(payload)
        os.replace(temp_path, target_path)
    except OSError as error:
        temp_path.unlink(missing_ok=True)
        raise SanctionsStoreError(f"Failed to write file {target_path}: {error}.") from error
