"""LoadBalancer manifest loading with validation.

File reads are bounded in size and parsed with ``yaml.safe_load``.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import InvalidLoadBalancerError, LoadBalancer

logger = logging.getLogger(__name__)

MAX_MANIFEST_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max manifest file


class ManifestLoadError(Exception):
    """Raised when a manifest cannot be loaded or fails validation."""

    pass


def load_manifest(path: Path) -> LoadBalancer:
    """Load and validate a LoadBalancer manifest from YAML.

    Raises:
        ManifestLoadError: If the file cannot be read or is not a valid
            LoadBalancer.
    """
    if not path.exists():
        raise ManifestLoadError(f"Manifest file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ManifestLoadError(f"Failed to stat manifest file {path}: {e}") from e

    if file_size > MAX_MANIFEST_FILE_SIZE_BYTES:
        raise ManifestLoadError(
            f"Manifest file exceeds maximum size of {MAX_MANIFEST_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestLoadError(f"Failed to read manifest file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ManifestLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise ManifestLoadError(f"Manifest file must contain a YAML mapping: {path}")

    try:
        lb = LoadBalancer.from_object(raw_data)
    except InvalidLoadBalancerError as e:
        cause = e.__cause__
        if not isinstance(cause, ValidationError):
            raise ManifestLoadError(f"Validation failed for {path}: {e}") from e

        # Format Pydantic validation errors for readability
        errors = []
        for error in cause.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise ManifestLoadError(f"Validation failed for {path}:\n{error_list}") from e

    logger.info("Loaded LoadBalancer manifest", extra={"lb": lb.key, "path": str(path)})
    return lb
