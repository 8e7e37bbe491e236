"""Associations file loading with validation.

SECURITY: File reads enforce a size limit. Input validation is performed at
the boundary so the reconciler only ever sees validated requirements.

Accepted layouts:
1. Flat: {name, version, podIdentityAssociations: [...]}
2. Kubernetes-style wrapper: {apiVersion, kind, metadata, spec: {...}}
3. eksctl ClusterConfig: the addon is picked by name from addons[]
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES
from .models import AddonSpec

logger = logging.getLogger(__name__)

CLUSTER_CONFIG_KIND = "ClusterConfig"


class SpecLoadError(Exception):
    """Raised when the associations file cannot be loaded or fails validation."""

    pass


def _select_addon(raw_data: dict[str, Any], addon_name: str | None, path: Path) -> dict[str, Any]:
    """Extract one addon's section from an eksctl ClusterConfig."""
    addons = raw_data.get("addons") or []
    if not isinstance(addons, list):
        raise SpecLoadError(f"addons must be a list: {path}")

    candidates = [a for a in addons if isinstance(a, dict) and a.get("podIdentityAssociations")]
    if addon_name:
        candidates = [a for a in addons if isinstance(a, dict) and a.get("name") == addon_name]
        if not candidates:
            raise SpecLoadError(f"Addon '{addon_name}' not found in {path}")
        return candidates[0]

    if len(candidates) != 1:
        names = [a.get("name") for a in candidates]
        raise SpecLoadError(
            f"Cannot pick an addon from {path}: {len(candidates)} addons declare "
            f"podIdentityAssociations {names}; pass an addon name"
        )
    return candidates[0]


def parse_addon_spec(
    raw_data: Any,
    path: Path,
    addon_name: str | None = None,
) -> AddonSpec:
    """Validate already-parsed YAML data into an AddonSpec.

    Args:
        raw_data: Result of yaml.safe_load.
        path: Source path, used in error messages.
        addon_name: Addon to select from a ClusterConfig.

    Raises:
        SpecLoadError: If the data has the wrong shape or fails validation.
    """
    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Associations file must contain a YAML mapping: {path}")

    if raw_data.get("kind") == CLUSTER_CONFIG_KIND:
        spec_data = _select_addon(raw_data, addon_name, path)
    elif "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec", {})
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {path}")
    else:
        spec_data = raw_data

    try:
        spec = AddonSpec.model_validate(spec_data)
    except ValidationError as e:
        # Format Pydantic validation errors for readability
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}" if loc else f"  - {msg}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {path}:\n{error_list}") from e

    if addon_name and spec.name and spec.name != addon_name:
        raise SpecLoadError(
            f"Associations file {path} is for addon '{spec.name}', not '{addon_name}'"
        )
    return spec


def load_addon_spec(path: Path, addon_name: str | None = None) -> AddonSpec:
    """Load and validate pod identity association requirements from YAML.

    Args:
        path: YAML file to read.
        addon_name: Addon to select (ClusterConfig) or to check against.

    Returns:
        Validated AddonSpec.

    Raises:
        SpecLoadError: If the file cannot be loaded or fails validation.
    """
    if not path.exists():
        raise SpecLoadError(f"Associations file not found: {path}")

    # SECURITY: Check file size before reading
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat associations file {path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Associations file exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SpecLoadError(f"Failed to read associations file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    spec = parse_addon_spec(raw_data, path, addon_name)

    logger.info(
        "Loaded %d pod identity associations from %s",
        len(spec.pod_identity_associations),
        path,
    )
    return spec
