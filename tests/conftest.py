"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for aws_mock and factories imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from factories import ASSOCIATIONS_YAML  # noqa: E402

# Settings read by Config.from_env and credentials boto3 would pick up
ENV_VARS = (
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
    "AWS_PROFILE",
    "AWS_REGION",
    "AWS_DEFAULT_REGION",
    "CLUSTER_NAME",
    "ADDON_NAME",
    "ASSOCIATIONS_FILE",
    "OUTPUT_FILE",
    "MAX_CONCURRENT_RECONCILES",
    "API_TIMEOUT",
    "STACK_TIMEOUT",
    "RECONCILE_TIMEOUT",
    "AWS_MAX_ATTEMPTS",
    "REQUIRE_ROLE_CREDENTIALS",
    "ENABLE_AUDIT_LOGGING",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep host credentials and reconciler settings out of tests."""
    for key in ENV_VARS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def associations_file(tmp_path: Path) -> Path:
    """Flat associations file with one managed and one external role."""
    path = tmp_path / "associations.yaml"
    path.write_text(ASSOCIATIONS_YAML, encoding="utf-8")
    return path
