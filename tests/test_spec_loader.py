"""Tests for associations file loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from podidentity.config import MAX_SPEC_FILE_SIZE_BYTES
from podidentity.spec_loader import SpecLoadError, load_addon_spec, parse_addon_spec

CLUSTER_CONFIG_YAML = """\
apiVersion: eksctl.io/v1alpha5
kind: ClusterConfig
metadata:
  name: test
  region: us-west-2
addons:
  - name: vpc-cni
    podIdentityAssociations:
      - namespace: kube-system
        serviceAccountName: aws-node
        wellKnownPolicies:
          vpcCNI: true
  - name: coredns
  - name: aws-ebs-csi-driver
    podIdentityAssociations:
      - namespace: kube-system
        serviceAccountName: ebs-csi-controller-sa
"""

WRAPPED_YAML = """\
apiVersion: podidentity/v1
kind: AddonPodIdentity
metadata:
  name: ebs
spec:
  name: aws-ebs-csi-driver
  podIdentityAssociations:
    - namespace: kube-system
      serviceAccountName: ebs-csi-controller-sa
"""


def write(tmp_path: Path, content: str, name: str = "associations.yaml") -> Path:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return path


class TestLoadAddonSpec:
    """Tests for load_addon_spec."""

    def test_flat_layout(self, associations_file: Path) -> None:
        spec = load_addon_spec(associations_file)

        assert spec.name == "aws-ebs-csi-driver"
        assert [a.service_account_name for a in spec.pod_identity_associations] == [
            "ebs-csi-controller-sa",
            "reporting",
        ]
        assert spec.pod_identity_associations[0].well_known_policies.ebs_csi_controller
        assert spec.pod_identity_associations[1].has_role_arn

    def test_wrapped_layout(self, tmp_path: Path) -> None:
        spec = load_addon_spec(write(tmp_path, WRAPPED_YAML))

        assert spec.name == "aws-ebs-csi-driver"
        assert len(spec.pod_identity_associations) == 1

    def test_cluster_config_by_addon_name(self, tmp_path: Path) -> None:
        spec = load_addon_spec(write(tmp_path, CLUSTER_CONFIG_YAML), "vpc-cni")

        assert spec.name == "vpc-cni"
        assert spec.pod_identity_associations[0].service_account_name == "aws-node"

    def test_cluster_config_addon_without_associations(self, tmp_path: Path) -> None:
        spec = load_addon_spec(write(tmp_path, CLUSTER_CONFIG_YAML), "coredns")

        assert spec.pod_identity_associations == []

    def test_cluster_config_ambiguous_without_name(self, tmp_path: Path) -> None:
        with pytest.raises(SpecLoadError, match="Cannot pick an addon"):
            load_addon_spec(write(tmp_path, CLUSTER_CONFIG_YAML))

    def test_cluster_config_single_candidate_picked(self, tmp_path: Path) -> None:
        content = CLUSTER_CONFIG_YAML.split("  - name: aws-ebs-csi-driver")[0]

        spec = load_addon_spec(write(tmp_path, content))

        assert spec.name == "vpc-cni"

    def test_cluster_config_unknown_addon(self, tmp_path: Path) -> None:
        with pytest.raises(SpecLoadError, match="Addon 'kube-proxy' not found"):
            load_addon_spec(write(tmp_path, CLUSTER_CONFIG_YAML), "kube-proxy")

    def test_addon_name_mismatch(self, associations_file: Path) -> None:
        with pytest.raises(SpecLoadError, match="not 'vpc-cni'"):
            load_addon_spec(associations_file, "vpc-cni")

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(SpecLoadError, match="not found"):
            load_addon_spec(tmp_path / "missing.yaml")

    def test_oversized_file(self, tmp_path: Path) -> None:
        path = write(tmp_path, "#" * (MAX_SPEC_FILE_SIZE_BYTES + 1))

        with pytest.raises(SpecLoadError, match="exceeds maximum size"):
            load_addon_spec(path)

    def test_invalid_utf8(self, tmp_path: Path) -> None:
        path = tmp_path / "latin1.yaml"
        path.write_bytes("podIdentityAssociations: []  # caf\u00e9\n".encode("latin-1"))

        with pytest.raises(SpecLoadError, match="Failed to read associations file"):
            load_addon_spec(path)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        with pytest.raises(SpecLoadError, match="Invalid YAML"):
            load_addon_spec(write(tmp_path, "podIdentityAssociations: [unclosed"))

    def test_non_mapping(self, tmp_path: Path) -> None:
        with pytest.raises(SpecLoadError, match="must contain a YAML mapping"):
            load_addon_spec(write(tmp_path, "- just\n- a list\n"))

    def test_validation_errors_are_listed(self, tmp_path: Path) -> None:
        content = """\
podIdentityAssociations:
  - namespace: Not_Valid
    serviceAccountName: sa-1
"""
        with pytest.raises(SpecLoadError) as exc_info:
            load_addon_spec(write(tmp_path, content))

        message = str(exc_info.value)
        assert message.startswith("Validation failed for")
        assert "podIdentityAssociations.0.namespace" in message

    def test_duplicates_rejected(self, tmp_path: Path) -> None:
        content = """\
podIdentityAssociations:
  - namespace: default
    serviceAccountName: sa-1
  - namespace: default
    serviceAccountName: sa-1
"""
        with pytest.raises(SpecLoadError, match="duplicate pod identity association"):
            load_addon_spec(write(tmp_path, content))


class TestParseAddonSpec:
    def test_spec_section_must_be_mapping(self) -> None:
        with pytest.raises(SpecLoadError, match="Spec section must be a mapping"):
            parse_addon_spec({"apiVersion": "v1", "spec": ["x"]}, Path("inline"))

    def test_addons_must_be_list(self) -> None:
        with pytest.raises(SpecLoadError, match="addons must be a list"):
            parse_addon_spec({"kind": "ClusterConfig", "addons": {"name": "x"}}, Path("inline"))
