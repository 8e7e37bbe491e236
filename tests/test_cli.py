"""Tests for the podid CLI."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from aws_mock import MockAWSContext
from click.testing import CliRunner
from factories import EXTERNAL_ROLE_ARN, stack_name_for

from podidentity import __version__
from podidentity.cli import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


class TestStackName:
    def test_prints_derived_name(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["stack-name", "test", "sa-1"])

        assert result.exit_code == 0
        assert result.output.strip() == "eksctl-test-addon--podidentityrole-sa-1"

    def test_empty_service_account(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["stack-name", "test", ""])

        assert result.exit_code == 1
        assert "service_account_name cannot be empty" in result.output


class TestValidate:
    def test_valid_file(self, runner: CliRunner, associations_file: Path) -> None:
        result = runner.invoke(cli, ["validate", str(associations_file)])

        assert result.exit_code == 0
        assert "2 pod identity associations valid for addon aws-ebs-csi-driver" in result.output
        assert "kube-system/ebs-csi-controller-sa: role managed by stack" in result.output
        assert "default/reporting: roleARN supplied" in result.output

    def test_invalid_file(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text(
            "podIdentityAssociations:\n  - namespace: BAD\n    serviceAccountName: sa-1\n",
            encoding="utf-8",
        )

        result = runner.invoke(cli, ["validate", str(path)])

        assert result.exit_code == 1
        assert "Validation failed" in result.output

    def test_undecodable_file(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "latin1.yaml"
        path.write_bytes(b"podIdentityAssociations: []  # caf\xe9\n")

        result = runner.invoke(cli, ["validate", str(path)])

        assert result.exit_code == 1
        assert "Failed to read associations file" in result.output
        assert not isinstance(result.exception, UnicodeDecodeError)

    def test_missing_file(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(cli, ["validate", str(tmp_path / "missing.yaml")])

        assert result.exit_code == 2


class TestReconcile:
    def args(self, associations_file: Path, *extra: str) -> list[str]:
        return [
            "reconcile",
            "--cluster",
            "test",
            "--region",
            "us-west-2",
            "--file",
            str(associations_file),
            *extra,
        ]

    def test_json_output(self, runner: CliRunner, associations_file: Path) -> None:
        with MockAWSContext() as ctx:
            result = runner.invoke(cli, self.args(associations_file))

            assert result.exit_code == 0, result.output
            stack = ctx.state.get_stack(stack_name_for("ebs-csi-controller-sa"))

        payload = json.loads(result.stdout)
        assert payload["podIdentityAssociations"] == [
            {"serviceAccount": "ebs-csi-controller-sa", "roleArn": stack.role_arn},
            {"serviceAccount": "reporting", "roleArn": EXTERNAL_ROLE_ARN},
        ]

    def test_yaml_output(self, runner: CliRunner, associations_file: Path) -> None:
        with MockAWSContext():
            result = runner.invoke(cli, self.args(associations_file, "--output", "yaml"))

        assert result.exit_code == 0, result.output
        payload = yaml.safe_load(result.stdout)
        assert payload["podIdentityAssociations"][1]["roleArn"] == EXTERNAL_ROLE_ARN

    def test_addon_name_tagged(self, runner: CliRunner, associations_file: Path) -> None:
        with MockAWSContext() as ctx:
            result = runner.invoke(
                cli, self.args(associations_file, "--addon", "aws-ebs-csi-driver")
            )

            assert result.exit_code == 0, result.output
            stack = ctx.state.get_stack(stack_name_for("ebs-csi-controller-sa"))
            assert stack.tag_map["alpha.eksctl.io/addon-name"] == "aws-ebs-csi-driver"

    def test_invalid_region(self, runner: CliRunner, associations_file: Path) -> None:
        result = runner.invoke(
            cli,
            ["reconcile", "--cluster", "test", "--region", "mars-1", "--file", str(associations_file)],
        )

        assert result.exit_code == 1
        assert "valid AWS region" in result.output

    def test_reconciliation_failure(self, runner: CliRunner, associations_file: Path) -> None:
        with MockAWSContext() as ctx:
            ctx.state.add_association(
                "test", "kube-system", "ebs-csi-controller-sa", "arn:aws:iam::111122223333:role/x"
            )

            result = runner.invoke(cli, self.args(associations_file))

        assert result.exit_code == 1
        assert "podIdentityAssociation.roleARN is required" in result.output


def test_version(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output
