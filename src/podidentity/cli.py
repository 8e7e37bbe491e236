"""Pod identity association reconciler CLI (podid).

Usage:
    podid reconcile --cluster demo --region us-west-2 --file addon.yaml
    podid validate addon.yaml --addon aws-ebs-csi-driver
    podid stack-name demo ebs-csi-controller-sa
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import click
import yaml

from . import __version__
from .config import (
    DEFAULT_MAX_CONCURRENT_RECONCILES,
    DEFAULT_RECONCILE_TIMEOUT_SECONDS,
    Config,
    ConfigurationError,
)
from .errors import ReconciliationError
from .main import run_reconciliation, setup_logging
from .security import StaticCredentialsError
from .spec_loader import SpecLoadError, load_addon_spec
from .stacks import make_stack_name

OUTPUT_FORMATS = ("json", "yaml")


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="podid")
@click.option("-v", "--verbose", is_flag=True, help="Log progress to stderr.")
def cli(verbose: bool) -> None:
    """Pod identity association reconciler CLI (podid).

    Resolves the IAM role for each pod identity association of an EKS addon,
    creating or updating role stacks where this tool owns them.

    \b
    Quick Start:
        podid validate addon.yaml
        podid reconcile --cluster demo --region us-west-2 --file addon.yaml
    """
    if verbose:
        setup_logging(json_output=False, level=logging.INFO)


# =============================================================================
# Reconciliation Commands
# =============================================================================


@cli.command()
@click.option("--cluster", "cluster_name", required=True, help="EKS cluster name.")
@click.option("--region", required=True, help="AWS region of the cluster.")
@click.option(
    "--file",
    "associations_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML file declaring podIdentityAssociations.",
)
@click.option("--addon", "addon_name", default="", help="Addon the associations belong to.")
@click.option(
    "--max-concurrency",
    type=int,
    default=DEFAULT_MAX_CONCURRENT_RECONCILES,
    show_default=True,
    help="Cap on associations reconciled at once (0 = unbounded).",
)
@click.option(
    "--timeout",
    "timeout_seconds",
    type=int,
    default=DEFAULT_RECONCILE_TIMEOUT_SECONDS,
    show_default=True,
    help="Deadline for the whole pass in seconds.",
)
@click.option(
    "--output",
    "output_format",
    type=click.Choice(OUTPUT_FORMATS),
    default="json",
    show_default=True,
)
def reconcile(
    cluster_name: str,
    region: str,
    associations_file: Path,
    addon_name: str,
    max_concurrency: int,
    timeout_seconds: int,
    output_format: str,
) -> None:
    """Reconcile pod identity associations and print the resolved roles."""
    try:
        config = Config(
            cluster_name=cluster_name,
            region=region,
            addon_name=addon_name,
            associations_file=associations_file,
            max_concurrent_reconciles=max_concurrency,
            reconcile_timeout_seconds=timeout_seconds,
        )
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    try:
        results = asyncio.run(run_reconciliation(config))
    except (SpecLoadError, StaticCredentialsError, ReconciliationError) as e:
        raise click.ClickException(str(e)) from e

    payload = {"podIdentityAssociations": [r.to_api() for r in results]}
    if output_format == "yaml":
        click.echo(yaml.safe_dump(payload, sort_keys=False), nl=False)
    else:
        click.echo(json.dumps(payload, indent=2))


@cli.command()
@click.argument("associations_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--addon", "addon_name", default=None, help="Addon to select from a ClusterConfig.")
def validate(associations_file: Path, addon_name: str | None) -> None:
    """Validate an associations file without calling AWS."""
    try:
        spec = load_addon_spec(associations_file, addon_name)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e

    label = f" for addon {spec.name}" if spec.name else ""
    click.secho(
        f"✓ {len(spec.pod_identity_associations)} pod identity associations valid{label}",
        fg="green",
    )
    for association in spec.pod_identity_associations:
        source = "roleARN supplied" if association.has_role_arn else "role managed by stack"
        click.echo(f"  {association.namespace}/{association.service_account_name}: {source}")


@cli.command("stack-name")
@click.argument("cluster_name")
@click.argument("service_account_name")
def stack_name(cluster_name: str, service_account_name: str) -> None:
    """Print the role stack name for a service account."""
    try:
        click.echo(make_stack_name(cluster_name, service_account_name))
    except ValueError as e:
        raise click.ClickException(str(e)) from e


def main() -> None:
    """CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
