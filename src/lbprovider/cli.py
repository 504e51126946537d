"""Azure provider developer CLI (lbprovider).

Usage:
    lbprovider validate lb.yaml                 # Validate a LoadBalancer manifest
    lbprovider render lb.yaml --image IMAGE     # Print the desired Deployment
"""

from __future__ import annotations

from pathlib import Path

import click
import yaml
from kubernetes.client import ApiClient

from .desired import generate_deployment
from .manifests import ManifestLoadError, load_manifest
from .models import LoadBalancer

CLI_VERSION = "0.1.0"


def _load(manifest: Path) -> LoadBalancer:
    try:
        return load_manifest(manifest)
    except ManifestLoadError as e:
        raise click.ClickException(str(e)) from e


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=CLI_VERSION, prog_name="lbprovider")
def cli() -> None:
    """Azure LoadBalancer provider CLI.

    \b
    Quick Start:
        lbprovider validate lb.yaml
        lbprovider render lb.yaml --image registry/azure-provider:v1
    """
    pass


@cli.command()
@click.argument("manifest", type=click.Path(path_type=Path))
def validate(manifest: Path) -> None:
    """Validate a LoadBalancer manifest."""
    lb = _load(manifest)
    requested = "requested" if lb.requests_provider else "not requested"
    click.secho(f"✓ {lb.key} is valid (azure provider {requested})", fg="green")


@cli.command()
@click.argument("manifest", type=click.Path(path_type=Path))
@click.option(
    "--image",
    envvar="AZURE_PROVIDER_IMAGE",
    required=True,
    help="Provider agent image (default: $AZURE_PROVIDER_IMAGE)",
)
def render(manifest: Path, image: str) -> None:
    """Print the desired provider Deployment for a LoadBalancer manifest."""
    lb = _load(manifest)
    if not lb.requests_provider:
        raise click.ClickException(f"{lb.key} does not request the azure provider")

    deployment = generate_deployment(lb, image)
    body = ApiClient().sanitize_for_serialization(deployment)
    click.echo(yaml.safe_dump(body, sort_keys=False), nl=False)


if __name__ == "__main__":
    cli()
