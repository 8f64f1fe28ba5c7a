"""Lambda deployer CLI.

Usage:
    deployer deploy --spec deploy.yaml --image-uri <uri>   # Deploy the application
    deployer deploy --retries forever                      # Wait as long as it takes
    deployer permissions --spec deploy.yaml                # Print the required IAM policy
    deployer validate --spec deploy.yaml                   # Validate the spec only
    deployer env-key arn:aws:s3:::my-bucket                # Show an address's env key
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import click

from .address import InvalidAddressError, ResourceAddress, derive_env_key
from .config import Config, ConfigurationError
from .main import run_deploy, run_permissions, setup_logging
from .models import DeploySpec
from .retry import RetryPolicy
from .spec_loader import SpecLoadError, load_spec


def load_config(**overrides: Any) -> Config:
    """Environment configuration with command-line overrides applied.

    Raises:
        click.ClickException: If the resulting configuration is invalid.
    """
    try:
        return Config.from_env(**overrides)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def parse_retries(value: str | None) -> RetryPolicy | None:
    if value is None:
        return None
    try:
        return RetryPolicy.parse(value)
    except ValueError as e:
        raise click.BadParameter(f"must be an integer or 'forever': {value}") from e


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="deployer")
def cli() -> None:
    """Deploy an application onto AWS Lambda.

    \b
    Quick Start:
        deployer validate               # Check deploy.yaml
        deployer permissions            # What IAM access do I need?
        deployer deploy --image-uri ... # Deploy
    """
    pass


@cli.command()
@click.option("--spec", "spec_path", type=click.Path(path_type=Path), help="Deploy spec (default: deploy.yaml)")
@click.option("--app-name", "-n", help="Application name (overrides APP_NAME)")
@click.option("--region", "-r", help="AWS region (overrides AWS_REGION)")
@click.option("--image-uri", help="Image built for this deploy")
@click.option("--retries", help="Convergence retries, an integer or 'forever'")
@click.option("--continue-on-error", is_flag=True, default=None, help="Keep going after a resource fails")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def deploy(
    spec_path: Path | None,
    app_name: str | None,
    region: str | None,
    image_uri: str | None,
    retries: str | None,
    continue_on_error: bool | None,
    verbose: bool,
) -> None:
    """Create or update every resource of the application."""
    setup_logging(logging.DEBUG if verbose else logging.INFO)
    config = load_config(
        app_name=app_name,
        region=region,
        spec_path=spec_path,
        image_uri=image_uri,
        retries=parse_retries(retries),
        continue_on_error=continue_on_error,
    )
    spec = _load_spec(config.spec_path)

    exit_code = asyncio.run(run_deploy(config, spec, logging.getLogger("deployer")))
    if exit_code != 0:
        raise SystemExit(exit_code)


@cli.command()
@click.option("--spec", "spec_path", type=click.Path(path_type=Path), help="Deploy spec (default: deploy.yaml)")
@click.option("--app-name", "-n", help="Application name (overrides APP_NAME)")
@click.option("--region", "-r", help="AWS region (overrides AWS_REGION)")
def permissions(spec_path: Path | None, app_name: str | None, region: str | None) -> None:
    """Print the IAM policy a deploy needs, without touching AWS."""
    config = load_config(app_name=app_name, region=region, spec_path=spec_path, check_permissions=True)
    spec = _load_spec(config.spec_path)
    asyncio.run(run_permissions(config, spec))


@cli.command()
@click.option(
    "--spec",
    "spec_path",
    type=click.Path(path_type=Path),
    default=Path("deploy.yaml"),
    show_default=True,
    help="Deploy spec",
)
def validate(spec_path: Path) -> None:
    """Validate a deploy spec."""
    spec = _load_spec(spec_path)
    click.secho(f"✓ {spec_path} is valid", fg="green")
    for address in spec.addresses:
        click.echo(f"  {derive_env_key(address)}  {address}")
    for scheduled in spec.schedules:
        click.echo(f"  {scheduled.schedule.value:<12} {scheduled.command}")


@cli.command("env-key")
@click.argument("address")
def env_key(address: str) -> None:
    """Show the environment variable name derived from ADDRESS."""
    try:
        parsed = ResourceAddress.parse(address)
    except InvalidAddressError as e:
        raise click.ClickException(str(e)) from e
    click.echo(derive_env_key(parsed))
    click.echo(f"permissions: {parsed.permission_fragment}")


def _load_spec(spec_path: Path) -> DeploySpec:
    try:
        return load_spec(spec_path)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
