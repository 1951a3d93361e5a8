import logging
import os

import click
from rich.console import Console
from rich.logging import RichHandler

from .constants import DEFAULT_DATABASE_NAME, POSTGRES_VERSION
from .core import ProvisionerError, StackProvisioner
from .services.config_loader import ConfigLoader

DEFAULT_CONFIG_NAME = ".stackprovisioner.yml"


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


class ProvisionerCommand(click.Command):
    """Reports usage errors with exit status 1 instead of click's 2."""

    def parse_args(self, ctx, args):
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as exc:
            exc.exit_code = 1
            raise


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%Y-%m-%d %H:%M:%S]",
    handlers=[
        RichHandler(
            console=Console(stderr=True),
            rich_tracebacks=True,
            show_level=True,
            show_path=False,
        )
    ],
)


@click.command(cls=ProvisionerCommand)
@click.option(
    "--production",
    is_flag=True,
    default=None,
    help="Also apply production settings: environment, nginx, firewall and kernel limits.",
)
@click.option(
    "--repo-method",
    is_flag=True,
    default=None,
    help="Install .NET from the Microsoft package repository instead of dotnet-install.sh.",
)
@click.option(
    "--rotate-credentials",
    is_flag=True,
    default=None,
    help="Generate new database passwords even when existing ones are recorded in ~/.pgpass.",
)
@click.option(
    "--no-upgrade",
    "no_upgrade",
    is_flag=True,
    default=None,
    help="Skip the full package upgrade after refreshing the package index.",
)
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_NAME} if present.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.option(
    "--manifest-file",
    required=False,
    type=click.Path(),
    help="Path to the run manifest (default: ~/.local/state/stackprovisioner/run-manifest.json).",
)
def main(
    production,
    repo_method,
    rotate_credentials,
    no_upgrade,
    config,
    verbose,
    log_file,
    manifest_file,
):
    """Provision an F#/ASP.NET Core, Giraffe and PostgreSQL development host."""
    logger = logging.getLogger("stackprovisioner")

    try:
        config_loader = ConfigLoader()
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_NAME)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
    except ProvisionerError as exc:
        raise click.ClickException(str(exc)) from exc

    production = bool(_resolve_option(production, config_values, "production", default=False))
    repo_method = bool(_resolve_option(repo_method, config_values, "repo_method", default=False))
    rotate_credentials = bool(
        _resolve_option(rotate_credentials, config_values, "rotate_credentials", default=False)
    )
    upgrade_packages = bool(
        _resolve_option(
            False if no_upgrade else None,
            config_values,
            "upgrade_packages",
            default=True,
        )
    )
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")
    manifest_file = _resolve_option(manifest_file, config_values, "manifest_file")
    database_name = str(config_values.get("database_name", DEFAULT_DATABASE_NAME))
    postgres_version = str(config_values.get("postgres_version", POSTGRES_VERSION))
    download_timeout = float(config_values.get("download_timeout", 60.0))

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    try:
        provisioner = StackProvisioner(
            production=production,
            repo_method=repo_method,
            rotate_credentials=rotate_credentials,
            upgrade_packages=upgrade_packages,
            verbose=verbose,
            manifest_file=manifest_file,
            database_name=database_name,
            postgres_version=postgres_version,
            download_timeout=download_timeout,
        )
    except ProvisionerError as exc:
        raise click.ClickException(str(exc)) from exc

    raise SystemExit(provisioner.run())


if __name__ == "__main__":
    main()
