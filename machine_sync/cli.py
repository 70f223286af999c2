"""Command line interface for Machine Sync."""

import logging

import click

from machine_sync import __app_name__, __version__
from machine_sync.config import (
    DEFAULT_USER,
    DEFAULT_WORKERS,
    SyncOptions,
    default_machine_store,
)
from machine_sync.errors import ConfigError, MachineSyncError
from machine_sync.service import run, setup_logging

logger = logging.getLogger(__name__)


@click.command(name="machine-sync")
@click.option("--directory", "-d", default="", help="path to watch directory")
@click.option("--machine", "-m", default="", help="name of docker machine to sync")
@click.option(
    "--machine-path",
    "-c",
    default=lambda: str(default_machine_store()),
    show_default="~/.docker/machines",
    help="path to docker machine config directory",
)
@click.option("--destination", "-p", default="", help="path on destination machine to sync")
@click.option(
    "--user",
    "-u",
    default=DEFAULT_USER,
    show_default=True,
    help="user on machine to use for connection",
)
@click.option("--debug", "-D", is_flag=True, help="enable debug logging")
@click.option("--recursive", "-r", is_flag=True, help="also watch subdirectories")
@click.option(
    "--exclude",
    "-x",
    multiple=True,
    help="glob pattern of file names to ignore (repeatable)",
)
@click.option(
    "--workers",
    type=click.IntRange(min=1),
    default=DEFAULT_WORKERS,
    show_default=True,
    help="number of files synced in parallel",
)
@click.option("--log-file", type=click.Path(dir_okay=False), help="also log to this file")
@click.version_option(__version__, prog_name=__app_name__)
def main(
    directory: str,
    machine: str,
    machine_path: str,
    destination: str,
    user: str,
    debug: bool,
    recursive: bool,
    exclude: tuple[str, ...],
    workers: int,
    log_file: str | None,
) -> None:
    """Sync files for a docker machine.

    Watches DIRECTORY and mirrors every file created, modified, renamed or
    deleted there to DESTINATION on the machine, over SFTP.
    """
    options = SyncOptions(
        directory=directory,
        destination=destination,
        machine=machine,
        machine_path=machine_path,
        user=user,
        debug=debug,
        recursive=recursive,
        exclude_patterns=list(exclude),
        workers=workers,
        log_file=log_file,
    )
    try:
        options.validate()
    except ConfigError as exc:
        raise click.UsageError(str(exc)) from exc

    setup_logging(debug=debug, log_file=log_file)

    try:
        run(options)
    except MachineSyncError as exc:
        logger.error("%s", exc)
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc
