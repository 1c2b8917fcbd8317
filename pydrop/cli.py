"""CLI interface for pydrop."""

import logging
from pathlib import Path
from typing import Any, Optional

import click

from .cli_progress import RunReporter
from .config import load_options
from .exceptions import (
    ConfigurationError,
    PydropError,
    RemoteError,
    SyncCancelledError,
)
from .output import OutputFormatter
from .remote import create_remote_client
from .sync.engine import SyncEngine, SyncResult
from .sync.scanner import collect_local_files
from .sync.state import JsonCacheStore

logger = logging.getLogger(__name__)

TARGET_CHOICE = click.Choice(["remote", "cache", "both"])

# Loggers of third-party libraries, kept quiet below -vvvv
NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "httpcore", "s3transfer")


def _configure_logging(verbose: int) -> None:
    if verbose >= 2:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pydrop").setLevel(logging.DEBUG)
    else:
        # Set default logging level to WARNING to suppress debug/info messages
        logging.basicConfig(level=logging.WARNING)

    if verbose < 4:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


@click.group(invoke_without_command=True)
@click.option(
    "--plugins",
    "-w",
    help="Comma separated backend plugins (s3, webdav or module:Class)",
)
@click.option(
    "--read-only",
    "-r",
    "read_only",
    type=TARGET_CHOICE,
    is_flag=False,
    flag_value="both",
    default=None,
    help="Never write to the remote, the cache, or both (default: both)",
)
@click.option(
    "--dry-run", "-n", is_flag=True, help="Alias for --read-only both"
)
@click.option(
    "--force",
    "-f",
    type=TARGET_CHOICE,
    is_flag=False,
    flag_value="both",
    default=None,
    help="Do not trust the cache: re-check the remote, ignore the cache, or both",
)
@click.option("--env", "-e", envvar="PYDROP_ENV", help="Environment block to apply")
@click.option(
    "--config",
    "-c",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Configuration file (default: ./.pydrop.json)",
)
@click.option("--workers", "-j", type=int, help="Number of parallel workers")
@click.option("--verbose", "-v", count=True, help="Increase output detail (up to -vvvv)")
@click.option("--quiet", "-q", is_flag=True, help="Suppress all progress output")
@click.option("--json", is_flag=True, help="Print final statistics as JSON")
@click.version_option(package_name="pydrop")
@click.pass_context
def main(
    ctx: Any,
    plugins: Optional[str],
    read_only: Optional[str],
    dry_run: bool,
    force: Optional[str],
    env: Optional[str],
    config_file: Optional[Path],
    workers: Optional[int],
    verbose: int,
    quiet: bool,
    json: bool,
) -> None:
    """pydrop - deploy a local directory to a remote object store.

    Runs the upload command when no command is given.
    """
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = 0 if quiet else verbose
    ctx.obj["config_file"] = config_file
    ctx.obj["env"] = env
    ctx.obj["dry_run"] = dry_run
    ctx.obj["overrides"] = {
        "plugins": plugins,
        "readOnly": read_only,
        "force": force,
        "workers": workers,
    }

    _configure_logging(verbose)

    if ctx.invoked_subcommand is None:
        ctx.invoke(upload)


@main.command()
@click.pass_context
def upload(ctx: Any) -> None:
    """Upload new and changed files (default command)."""
    _run(ctx, "upload")


@main.command()
@click.pass_context
def sync(ctx: Any) -> None:
    """Upload new and changed files and delete remote-only files."""
    _run(ctx, "sync")


def _run(ctx: Any, command: str) -> None:  # noqa: C901
    """Load options, build the engine and run a command."""
    out: OutputFormatter = ctx.obj["out"]
    reporter = RunReporter(out, verbose=ctx.obj["verbose"])
    with_delete = command == "sync"

    try:
        options = load_options(
            config_file=ctx.obj["config_file"],
            env=ctx.obj["env"],
            overrides=ctx.obj["overrides"],
            dry_run=ctx.obj["dry_run"],
        )
        client = create_remote_client(options)
    except ConfigurationError as e:
        out.error(f"Configuration error: {e}")
        ctx.exit(1)

    with client:
        try:
            files = collect_local_files(options, client)
            if options.cache_file:
                cache = JsonCacheStore(
                    options.cache_file, destination=client.get_base_destination()
                )
            else:
                cache = JsonCacheStore.for_destination(client.get_base_destination())

            if not out.quiet and not out.json_output:
                out.info(
                    f"{command.capitalize()}: {options.base_dir} -> "
                    f"{client.get_base_destination()}"
                )
            reporter.print_policy(options.policy)

            engine = SyncEngine(
                client,
                cache=cache,
                policy=options.policy,
                workers=options.workers,
                progress_callback=reporter.handle,
            )
            with reporter:
                result: SyncResult = (
                    engine.sync(files) if with_delete else engine.upload(files)
                )
        except ConfigurationError as e:
            out.error(f"Configuration error: {e}")
            ctx.exit(1)
        except SyncCancelledError as e:
            if e.result is not None:
                reporter.print_summary(e.result.stats, with_delete)
            out.warning(f"\n{command.capitalize()} cancelled by user")
            ctx.exit(130)  # Standard exit code for SIGINT
        except KeyboardInterrupt:
            out.warning(f"\n{command.capitalize()} cancelled by user")
            ctx.exit(130)
        except RemoteError as e:
            out.error(f"Remote error: {e}")
            ctx.exit(1)
        except PydropError as e:
            out.error(str(e))
            ctx.exit(1)

    reporter.print_summary(result.stats, with_delete)
