"""CLI interface for resumable OSS uploads."""

import logging
import sys

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from ..core.api import OssUploader
from ..core.exceptions import UploadFailedError, UploaderError
from ..core.models import (
    DEFAULT_CHECKPOINT_DIR,
    DEFAULT_CHUNK_SIZE,
    MIN_CHUNK_SIZE,
    OssRegion,
    StorageConfig,
    UploadOptions,
)

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()

checkpoint_dir_option = click.option(
    "--checkpoint-dir",
    envvar="OSS_UPLOAD_CHECKPOINT_DIR",
    default=str(DEFAULT_CHECKPOINT_DIR),
    show_default=True,
    type=click.Path(file_okay=False),
    help="Directory holding upload checkpoints",
)


def storage_options(func):
    """Attach the credential/bucket options shared by remote commands."""
    options = [
        click.option("--region", envvar="OSS_REGION", help="OSS region (or set OSS_REGION)"),
        click.option(
            "--access-key-id", envvar="OSS_ACCESS_KEY_ID", help="Access key ID (or set OSS_ACCESS_KEY_ID)"
        ),
        click.option(
            "--access-key-secret",
            envvar="OSS_ACCESS_KEY_SECRET",
            help="Access key secret (or set OSS_ACCESS_KEY_SECRET)",
        ),
        click.option("--bucket", envvar="OSS_BUCKET", help="Destination bucket (or set OSS_BUCKET)"),
        click.option("--endpoint", envvar="OSS_ENDPOINT", help="Explicit endpoint URL"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_api(region, access_key_id, access_key_secret, bucket, endpoint) -> OssUploader:
    config = StorageConfig.from_env(
        region=region,
        access_key_id=access_key_id,
        access_key_secret=access_key_secret,
        bucket=bucket,
        endpoint_url=endpoint,
    )
    return OssUploader(config)


def format_size(num_bytes: int) -> str:
    size = float(num_bytes)
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, verbose):
    """OSS Uploader CLI - resumable uploads to OSS and S3-compatible stores."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    ctx.ensure_object(dict)


@cli.command()
@click.argument("local_file", type=click.Path(exists=True, dir_okay=False))
@storage_options
@click.option("--prefix", default=None, help="Destination prefix, e.g. 'docs/'")
@click.option("--keep-name", is_flag=True, help="Keep the original file name (no timestamp)")
@click.option("--key", "object_key", default=None, help="Explicit object key")
@click.option(
    "--max-retries",
    type=int,
    default=3,
    show_default=True,
    help="Whole-upload retries (0-5)",
)
@click.option(
    "--chunk-size",
    type=int,
    default=DEFAULT_CHUNK_SIZE,
    show_default=True,
    help=f"Chunk size in bytes for multipart upload (minimum {MIN_CHUNK_SIZE})",
)
@click.option("--no-resume", is_flag=True, help="Disable checkpoints for interrupted uploads")
@checkpoint_dir_option
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
def upload(
    local_file,
    region,
    access_key_id,
    access_key_secret,
    bucket,
    endpoint,
    prefix,
    keep_name,
    object_key,
    max_retries,
    chunk_size,
    no_resume,
    checkpoint_dir,
    as_json,
):
    """Upload a local file."""
    uploader = None
    try:
        api = build_api(region, access_key_id, access_key_secret, bucket, endpoint)
        options = UploadOptions(
            prefix=prefix,
            keep_original_name=keep_name,
            object_key=object_key,
            max_retries=max_retries,
            chunk_size=chunk_size,
            resumable=not no_resume,
            checkpoint_dir=checkpoint_dir,
        )
        uploader = api.create_uploader(local_file, options)

        console.print(
            f"Uploading [cyan]{local_file}[/cyan] to "
            f"[green]{api.config.bucket}/{uploader.object_key}[/green]"
        )
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Uploading...", total=100)
            uploader.progress_callback = lambda percent: progress.update(
                task, completed=percent
            )
            result = uploader.upload()

        if as_json:
            click.echo(result.model_dump_json(indent=2))
            return

        table = Table(title="Upload Result", show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("URL", result.url)
        table.add_row("Object key", result.object_key)
        table.add_row("Local file", result.origin_file_path)
        table.add_row("Size", format_size(result.size))
        table.add_row("Content type", result.content_type)
        table.add_row("Progress", f"{result.progress}%")
        table.add_row("Attempts", str(result.attempts))
        if result.total_parts is not None:
            table.add_row("Parts", str(result.total_parts))
        if result.resumed is not None:
            table.add_row(
                "Resumed",
                f"yes ({result.existing_parts} parts already uploaded)"
                if result.resumed
                else "no",
            )
        console.print(table)
        console.print("[green]✓[/green] Upload completed successfully!")

    except UploadFailedError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        if uploader is not None and uploader.resumable and uploader.multipart:
            console.print(
                "[yellow]Progress was checkpointed; rerun with "
                f"--key {uploader.object_key} to resume.[/yellow]"
            )
        sys.exit(1)
    except (UploaderError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@checkpoint_dir_option
def checkpoints(checkpoint_dir):
    """List pending (resumable) uploads."""
    infos = OssUploader.list_checkpoints(checkpoint_dir)
    if not infos:
        console.print("[yellow]No pending uploads.[/yellow]")
        return

    table = Table(title="Pending Uploads")
    table.add_column("ID", style="cyan")
    table.add_column("Object key", style="green")
    table.add_column("Local file")
    table.add_column("Parts", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Updated", style="blue")

    for info in infos:
        updated = info.updated_at or info.created_at
        table.add_row(
            info.checkpoint_id[:12],
            info.object_key,
            info.source_path or "N/A",
            f"{info.completed_parts}/{info.total_parts}",
            format_size(info.file_size),
            updated.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@cli.command()
@click.argument("checkpoint_id")
@storage_options
@checkpoint_dir_option
@click.option("--keep-remote", is_flag=True, help="Do not abort the remote multipart session")
def discard(
    checkpoint_id,
    region,
    access_key_id,
    access_key_secret,
    bucket,
    endpoint,
    checkpoint_dir,
    keep_remote,
):
    """Discard a pending upload and its checkpoint."""
    try:
        matches = [
            info.checkpoint_id
            for info in OssUploader.list_checkpoints(checkpoint_dir)
            if info.checkpoint_id.startswith(checkpoint_id)
        ]
        if len(matches) != 1:
            console.print(
                f"[red]Error: {'no' if not matches else 'more than one'} "
                f"checkpoint matches '{checkpoint_id}'[/red]"
            )
            sys.exit(1)

        if keep_remote:
            api = OssUploader()
        else:
            api = build_api(region, access_key_id, access_key_secret, bucket, endpoint)
        api.discard_checkpoint(checkpoint_dir, matches[0], abort_remote=not keep_remote)
        console.print(f"[green]✓[/green] Discarded checkpoint {matches[0][:12]}")

    except UploaderError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@storage_options
@click.option(
    "--max-age-hours",
    type=int,
    default=24,
    show_default=True,
    help="Abort multipart uploads started longer ago than this",
)
def cleanup(region, access_key_id, access_key_secret, bucket, endpoint, max_age_hours):
    """Abort abandoned multipart uploads in the bucket."""
    try:
        api = build_api(region, access_key_id, access_key_secret, bucket, endpoint)
        cleaned = api.cleanup_abandoned_uploads(max_age_hours)
        console.print(f"[green]✓[/green] Cleaned up {cleaned} abandoned upload(s)")
    except UploaderError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
def regions():
    """List known OSS regions."""
    table = Table(title="OSS Regions")
    table.add_column("Region", style="cyan")
    table.add_column("Endpoint", style="green")
    for region in OssRegion:
        table.add_row(region.value, region.endpoint)
    console.print(table)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
