"""CLI for PostgreSQL and file backups with OCI Object Storage.

Usage:
    dr-orchestrator backup --name prod-db --db-name myapp --encrypt --upload \\
        --bucket my-bucket --compartment ocid1.compartment.oc1..xxx
    dr-orchestrator backup --name etc --source files --path /etc --exclude "*.log"
    dr-orchestrator upload --file ./backups/prod-db-20251209-020000.tar.gz --bucket B --compartment C
    dr-orchestrator download --object backups/2025/12/prod-db.tar.gz --output ./prod-db.tar.gz --bucket B --compartment C
    dr-orchestrator list --year 2025 --month 12 --bucket B --compartment C
    dr-orchestrator restore --file ./prod-db.tar.gz.encrypted --db-name myapp --target-db myapp_restored --yes
    dr-orchestrator keygen --output backup.key
    dr-orchestrator connect --db-name myapp
    dr-orchestrator metrics --port 9090
    dr-orchestrator schedule init

Commands:
    backup    - Back up a database or a set of files
    upload    - Upload a backup file to Object Storage
    download  - Download a backup file from Object Storage
    list      - List backups in Object Storage
    restore   - Restore a database from a local or remote backup
    keygen    - Generate an encryption key
    connect   - Check the database connection
    metrics   - Serve Prometheus metrics and health endpoints
    schedule  - Manage automated backup schedules
"""

import argparse
import asyncio
import logging
import os
import sys
import tempfile
from pathlib import Path, PurePosixPath

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from dr_orchestrator.backup import (
    ArtifactPipeline,
    BackupArtifact,
    BackupType,
    ConnectionParams,
    PgDumpTool,
)
from dr_orchestrator.config import OrchestratorConfig, StorageSettings, load_config
from dr_orchestrator.database import check_connection, ensure_database
from dr_orchestrator.encryption import generate_key, is_encrypted, key_to_password
from dr_orchestrator.errors import MissingKeyError, OrchestratorError, ValidationError
from dr_orchestrator.metrics import MetricsSink
from dr_orchestrator.metrics.server import serve
from dr_orchestrator.schedule import (
    DEFAULT_SCHEDULE_FILE,
    deploy_schedule,
    validate_schedule,
    write_example_schedule,
)
from dr_orchestrator.storage import ObjectStoreGateway

console = Console()
err_console = Console(stderr=True)


# ============================================================================
# Helpers
# ============================================================================


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _load(args: argparse.Namespace) -> OrchestratorConfig:
    config_path = getattr(args, "config", None)
    return load_config(Path(config_path) if config_path else None)


def _connection_params(
    args: argparse.Namespace, config: OrchestratorConfig
) -> ConnectionParams:
    """Merge ``--db-*`` flags over the ``[database]`` settings."""
    db = config.database
    params = ConnectionParams(
        host=args.db_host or db.host,
        port=args.db_port or db.port,
        user=args.db_user or db.user,
        password=args.db_password or db.password,
        database=args.db_name or db.name,
    )
    if not params.database:
        raise ValidationError("Database name is required (--db-name)")
    return params


def _storage_settings(
    args: argparse.Namespace, config: OrchestratorConfig
) -> StorageSettings:
    """Merge bucket flags over the ``[storage]`` settings."""
    overrides = {
        "bucket": args.bucket,
        "compartment": args.compartment,
        "namespace": args.namespace,
        "oci_config": args.oci_config,
        "oci_profile": args.oci_profile,
    }
    return config.storage.model_copy(
        update={k: v for k, v in overrides.items() if v is not None}
    )


def _gateway(args: argparse.Namespace, config: OrchestratorConfig) -> ObjectStoreGateway:
    settings = _storage_settings(args, config)
    console.print("Connecting to Object Storage...", style="dim")
    gateway = ObjectStoreGateway.from_settings(settings, metrics=args.metrics)
    console.print(
        f"  Namespace: [bold]{gateway.namespace}[/bold]  Bucket: [bold]{gateway.bucket}[/bold]"
    )
    return gateway


def _resolve_key(args: argparse.Namespace, config: OrchestratorConfig) -> str | None:
    """Encryption key from --key-file, --encryption-key, or the environment."""
    if args.key_file:
        try:
            content = Path(args.key_file).read_text()
        except OSError as e:
            raise ValidationError(f"Failed to read key file {args.key_file}: {e}") from e
        return key_to_password(content)
    return args.encryption_key or config.backup.encryption_key


def _format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in ("KB", "MB", "GB", "TB"):
        value /= 1024
        if value < 1024:
            break
    return f"{value:.2f} {unit}"


def _print_artifact(artifact: BackupArtifact) -> None:
    table = Table(title="Backup Complete", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")

    table.add_row("File", f"[bold cyan]{artifact.local_path}[/bold cyan]")
    table.add_row("Type", artifact.type.value)
    if artifact.type == BackupType.FILE_SET:
        table.add_row("Files", str(artifact.file_count))
    table.add_row("Original size", _format_size(artifact.original_size_bytes))
    table.add_row("Compressed size", _format_size(artifact.compressed_size_bytes))
    table.add_row("Compression", f"{artifact.compression_pct:.1f}%")
    if artifact.encrypted:
        table.add_row("Encrypted size", _format_size(artifact.size_bytes))
    table.add_row("Encrypted", "yes" if artifact.encrypted else "no")
    table.add_row("Duration", f"{artifact.duration_ms / 1000:.2f}s")

    console.print(table)


def _confirm() -> bool:
    response = console.input("Type 'yes' to continue: ")
    return response.strip().lower() in ("yes", "y")


# ============================================================================
# Command implementations
# ============================================================================


def cmd_backup(args: argparse.Namespace) -> int:
    """Back up a database or a set of files, then optionally upload it.

    Bucket settings and the encryption key are checked before anything is
    written.

    Returns:
        0 on success.
    """
    config = _load(args)

    key = _resolve_key(args, config) if args.encrypt else None
    if args.encrypt and not key:
        raise MissingKeyError(
            "--encrypt requires --encryption-key, --key-file or BACKUP_ENCRYPTION_KEY"
        )

    gateway = _gateway(args, config) if args.upload else None
    output_dir = Path(args.output or config.backup.output_dir).resolve()
    pipeline = ArtifactPipeline(
        dumper=PgDumpTool(verbose=args.verbose), metrics=args.metrics
    )

    console.print(f"Starting backup: [bold]{args.name}[/bold]")
    console.print(f"  Output directory: [dim]{output_dir}[/dim]")

    if args.source == "files":
        if not args.path:
            raise ValidationError("At least one --path is required for file backups")
        artifact = pipeline.run_file_set_backup(
            args.path,
            [*config.backup.exclude, *(args.exclude or [])],
            args.name,
            output_dir,
            encryption_key=key,
        )
    else:
        params = _connection_params(args, config)
        console.print(
            f"  Database: [bold]{params.database}[/bold] "
            f"[dim]({params.user}@{params.host}:{params.port})[/dim]"
        )
        artifact = pipeline.run_database_backup(
            params, args.name, output_dir, encryption_key=key
        )

    console.print()
    _print_artifact(artifact)

    if gateway is not None:
        result = gateway.upload(artifact.local_path)
        console.print(
            f"[bold green]v[/bold green] Uploaded to [cyan]{result.object_key}[/cyan] "
            f"({_format_size(result.size)} in {result.duration_seconds:.2f}s)"
        )

    return 0


def cmd_upload(args: argparse.Namespace) -> int:
    """Upload a backup file to Object Storage.

    Returns:
        0 on success.
    """
    config = _load(args)
    gateway = _gateway(args, config)

    result = gateway.upload(args.file, args.object_name)

    table = Table(title="Upload Complete", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Object", f"[bold cyan]{result.object_key}[/bold cyan]")
    table.add_row("Bucket", result.bucket)
    table.add_row("Namespace", result.namespace)
    table.add_row("Size", _format_size(result.size))
    table.add_row("Duration", f"{result.duration_seconds:.2f}s")
    if result.etag:
        table.add_row("ETag", result.etag)
    console.print(table)
    return 0


def cmd_download(args: argparse.Namespace) -> int:
    """Download a backup file from Object Storage.

    Returns:
        0 on success.
    """
    config = _load(args)
    gateway = _gateway(args, config)

    result = gateway.download(args.object, args.output)

    console.print(
        f"[bold green]v[/bold green] Downloaded [cyan]{result.object_key}[/cyan] "
        f"to {result.local_path} ({_format_size(result.size)} "
        f"in {result.duration_seconds:.2f}s)"
    )
    if result.last_modified:
        console.print(f"  Last modified: {result.last_modified:%Y-%m-%d %H:%M:%S}")
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    """List backups in Object Storage.

    Returns:
        0 on success.
    """
    if args.month is not None and args.year is None:
        raise ValidationError("--month requires --year")

    config = _load(args)
    gateway = _gateway(args, config)

    if args.all:
        objects = gateway.list_by_prefix("")
    elif args.year is None:
        objects = gateway.list_all()
    elif args.month is not None:
        objects = gateway.list_by_year_month(args.year, args.month)
    else:
        objects = gateway.list_by_year(args.year)

    if not objects:
        console.print("[yellow]No backups found.[/yellow]")
        return 0

    table = Table(
        title=f"Backups in {gateway.bucket}", show_header=True, header_style="bold"
    )
    table.add_column("#", justify="right", style="dim")
    table.add_column("Object")
    table.add_column("Size", justify="right")
    table.add_column("Modified")

    total = 0
    for i, obj in enumerate(objects, start=1):
        total += obj.size
        modified = f"{obj.last_modified:%Y-%m-%d %H:%M:%S}" if obj.last_modified else ""
        table.add_row(str(i), obj.key, _format_size(obj.size), modified)

    console.print(table)
    console.print(f"\nTotal: {len(objects)} file(s), {_format_size(total)}")
    return 0


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore a database from a local file or a remote object.

    Returns:
        0 on success or when cancelled at the prompt.
    """
    if bool(args.file) == bool(args.from_cloud):
        raise ValidationError("Specify exactly one of --file or --from-cloud")

    config = _load(args)
    params = _connection_params(args, config)
    target = args.target_db or params.database
    key = _resolve_key(args, config)

    source = args.file or args.from_cloud
    if is_encrypted(PurePosixPath(source).name) and not key:
        raise MissingKeyError(
            "Backup is encrypted: use --encryption-key, --key-file or BACKUP_ENCRYPTION_KEY"
        )
    if args.file and not Path(args.file).is_file():
        raise ValidationError(f"Backup file not found: {args.file}")

    gateway = _gateway(args, config) if args.from_cloud else None

    if not args.yes:
        console.print(f"[bold yellow]Warning:[/bold yellow] This will restore [cyan]{source}[/cyan]")
        console.print(f"  into database [bold]{target}[/bold] on {params.host}:{params.port}")
        console.print("  Existing objects in the target database may be overwritten.")
        if not _confirm():
            console.print("Cancelled.")
            return 0

    if args.create_db:
        if asyncio.run(ensure_database(params, target)):
            console.print(f"Created database [bold]{target}[/bold]")

    pipeline = ArtifactPipeline(metrics=args.metrics)
    if gateway is not None:
        with tempfile.TemporaryDirectory(
            prefix="dr-download-", ignore_cleanup_errors=True
        ) as tmp:
            local_path = Path(tmp) / PurePosixPath(args.from_cloud).name
            gateway.download(args.from_cloud, local_path)
            pipeline.run_restore(params, local_path, target, key)
    else:
        pipeline.run_restore(params, args.file, target, key)

    console.print(f"[bold green]v[/bold green] Restored into [bold]{target}[/bold]")
    return 0


def cmd_keygen(args: argparse.Namespace) -> int:
    """Generate a 256-bit encryption key.

    With ``--output`` the key is also written to a file readable only by
    the owner, for use with ``--key-file``.

    Returns:
        0 on success, 1 if the key file cannot be written.
    """
    key = generate_key()

    if args.output:
        try:
            fd = os.open(args.output, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "w") as f:
                f.write(key + "\n")
        except OSError as e:
            console.print(f"[red]Error: failed to write key file: {e}[/red]")
            return 1
        console.print(f"Key written to [cyan]{args.output}[/cyan]")

    console.print("[bold]Generated 256-bit encryption key:[/bold]")
    console.print(key, highlight=False, soft_wrap=True)
    console.print()
    console.print("[bold yellow]IMPORTANT:[/bold yellow]")
    console.print("  - Store this key securely")
    console.print("  - Never commit it to version control")
    console.print("  - A lost key means lost backups")
    console.print()
    console.print("[dim]Usage:[/dim]")
    console.print(f'  export BACKUP_ENCRYPTION_KEY="{key}"', highlight=False, soft_wrap=True)
    console.print("  dr-orchestrator backup --encrypt --name prod-db --db-name myapp")
    return 0


async def _async_connect(args: argparse.Namespace) -> int:
    config = _load(args)
    params = _connection_params(args, config)

    console.print("Connecting to database...", style="dim")
    version = await check_connection(params)

    console.print(
        f"[bold green]v[/bold green] Connected to [bold cyan]{params.database}[/bold cyan] "
        f"at {params.host}:{params.port}"
    )
    console.print(f"  [dim]{version}[/dim]")
    return 0


def cmd_connect(args: argparse.Namespace) -> int:
    """Check the database connection.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_connect(args))


def cmd_metrics(args: argparse.Namespace) -> int:
    """Serve ``/metrics`` and ``/health`` until interrupted."""
    config = _load(args)
    host = args.host or config.metrics.host
    port = args.port or config.metrics.port

    console.print(f"Metrics:  http://{host}:{port}/metrics")
    console.print(f"Health:   http://{host}:{port}/health")
    serve(args.metrics, host=host, port=port)
    return 0


def cmd_schedule_init(args: argparse.Namespace) -> int:
    """Write an example schedule file."""
    output = Path(args.output)
    if output.exists() and not args.force:
        raise ValidationError(f"{output} already exists (use --force to overwrite)")

    config = write_example_schedule(output)

    console.print(f"[bold green]v[/bold green] Created {output}")
    table = Table(title="Example Schedules", show_header=True, header_style="bold")
    table.add_column("Job")
    table.add_column("Schedule")
    for job in config.jobs:
        table.add_row(job.name, job.schedule)
    console.print(table)
    console.print(
        "[dim]Edit the file to set credentials, your encryption key, "
        "and the bucket/compartment.[/dim]"
    )
    console.print(f"  dr-orchestrator schedule validate --file {output}")
    console.print(f"  dr-orchestrator schedule deploy --file {output}")
    return 0


def cmd_schedule_validate(args: argparse.Namespace) -> int:
    """Validate a schedule file with cronify."""
    console.print(f"Validating schedule file: [cyan]{args.file}[/cyan]")
    config = validate_schedule(args.file, simulate=args.simulate)
    console.print(f"[bold green]v[/bold green] {len(config.jobs)} job(s) valid")
    return 0


def cmd_schedule_deploy(args: argparse.Namespace) -> int:
    """Deploy a schedule file to crontab with cronify."""
    console.print(f"Deploying schedule file: [cyan]{args.file}[/cyan]")
    if args.dry_run:
        console.print("[bold yellow]DRY RUN[/bold yellow] - Preview only, no changes made.")
    deploy_schedule(args.file, dry_run=args.dry_run)
    if not args.dry_run:
        console.print("[bold green]v[/bold green] Deployed. View with: [cyan]crontab -l[/cyan]")
    return 0


# ============================================================================
# Argument groups
# ============================================================================


def _add_db_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--db-host", help="Database host (default: localhost)")
    parser.add_argument("--db-port", type=int, help="Database port (default: 5432)")
    parser.add_argument("--db-user", help="Database user (default: postgres)")
    parser.add_argument(
        "--db-password", help="Database password (or set PGPASSWORD)"
    )
    parser.add_argument("--db-name", help="Database name")


def _add_bucket_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--bucket", help="Object Storage bucket name")
    parser.add_argument("--compartment", help="Compartment OCID")
    parser.add_argument(
        "--namespace", help="Object Storage namespace (auto-detected if omitted)"
    )
    parser.add_argument(
        "--oci-config", help="Path to OCI config file (default: ~/.oci/config)"
    )
    parser.add_argument("--oci-profile", help="OCI config profile (default: DEFAULT)")


def _add_key_options(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--encryption-key",
        help="Encryption password or key (or set BACKUP_ENCRYPTION_KEY)",
    )
    group.add_argument(
        "--key-file", help="File containing a key generated by 'keygen'"
    )


# ============================================================================
# Main entry point
# ============================================================================


def main() -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, 1 for errors, 2 for usage errors).
    """
    parser = argparse.ArgumentParser(
        prog="dr-orchestrator",
        description="Disaster recovery backups for PostgreSQL and files",
    )
    parser.add_argument("--config", help="Path to dr.toml (default: $DR_CONFIG or ./dr.toml)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # backup command
    p_backup = subparsers.add_parser("backup", help="Back up a database or files")
    p_backup.add_argument("--name", "-n", required=True, help="Backup name")
    p_backup.add_argument(
        "--source",
        choices=["postgres", "files"],
        default="postgres",
        help="What to back up (default: postgres)",
    )
    _add_db_options(p_backup)
    p_backup.add_argument(
        "--path", action="append", help="File or directory to back up (repeatable)"
    )
    p_backup.add_argument(
        "--exclude", action="append", help="Glob pattern to exclude (repeatable)"
    )
    p_backup.add_argument("--output", "-o", help="Output directory (default: ./backups)")
    p_backup.add_argument("--encrypt", action="store_true", help="Encrypt the backup")
    _add_key_options(p_backup)
    p_backup.add_argument(
        "--upload", action="store_true", help="Upload to Object Storage after backup"
    )
    _add_bucket_options(p_backup)
    p_backup.set_defaults(func=cmd_backup)

    # upload command
    p_upload = subparsers.add_parser("upload", help="Upload a backup file")
    p_upload.add_argument("--file", "-f", required=True, help="Local file to upload")
    p_upload.add_argument(
        "--object-name", help="Object key (default: backups/YYYY/MM/<file>)"
    )
    _add_bucket_options(p_upload)
    p_upload.set_defaults(func=cmd_upload)

    # download command
    p_download = subparsers.add_parser("download", help="Download a backup file")
    p_download.add_argument("--object", required=True, help="Object key to download")
    p_download.add_argument("--output", "-o", required=True, help="Local file path")
    _add_bucket_options(p_download)
    p_download.set_defaults(func=cmd_download)

    # list command
    p_list = subparsers.add_parser("list", help="List backups in Object Storage")
    p_list.add_argument("--year", type=int, help="Filter by year")
    p_list.add_argument("--month", type=int, help="Filter by month (requires --year)")
    p_list.add_argument(
        "--all",
        action="store_true",
        help="List every object in the bucket, not only backups/",
    )
    _add_bucket_options(p_list)
    p_list.set_defaults(func=cmd_list)

    # restore command
    p_restore = subparsers.add_parser("restore", help="Restore a database from a backup")
    p_restore.add_argument("--file", "-f", help="Local backup file")
    p_restore.add_argument("--from-cloud", help="Object key to download and restore")
    _add_db_options(p_restore)
    p_restore.add_argument(
        "--target-db", help="Database to restore into (default: --db-name)"
    )
    _add_key_options(p_restore)
    p_restore.add_argument(
        "--create-db", action="store_true", help="Create the target database if missing"
    )
    p_restore.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")
    _add_bucket_options(p_restore)
    p_restore.set_defaults(func=cmd_restore)

    # keygen command
    p_keygen = subparsers.add_parser("keygen", help="Generate an encryption key")
    p_keygen.add_argument("--output", "-o", help="Also write the key to this file")
    p_keygen.set_defaults(func=cmd_keygen)

    # connect command
    p_connect = subparsers.add_parser("connect", help="Check the database connection")
    _add_db_options(p_connect)
    p_connect.set_defaults(func=cmd_connect)

    # metrics command
    p_metrics = subparsers.add_parser("metrics", help="Serve metrics and health endpoints")
    p_metrics.add_argument("--host", help="Bind address (default: 0.0.0.0)")
    p_metrics.add_argument("--port", type=int, help="Port (default: 9090)")
    p_metrics.set_defaults(func=cmd_metrics)

    # schedule command
    p_schedule = subparsers.add_parser("schedule", help="Manage backup schedules")
    schedule_sub = p_schedule.add_subparsers(dest="schedule_command", required=True)

    p_init = schedule_sub.add_parser("init", help="Write an example schedule file")
    p_init.add_argument(
        "--output", "-o", default=DEFAULT_SCHEDULE_FILE, help="Output file path"
    )
    p_init.add_argument("--force", action="store_true", help="Overwrite an existing file")
    p_init.set_defaults(func=cmd_schedule_init)

    p_validate = schedule_sub.add_parser("validate", help="Validate a schedule file")
    p_validate.add_argument("--file", "-f", required=True, help="Schedule YAML file")
    p_validate.add_argument(
        "--simulate", action="store_true", help="Simulate the next runs"
    )
    p_validate.set_defaults(func=cmd_schedule_validate)

    p_deploy = schedule_sub.add_parser("deploy", help="Deploy a schedule to crontab")
    p_deploy.add_argument("--file", "-f", required=True, help="Schedule YAML file")
    p_deploy.add_argument(
        "--dry-run", action="store_true", help="Preview without deploying"
    )
    p_deploy.set_defaults(func=cmd_schedule_deploy)

    args = parser.parse_args()
    _setup_logging(args.verbose)
    args.metrics = MetricsSink()

    try:
        return args.func(args)
    except (OrchestratorError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
