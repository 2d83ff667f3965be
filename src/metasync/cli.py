"""
Command-line interface for metasync.
"""

import asyncio
import json
import sys
from functools import wraps
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import MetaSyncConfig
from .exceptions import ConfigurationError, MetaSyncError


console = Console()


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except MetaSyncError as e:
            console.print(f"[red]Error:[/red] {e}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(0)
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {e}")
            if _debug_enabled():
                console.print_exception()
            sys.exit(1)
    return wrapper


def _debug_enabled() -> bool:
    ctx = click.get_current_context(silent=True)
    while ctx is not None:
        if isinstance(ctx.obj, dict) and ctx.obj.get("debug"):
            return True
        ctx = ctx.parent
    return False


config_option = click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)


def _load_config(path: str, debug: bool = False) -> MetaSyncConfig:
    config = MetaSyncConfig.from_yaml(path)
    if debug or config.debug:
        config.logging.level = "DEBUG"
    config.logging.configure()
    return config


def _select_source(base, source_id: Optional[str]):
    if source_id is None:
        return None
    return base.get_source(source_id)


async def _with_service(config: MetaSyncConfig, operation):
    """Run ``operation(service)`` against a catalog store opened for one command."""
    from .catalog.store import create_store
    from .sync.service import MetaDiffService

    store = await create_store(config)
    try:
        return await operation(MetaDiffService(store, concurrency=config.concurrency))
    finally:
        await store.close()


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug mode"
)
@click.pass_context
def main(ctx, debug):
    """metasync: keep a table catalog in step with live database schemas."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default="metasync-config.yaml",
    help="Output configuration file path",
)
@handle_errors
def init(output: str):
    """Initialize a new metasync configuration file."""
    if Path(output).exists():
        if not click.confirm(f"Configuration file {output} already exists. Overwrite?"):
            return

    config = _create_default_config()
    config.to_yaml(output)
    console.print(f"[green]✓[/green] Configuration file created: {output}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Edit the configuration file with your catalog and source databases")
    console.print("2. Run: metasync validate-config -c your-config.yaml")
    console.print("3. Run: metasync diff -c your-config.yaml --base <base id>")


@main.command()
@config_option
@handle_errors
def validate_config(config: str):
    """Validate configuration file."""
    console.print(f"Validating configuration: {config}")

    try:
        metasync_config = MetaSyncConfig.from_yaml(config)
        metasync_config.validate_config()

        console.print("[green]✓[/green] Configuration is valid")
        _display_config_summary(metasync_config)

    except ConfigurationError as e:
        console.print(f"[red]✗[/red] Configuration error: {e}")
        sys.exit(1)


@main.command()
@config_option
@click.option("--base", "base_id", required=True, help="Base to diff")
@click.option("--source", "source_id", default=None, help="Limit the diff to one source")
@click.option("--json", "as_json", is_flag=True, help="Print the diff as JSON")
@click.pass_context
@handle_errors
def diff(ctx, config: str, base_id: str, source_id: Optional[str], as_json: bool):
    """Show how the catalog differs from the live schema."""
    metasync_config = _load_config(config, ctx.obj.get("debug", False))
    base = metasync_config.get_base(base_id)
    source = _select_source(base, source_id)

    async def run_diff(service):
        if source is not None:
            return await service.compute_diff(base, source)
        return await service.meta_diff(base)

    diffs = asyncio.run(_with_service(metasync_config, run_diff))

    if as_json:
        click.echo(json.dumps([d.to_dict() for d in diffs], indent=2))
        return

    if not diffs:
        console.print("[green]✓[/green] Catalog is in sync")
        return
    _display_diffs(diffs)


@main.command()
@config_option
@click.option("--base", "base_id", required=True, help="Base to sync")
@click.option("--source", "source_id", default=None, help="Limit the sync to one source")
@click.pass_context
@handle_errors
def sync(ctx, config: str, base_id: str, source_id: Optional[str]):
    """Apply the live schema to the catalog."""
    metasync_config = _load_config(config, ctx.obj.get("debug", False))
    base = metasync_config.get_base(base_id)
    source = _select_source(base, source_id)

    console.print(f"[blue]Syncing base {base.id}[/blue]")

    async def run_sync(service):
        if source is not None:
            return [await service.apply_diff(base, source)]
        return await service.meta_diff_sync(base)

    results = asyncio.run(_with_service(metasync_config, run_sync))

    result_table = Table(title="Sync Results")
    result_table.add_column("Source", style="cyan")
    result_table.add_column("Status", style="magenta")
    result_table.add_column("Tables", style="green")
    result_table.add_column("Changes", style="yellow")
    result_table.add_column("Time (ms)", style="blue")

    for result in results:
        result_table.add_row(
            result.source_id,
            result.status.value,
            str(result.tables_changed),
            str(result.changes_applied),
            f"{result.execution_time_ms:.1f}",
        )

    console.print(result_table)
    console.print("[green]✓[/green] Sync completed")


@main.command()
@config_option
@handle_errors
def cache_clear(config: str):
    """Drop every cached catalog entry."""
    metasync_config = _load_config(config)

    async def run_clear():
        from .catalog.cache import create_cache

        cache = create_cache(metasync_config.cache)
        try:
            await cache.destroy()
        finally:
            await cache.close()

    asyncio.run(run_clear())
    console.print("[green]✓[/green] Catalog cache cleared")


def _create_default_config() -> MetaSyncConfig:
    """Create a default configuration with examples."""
    from .config import (
        BaseConfig,
        CacheConfig,
        CatalogConfig,
        DatabaseConnection,
        SourceConfig,
    )

    return MetaSyncConfig(
        catalog=CatalogConfig(
            backend="postgres",
            connection=DatabaseConnection(
                host="${CATALOG_DB_HOST}",
                database="${CATALOG_DB_NAME}",
                user="${CATALOG_DB_USER}",
                password="${CATALOG_DB_PASSWORD}",
            ),
            schema_name="metasync",
        ),
        cache=CacheConfig(backend="redis", url="${REDIS_URL}"),
        bases=[
            BaseConfig(
                id="main",
                title="Main base",
                sources=[
                    SourceConfig(
                        id="primary",
                        alias="Primary database",
                        client="pg",
                        connection=DatabaseConnection(
                            host="${SOURCE_DB_HOST}",
                            database="${SOURCE_DB_NAME}",
                            user="${SOURCE_DB_USER}",
                            password="${SOURCE_DB_PASSWORD}",
                        ),
                        schema_name="public",
                    )
                ],
            )
        ],
    )


def _display_config_summary(config: MetaSyncConfig):
    """Display a summary of the configuration."""
    console.print("\n[blue]Configuration Summary[/blue]")
    console.print(f"  Catalog backend: {config.catalog.backend}")
    console.print(f"  Cache backend: {config.cache.backend}")

    source_table = Table(title="Sources")
    source_table.add_column("Base", style="cyan")
    source_table.add_column("Source", style="magenta")
    source_table.add_column("Client", style="green")
    source_table.add_column("Schema", style="yellow")
    source_table.add_column("Meta", style="blue")

    for base in config.bases:
        for source in base.sources:
            source_table.add_row(
                base.id,
                source.display_name,
                source.client,
                source.schema_name,
                "yes" if source.is_meta else "no",
            )

    console.print(source_table)


def _display_diffs(diffs: List):
    diff_table = Table(title="Detected Changes")
    diff_table.add_column("Table", style="cyan")
    diff_table.add_column("Type", style="magenta")
    diff_table.add_column("Change", style="yellow")
    diff_table.add_column("Message", style="green")

    for item in diffs:
        for change in item.ordered_changes():
            diff_table.add_row(item.table_name, item.type, change.type, change.msg)

    console.print(diff_table)


if __name__ == "__main__":
    main()
