"""node-catalog - browse integration node metadata straight from GitHub.

Usage:
    node-catalog search slack
    node-catalog category transform
    node-catalog show Slack --source
    node-catalog --repo n8n-io/n8n --branch master stats
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from . import __version__
from .cache import DiscoveryError
from .catalog import NodeCatalog, NodeDetails, NodeSummary
from .config import CatalogConfig, ConfigError
from .github import RepositoryError
from .logging import configure_logging

console = Console()

json_option = click.option("--json", "as_json", is_flag=True, help="Output raw JSON to stdout")


def _run(ctx: click.Context, query: Callable[[NodeCatalog], Awaitable[Any]]) -> Any:
    """Run one query against a fresh catalog, mapping engine errors to CLI errors."""
    config: CatalogConfig = ctx.obj["config"]

    async def runner():
        async with NodeCatalog.from_config(config) as catalog:
            return await query(catalog)

    try:
        return asyncio.run(runner())
    except (DiscoveryError, RepositoryError) as e:
        raise click.ClickException(str(e)) from e


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2))


@click.group()
@click.version_option(version=__version__)
@click.option("--repo", default=None, help="Repository as owner/repo (default n8n-io/n8n)")
@click.option("--branch", "-b", default=None, help="Branch to read (default master)")
@click.option("--token", envvar="GITHUB_TOKEN", default=None, help="GitHub token for higher rate limits")
@click.option("--batch-size", type=int, default=None, help="Concurrent blob fetches per batch")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.option("--log-file", type=click.Path(dir_okay=False), default=None, help="Also write logs to this file")
@click.pass_context
def cli(ctx, repo, branch, token, batch_size, verbose, log_file):
    """node-catalog - discover and query integration nodes in a GitHub monorepo."""
    configure_logging(verbose=verbose, log_file=log_file)
    try:
        config = CatalogConfig.from_env().with_overrides(
            repository=repo, branch=branch, token=token, batch_size=batch_size
        )
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    ctx.obj = {"config": config}


@cli.command()
@click.argument("query", default="")
@json_option
@click.pass_context
def search(ctx, query: str, as_json: bool):
    """Find nodes whose name, display name, description or category contains QUERY."""
    results = _run(ctx, lambda catalog: catalog.search(query))
    if as_json:
        _echo_json([r.to_dict() for r in results])
        return
    _print_summaries(results, title=f"Nodes matching {query!r}" if query else "All nodes")


@cli.command()
@click.argument("name")
@json_option
@click.pass_context
def category(ctx, name: str, as_json: bool):
    """List nodes in category NAME (exact match, case-insensitive)."""
    results = _run(ctx, lambda catalog: catalog.get_by_category(name))
    if as_json:
        _echo_json([r.to_dict() for r in results])
        return
    _print_summaries(results, title=f"Category {name!r}")


@cli.command()
@json_option
@click.pass_context
def categories(ctx, as_json: bool):
    """List categories with their node counts."""
    counts = _run(ctx, lambda catalog: catalog.categories())
    if as_json:
        _echo_json(dict(counts))
        return
    table = Table(title="Categories", show_header=True)
    table.add_column("Category", style="bold")
    table.add_column("Nodes", justify="right")
    for cat, count in counts:
        table.add_row(cat, str(count))
    console.print(table)


@cli.command(name="list")
@json_option
@click.pass_context
def list_nodes(ctx, as_json: bool):
    """List every node with a readable descriptor."""
    results = _run(ctx, lambda catalog: catalog.list_all())
    if as_json:
        _echo_json([r.to_dict() for r in results])
        return
    _print_summaries(results, title="All nodes")


@cli.command()
@click.argument("name")
@click.option("--source", "show_source", is_flag=True, help="Print the (truncated) source file")
@json_option
@click.pass_context
def show(ctx, name: str, show_source: bool, as_json: bool):
    """Show full metadata for node NAME."""
    details = _run(ctx, lambda catalog: catalog.get_details(name))
    if details is None:
        console.print(f"[red]No node named {escape(repr(name))}[/]")
        ctx.exit(1)
    if as_json:
        _echo_json(details.to_dict())
        return
    _print_details(details, show_source)


@cli.command()
@json_option
@click.pass_context
def stats(ctx, as_json: bool):
    """Show cache statistics."""
    data = _run(ctx, lambda catalog: catalog.stats())
    if as_json:
        _echo_json(data)
        return

    table = Table(title="Catalog", show_header=False, border_style="dim")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Revision", data["revision"] or "-")
    table.add_row("Loaded at", data["initialized_at"] or "-")
    table.add_row("Node files", str(data["total_nodes"]))
    table.add_row("Parsed nodes", str(data["parsed_nodes"]))
    table.add_row("Credential files", str(data["total_credentials"]))
    table.add_row("Nodes by package", _format_counts(data["nodes_by_package"]))
    table.add_row("Nodes by category", _format_counts(data["nodes_by_category"]))
    table.add_row("Credentials by package", _format_counts(data["credentials_by_package"]))
    console.print(table)

    if data["failures"]:
        console.print()
        console.print(f"[bold yellow]Failures ({len(data['failures'])}):[/]")
        for failure in data["failures"]:
            console.print(f"  [yellow]{failure['scope']}[/] {escape(failure['path'])}: {escape(failure['reason'])}")


@cli.command()
@click.argument("revision", required=False)
@json_option
@click.pass_context
def changed(ctx, revision: str | None, as_json: bool):
    """Check whether the branch head moved away from REVISION."""
    result = _run(ctx, lambda catalog: catalog.has_changed(revision))
    if as_json:
        _echo_json({"changed": result})
        return
    if result:
        console.print("[yellow]changed[/]")
    else:
        console.print("[green]unchanged[/]")


def _format_counts(counts: dict[str, int]) -> str:
    if not counts:
        return "-"
    return ", ".join(f"{k} ({v})" for k, v in sorted(counts.items(), key=lambda x: -x[1]))


def _flags(summary: NodeSummary) -> str:
    flags = []
    if summary.is_trigger:
        flags.append("trigger")
    if summary.is_webhook:
        flags.append("webhook")
    if summary.is_ai_tool:
        flags.append("ai")
    return ", ".join(flags)


def _print_summaries(results: list[NodeSummary], title: str) -> None:
    if not results:
        console.print(f"[yellow]{escape(title)}: no nodes found[/]")
        return
    table = Table(title=escape(f"{title} ({len(results)})"), show_header=True)
    table.add_column("Name", style="bold cyan")
    table.add_column("Display name")
    table.add_column("Category")
    table.add_column("Package", style="dim")
    table.add_column("Version", justify="right")
    table.add_column("Flags")
    for r in results:
        table.add_row(r.name, escape(r.display_name), escape(r.category), r.package, r.version, _flags(r))
    console.print(table)


def _print_details(details: NodeDetails, show_source: bool) -> None:
    summary = details.summary
    meta = details.metadata
    console.print()
    console.print(Panel.fit(
        f"[bold cyan]{escape(summary.display_name)}[/] [dim]{meta.node_type}[/]\n"
        f"{escape(summary.description or '')}",
        border_style="cyan",
    ))

    table = Table(show_header=False, border_style="dim")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Path", details.path)
    table.add_row("Package", summary.package)
    table.add_row("Category", summary.category)
    table.add_row("Style", meta.style)
    table.add_row("Version", f"{meta.version} (versions: {', '.join(meta.versions)})")
    table.add_row("Flags", _flags(summary) or "-")
    if meta.documentation:
        table.add_row("Docs", meta.documentation)
    table.add_row("Properties", str(len(meta.properties)))
    if meta.credentials:
        table.add_row("Credentials", ", ".join(c["name"] for c in meta.credentials))
    if meta.unsupported_fields:
        table.add_row("Unreadable fields", ", ".join(meta.unsupported_fields))
    console.print(table)

    if meta.operations:
        console.print()
        console.print("[bold]Operations:[/]")
        for op in meta.operations:
            scope = f" [dim]({', '.join(op['resources'])})[/]" if op["resources"] else ""
            console.print(f"  - {escape(str(op['name']))}{scope}")

    if details.related_credentials:
        console.print()
        console.print("[bold]Related credentials:[/]")
        for cred in details.related_credentials:
            console.print(f"  [magenta]{cred.name}[/] [dim]{escape(cred.path)}[/]")

    if show_source:
        console.print()
        console.print(Syntax(details.source, "typescript", line_numbers=True))
        if details.source_truncated:
            console.print("[yellow]Source truncated[/]")


if __name__ == "__main__":
    cli()
