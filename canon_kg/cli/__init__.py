"""
Command-Line Interface

CLI commands for CanonKG registry maintenance.

Commands:
    canon-kg resolve           - Link unresolved mentions to canonical entities
    canon-kg merge-canonicals  - Merge duplicate canonical entities
    canon-kg resolve-tags      - Normalize and merge duplicate tags
    canon-kg embed             - Refresh registry embeddings
    canon-kg search QUERY      - Search entities and tags
    canon-kg status            - Document lifecycle counts and embedding coverage
    canon-kg retry             - Send errored documents back to pending
    canon-kg recover           - Reset documents stuck in processing

Usage:
    # Resolve people and organizations without writing
    canon-kg resolve --kind Person --kind Organization --dry-run

    # Lexical-only search
    canon-kg search "machine learning" --lexical

    # Use a config file and the in-memory store
    canon-kg --config canon.toml --backend memory status
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from canon_kg.errors import CanonKGError

__all__ = ["main", "app"]

app = typer.Typer(
    name="canon-kg",
    help="Cross-document entity and tag registry maintenance",
    no_args_is_help=True,
)
console = Console()

_settings: dict[str, Any] = {"config": None, "backend": None}


@app.callback()
def configure(
    config: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="TOML configuration file",
        exists=True,
        dir_okay=False,
    ),
    backend: Optional[str] = typer.Option(
        None,
        "--backend", "-b",
        help="Store backend override (neo4j or memory)",
    ),
    env_file: Optional[Path] = typer.Option(
        None,
        "--env-file",
        help="Environment file to load (default: .env)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Enable debug logging",
    ),
) -> None:
    """Global options."""
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("neo4j").setLevel(logging.WARNING)

    _settings["config"] = config
    _settings["backend"] = backend


def _build_registry():
    from canon_kg.api.registry import CanonRegistry
    from canon_kg.config import KGConfig

    config_path = _settings.get("config")
    config = KGConfig.from_file(config_path) if config_path else KGConfig()
    if _settings.get("backend"):
        config = config.with_overrides(store_backend=_settings["backend"])
    return CanonRegistry(config)


def _execute(run: Callable[[Any], Awaitable[None]]) -> None:
    """Run a command body against a fresh registry, closing it afterwards."""

    async def _run() -> None:
        registry = _build_registry()
        try:
            await run(registry)
        finally:
            await registry.close()

    try:
        asyncio.run(_run())
    except CanonKGError as e:
        console.print(f"[red]{type(e).__name__}: {e}[/]")
        raise typer.Exit(code=1)


@app.command()
def resolve(
    kind: Optional[list[str]] = typer.Option(
        None,
        "--kind", "-t",
        help="Entity kind to resolve (repeatable)",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Match and count without writing",
    ),
) -> None:
    """Link unresolved entity mentions to canonical entities."""

    async def run(registry) -> None:
        from canon_kg.types import EntityKind

        kinds = [EntityKind(k) for k in kind] if kind else None
        result = await registry.resolve_entities(kinds, dry_run=dry_run)

        table = Table(title="Entity Resolution" + (" (dry run)" if dry_run else ""))
        table.add_column("Kind", style="cyan")
        table.add_column("Mentions", justify="right")
        table.add_column("Merged", justify="right", style="green")
        table.add_column("Created", justify="right", style="green")
        table.add_column("Unresolved", justify="right", style="yellow")
        for kind_name, stats in result.by_kind.items():
            table.add_row(
                kind_name,
                str(stats.mentions),
                str(stats.merged),
                str(stats.created),
                str(stats.unresolved),
            )
        console.print(table)

        summary = (
            f"Processed: {result.processed}\n"
            f"Merged: {result.merged}\n"
            f"Created: {result.created}\n"
            f"Skipped batches: {result.skipped_batches}\n"
            f"Duration: {result.elapsed_ms}ms"
        )
        console.print(Panel(
            summary,
            title="Aborted: matcher unavailable" if result.aborted else "Resolution Complete",
            border_style="yellow" if result.aborted else "green",
        ))

    _execute(run)


@app.command("merge-canonicals")
def merge_canonicals() -> None:
    """Merge canonical entities duplicated by concurrent writers."""

    async def run(registry) -> None:
        result = await registry.merge_canonicals()
        console.print(f"[green]Merged {result.merged} duplicate canonical entities[/]")

    _execute(run)


@app.command("resolve-tags")
def resolve_tags(
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Count what would change without writing",
    ),
) -> None:
    """Normalize tags and merge duplicates."""

    async def run(registry) -> None:
        result = await registry.resolve_tags(dry_run=dry_run)
        console.print(Panel(
            f"Normalized: {result.normalized}\n"
            f"Exact merges: {result.merged}\n"
            f"Semantic merges: {result.llm_merged}\n"
            f"Duration: {result.elapsed_ms}ms",
            title="Tag Resolution" + (" (dry run)" if dry_run else ""),
        ))

    _execute(run)


@app.command()
def embed(
    content_nodes: bool = typer.Option(
        False,
        "--content-nodes",
        help="Also embed linked content nodes",
    ),
    create_indexes: bool = typer.Option(
        True,
        "--create-indexes/--no-create-indexes",
        help="Create vector and full-text indexes first",
    ),
) -> None:
    """Embed canonical entities and tags whose text changed."""

    async def run(registry) -> None:
        if create_indexes:
            await registry.ensure_search_indexes()
        result = await registry.generate_embeddings()
        lines = (
            f"Entities embedded: {result.entities_embedded}\n"
            f"Tags embedded: {result.tags_embedded}\n"
            f"Unchanged: {result.skipped}\n"
            f"Duration: {result.elapsed_ms}ms"
        )
        if content_nodes:
            nodes = await registry.embed_content_nodes()
            lines += f"\nContent nodes embedded: {nodes}"
        console.print(Panel(lines, title="Embeddings"))

    _execute(run)


@app.command()
def search(
    query: str = typer.Argument(
        ...,
        help="Search text",
    ),
    kind: Optional[list[str]] = typer.Option(
        None,
        "--kind", "-t",
        help="Entity kind filter (repeatable; 'Tag' keeps tags)",
    ),
    limit: Optional[int] = typer.Option(
        None,
        "--limit", "-n",
        help="Maximum results",
    ),
    min_score: Optional[float] = typer.Option(
        None,
        "--min-score",
        help="Minimum score",
    ),
    lexical: bool = typer.Option(
        False,
        "--lexical",
        help="Lexical search only",
    ),
    hybrid: bool = typer.Option(
        True,
        "--hybrid/--no-hybrid",
        help="Fuse semantic and lexical results",
    ),
    project: Optional[list[str]] = typer.Option(
        None,
        "--project", "-p",
        help="Project filter (repeatable)",
    ),
) -> None:
    """Search canonical entities and tags."""

    async def run(registry) -> None:
        results = await registry.search(
            query,
            entity_kinds=kind or None,
            use_semantic=not lexical,
            use_hybrid=hybrid,
            limit=limit,
            min_score=min_score,
            project_ids=project or None,
        )
        if not results:
            console.print("[yellow]No results[/]")
            return

        table = Table(title=f"Results for '{query}'")
        table.add_column("Score", justify="right", style="green")
        table.add_column("Name", style="cyan")
        table.add_column("Type")
        table.add_column("Aliases", style="dim")
        table.add_column("Docs", justify="right")
        table.add_column("Match", style="dim")
        for result in results:
            kind_label = (
                result.entity_kind.value if result.entity_kind
                else f"Tag/{result.category.value if result.category else 'other'}"
            )
            table.add_row(
                f"{result.score:.3f}",
                result.name,
                kind_label,
                ", ".join(result.aliases[:3]),
                str(result.document_count),
                result.match_source.value,
            )
        console.print(table)

    _execute(run)


@app.command()
def status(
    project: Optional[str] = typer.Option(
        None,
        "--project", "-p",
        help="Project filter",
    ),
) -> None:
    """Show document lifecycle counts and embedding coverage."""

    async def run(registry) -> None:
        counts = await registry.count_by_state(project)
        table = Table(title="Documents")
        table.add_column("State", style="cyan")
        table.add_column("Count", justify="right", style="green")
        for state, count in counts.items():
            table.add_row(state, str(count))
        console.print(table)

        stats = await registry.embedding_stats()
        coverage = Table(title="Embeddings")
        coverage.add_column("Node", style="cyan")
        coverage.add_column("Embedded", justify="right", style="green")
        coverage.add_column("Total", justify="right")
        coverage.add_row("CanonicalEntity", str(stats.entities_with_embedding), str(stats.total_entities))
        coverage.add_row("Tag", str(stats.tags_with_embedding), str(stats.total_tags))
        console.print(coverage)

    _execute(run)


@app.command()
def retry(
    max_retries: Optional[int] = typer.Option(
        None,
        "--max-retries",
        help="Only retry documents with fewer errors than this",
    ),
) -> None:
    """Send errored documents back to pending."""

    async def run(registry) -> None:
        result = await registry.retry_errors(max_retries)
        console.print(f"[green]Reset {result.reset} errored documents to pending[/]")
        for document_id in result.document_ids:
            console.print(f"  - {document_id}")

    _execute(run)


@app.command()
def recover(
    threshold: Optional[float] = typer.Option(
        None,
        "--threshold",
        help="Minutes in a processing state before a document counts as stuck",
    ),
) -> None:
    """Reset documents stuck in parsing, linking or embedding."""

    async def run(registry) -> None:
        result = await registry.reset_stuck_documents(threshold)
        console.print(f"[green]Reset {result.reset} stuck documents to pending[/]")
        for document_id in result.document_ids:
            console.print(f"  - {document_id}")

    _execute(run)


def main() -> None:
    """Entry point for the CLI."""
    app()
