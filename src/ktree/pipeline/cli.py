import asyncio
import sys
from pathlib import Path

import typer
import yaml
from pydantic import BaseModel, ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from ktree.pipeline.config import AppConfig, generate_default_config, load_config
from ktree.pipeline.logging import configure_cli_logging
from ktree.pipeline.ontology import (
    DirectoryRecord,
    FileRecord,
    OntologyError,
    build_ontology,
    export_ontology_structure,
    get_files_for_topic,
    get_topics_for_file,
    validate_ontology_results,
)
from ktree.pipeline.ontology.models import OntologyExport

console = Console()
err_console = Console(stderr=True)

_cli = typer.Typer(
    name="ktree-ontology",
    help="Build and inspect the functional ontology of a repository.",
    no_args_is_help=True,
)


class RepositorySummaries(BaseModel):
    files: list[FileRecord]
    directories: list[DirectoryRecord] = []


def _load_config(config_path: Path | None) -> AppConfig:
    try:
        return load_config(config_path)
    except FileNotFoundError as e:
        raise typer.BadParameter(str(e)) from e


def _resolve_cache_dir(cache_dir: Path | None, config: AppConfig) -> Path:
    return cache_dir if cache_dir is not None else config.storage.data_dir


def _load_summaries(path: Path) -> RepositorySummaries:
    if not path.exists():
        raise typer.BadParameter(f"Summaries file not found: {path}")
    try:
        return RepositorySummaries.model_validate_json(path.read_text())
    except ValidationError as e:
        raise typer.BadParameter(f"Invalid summaries file {path}: {e}") from e


def _render_tree(export: OntologyExport) -> Tree:
    topics = export.structure.topics
    links_per_topic: dict[str, int] = {}
    for link in export.structure.links:
        links_per_topic[link.topic_id] = links_per_topic.get(link.topic_id, 0) + 1

    root = next((t for t in topics if t.is_root), None)
    label = f"[bold]{escape(root.title)}[/bold]" if root else "[dim]<no root>[/dim]"
    tree = Tree(label)
    for domain in (t for t in topics if t.depth == 1):
        branch = tree.add(
            f"[cyan]{escape(domain.title)}[/cyan] [dim]({domain.id})[/dim]"
        )
        for sub in (t for t in topics if t.parent_id == domain.id):
            count = links_per_topic.get(sub.id, 0)
            branch.add(f"{escape(sub.title)} [dim]({sub.id}, {count} files)[/dim]")
    return tree


@_cli.command("build", help="Build the ontology from a JSON file of summaries")
def build(
    summaries: Path = typer.Argument(
        ..., help='JSON file with {"files": [...], "directories": [...]}'
    ),
    cache_dir: Path | None = typer.Option(
        None, "--cache-dir", help="Directory holding the ontology database"
    ),
    config_file: Path | None = typer.Option(
        None, "--config", help="Path to the configuration file"
    ),
    strict: bool = typer.Option(
        False, "--strict", help="Exit with an error when validation fails"
    ),
) -> None:
    config = _load_config(config_file)
    data = _load_summaries(summaries)
    target = _resolve_cache_dir(cache_dir, config)

    result = asyncio.run(
        build_ontology(target, data.files, data.directories, config=config)
    )
    report = validate_ontology_results(result, config)

    table = Table(title="Ontology build")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Topics", str(result.persistence.topic_count))
    table.add_row("Links", str(result.persistence.link_count))
    table.add_row("Coverage", f"{result.persistence.coverage_percentage}%")
    table.add_row(
        "Avg intra-cluster similarity",
        f"{result.quality.avg_intra_cluster_similarity:.3f}",
    )
    table.add_row("LLM calls", str(result.llm_call_count))
    table.add_row("Total time", f"{result.timing.total_time:.1f}s")
    console.print(table)

    if report.passed:
        console.print("[green]All validation checks passed[/green]")
        return

    for issue in report.issues:
        console.print(f"[yellow]Warning:[/yellow] {escape(issue)}")
    if strict:
        raise typer.Exit(1)


@_cli.command("export", help="Show a persisted ontology")
def export(
    cache_dir: Path | None = typer.Option(
        None, "--cache-dir", help="Directory holding the ontology database"
    ),
    config_file: Path | None = typer.Option(
        None, "--config", help="Path to the configuration file"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the export as JSON"),
) -> None:
    config = _load_config(config_file)
    target = _resolve_cache_dir(cache_dir, config)
    result = asyncio.run(export_ontology_structure(target, config))

    if as_json:
        console.print_json(result.model_dump_json())
        return

    console.print(_render_tree(result))
    stats = result.structure.stats
    console.print(
        f"{stats.total_topics} topics, {stats.total_links} links, "
        f"max depth {stats.max_depth}"
    )
    for issue in result.validation.issues:
        console.print(f"[yellow]Warning:[/yellow] {escape(issue)}")


@_cli.command("topics", help="List the topics a file is linked to")
def topics(
    file_id: str = typer.Argument(..., help="File id"),
    cache_dir: Path | None = typer.Option(
        None, "--cache-dir", help="Directory holding the ontology database"
    ),
    config_file: Path | None = typer.Option(
        None, "--config", help="Path to the configuration file"
    ),
) -> None:
    config = _load_config(config_file)
    target = _resolve_cache_dir(cache_dir, config)
    found = asyncio.run(get_topics_for_file(target, file_id))
    if not found:
        console.print(f"No topics linked to {escape(file_id)}")
        return
    for topic in found:
        console.print(f"{topic.id}\t{escape(topic.title)}")


@_cli.command("files", help="List the files linked to a topic")
def files(
    topic_id: str = typer.Argument(..., help="Topic id"),
    cache_dir: Path | None = typer.Option(
        None, "--cache-dir", help="Directory holding the ontology database"
    ),
    config_file: Path | None = typer.Option(
        None, "--config", help="Path to the configuration file"
    ),
) -> None:
    config = _load_config(config_file)
    target = _resolve_cache_dir(cache_dir, config)
    found = asyncio.run(get_files_for_topic(target, topic_id))
    if not found:
        console.print(f"No files linked to {escape(topic_id)}")
        return
    for file_id in found:
        console.print(file_id)


@_cli.command("init-config", help="Write a default configuration file")
def init_config(
    output: Path = typer.Argument(Path("ktree.yaml"), help="Output path"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
) -> None:
    if output.exists() and not force:
        console.print(f"[red]{output} already exists, use --force to overwrite[/red]")
        raise typer.Exit(1)
    output.write_text(yaml.safe_dump(generate_default_config(), sort_keys=False))
    console.print(f"Wrote default configuration to {output}")


def cli() -> None:
    """Entry point: configures logging and reports pipeline errors cleanly."""
    configure_cli_logging()
    try:
        _cli()
    except OntologyError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
