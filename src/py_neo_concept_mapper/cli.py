# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
import csv
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# We wrap the settings import in a try-except block to provide a nicer
# error message if an environment variable holds an invalid value.
try:
    from .config import settings
except Exception as e:
    console = Console()
    console.print(Panel(
        f"[bold red]Configuration Error:[/bold red]\n{e}\n\nPlease check your .env file and the [bold cyan]PYNEOCONCEPTMAPPER_*[/bold cyan] environment variables.",
        title="[bold red]Initialization Failed[/bold red]",
        border_style="red"
    ))
    raise SystemExit(1)

from neo4j import GraphDatabase

from .athena import AthenaParser
from .enrichment import EnrichmentEngine
from .graph_loader import VocabularyGraphLoader
from .mapping_store import MappingStore
from .models import SourceConcept
from .packager import ExportPackager, load_submission
from .sources import AlignmentRepository
from .validation import ValidationEngine, ValidationIssue
from .vocabulary import Neo4jVocabulary, VocabularyAccessor


app = typer.Typer(
    name="py-neo-concept-mapper",
    help="Map local clinical concepts onto standard OMOP vocabularies and export validated mapping packages."
)
console = Console()


@contextmanager
def open_vocabulary() -> Iterator[VocabularyAccessor]:
    """Opens the vocabulary store selected by `settings.vocabulary_backend`."""
    if settings.vocabulary_backend == "athena":
        yield AthenaParser(Path(settings.athena_dir)).load_vocabulary()
        return
    driver = GraphDatabase.driver(settings.neo4j_uri, auth=(settings.neo4j_user, settings.neo4j_password))
    try:
        yield Neo4jVocabulary(driver)
    finally:
        driver.close()


def _issue_table(title: str, issues: List[ValidationIssue], style: str) -> Table:
    table = Table(title=title, title_style=style, show_lines=False)
    table.add_column("Code", style=style, no_wrap=True)
    table.add_column("Source code", no_wrap=True)
    table.add_column("Message")
    for issue in issues:
        table.add_row(issue.code.value, issue.source_code or "", issue.message)
    return table


def _print_issues(errors: List[ValidationIssue], warnings: List[ValidationIssue]):
    if errors:
        console.print(_issue_table("ERRORS", errors, "bold red"))
    if warnings:
        console.print(_issue_table("WARNINGS (non-blocking)", warnings, "bold yellow"))


@app.command(name="load-vocabulary", help="Load an Athena vocabulary download into Neo4j.")
def load_vocabulary(
    vocab_dir: Path = typer.Option(..., "--vocab-dir", "-d", help="Folder holding the Athena CSV files."),
    version: str = typer.Option(..., "--version", "-v", help="Vocabulary release label, e.g. 'v5.0 30-AUG-25'."),
):
    console.print(Panel(f"[bold cyan]Loading vocabulary {version} from {vocab_dir}[/bold cyan]", border_style="cyan"))
    driver = None
    try:
        driver = GraphDatabase.driver(settings.neo4j_uri, auth=(settings.neo4j_user, settings.neo4j_password))
        VocabularyGraphLoader(driver, version).run_import(vocab_dir)
        console.print(Panel(
            f"[bold green]Vocabulary {version} loaded successfully.[/bold green]",
            title="[bold green]Load Complete[/bold green]"
        ))
    except Exception as e:
        console.print_exception()
        console.print(Panel(f"[bold red]Failed to load the vocabulary: {e}", title="[bold red]Error[/bold red]"))
        raise typer.Exit(code=1)
    finally:
        if driver:
            driver.close()


@app.command(name="register-alignment", help="Register a CSV of source concepts as a new alignment.")
def register_alignment(
    name: str = typer.Option(..., "--name", "-n", help="Alignment name."),
    source_csv: Path = typer.Option(..., "--source-csv", "-s", help="CSV with vocabulary_id, concept_code, concept_name, category."),
    description: str = typer.Option("", "--description", help="Alignment description."),
):
    try:
        with open(source_csv, 'r', encoding='utf-8', newline='') as f:
            concepts = [
                SourceConcept(
                    row_id=index,
                    vocabulary_id=row.get("vocabulary_id") or "",
                    concept_code=row.get("concept_code") or "",
                    concept_name=row.get("concept_name") or "",
                    category=row.get("category") or "",
                )
                for index, row in enumerate(csv.DictReader(f), start=1)
            ]
        alignment = AlignmentRepository(settings.concept_mapping_dir).register_alignment(
            name, concepts, description=description, original_filename=source_csv.name
        )
        console.print(f"[green]Alignment registered with ID {alignment.alignment_id}.[/green]")
    except Exception as e:
        console.print_exception()
        console.print(Panel(f"[bold red]Failed to register the alignment: {e}", title="[bold red]Error[/bold red]"))
        raise typer.Exit(code=1)


@app.command(name="enrich", help="Expand curated mappings with related standard concepts.")
def enrich(
    mappings: Path = typer.Option(..., "--mappings", "-m", help="Mapping store CSV to enrich in place."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report the result without writing it."),
):
    console.print(Panel(f"[bold cyan]Enriching {mappings}[/bold cyan]", border_style="cyan"))
    try:
        store = MappingStore(mappings)
        with open_vocabulary() as vocabulary:
            with store.unit_of_work() as uow:
                result = EnrichmentEngine(vocabulary).enrich(uow.mappings)
                if dry_run:
                    uow.rollback()
                else:
                    uow.replace_all(result.mappings)
    except Exception as e:
        console.print_exception()
        console.print(Panel(f"[bold red]An error occurred during enrichment: {e}", title="[bold red]Error[/bold red]"))
        raise typer.Exit(code=1)

    summary = result.summary
    console.print(Panel(
        f"Original mappings: {summary.original_mappings}\n"
        f"Final mappings: {summary.final_mappings}\n"
        f"New mappings added: {summary.added_mappings}\n"
        f"Recommended mappings: {summary.recommended_mappings}",
        title="[bold green]Enrichment Summary[/bold green]"
    ))


@app.command(name="validate", help="Validate a submission without exporting it.")
def validate(
    submission_file: Path = typer.Argument(..., help="Submission JSON file."),
):
    try:
        submission = load_submission(submission_file)
        repository = AlignmentRepository(settings.concept_mapping_dir)
        source_concepts = repository.get_source_concepts(submission.alignment_id, submission.category)
        with open_vocabulary() as vocabulary:
            report = ValidationEngine(vocabulary).validate(submission.mappings, source_concepts)
    except Exception as e:
        console.print_exception()
        console.print(Panel(f"[bold red]Validation could not run: {e}", title="[bold red]Error[/bold red]"))
        raise typer.Exit(code=1)

    _print_issues(report.errors, report.warnings)
    if not report.is_valid:
        console.print("[bold red]=== VALIDATION FAILED ===[/bold red]")
        raise typer.Exit(code=1)
    console.print("[bold green]=== VALIDATION PASSED ===[/bold green]")


@app.command(name="export", help="Validate a submission and package it if it has no errors.")
def export(
    submission_file: Path = typer.Argument(..., help="Submission JSON file."),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Package name (defaults to the alignment name)."),
    description: Optional[str] = typer.Option(None, "--description", help="Package description."),
):
    console.print(Panel(f"[bold cyan]Exporting {submission_file.name}[/bold cyan]", border_style="cyan"))
    try:
        repository = AlignmentRepository(settings.concept_mapping_dir)
        with open_vocabulary() as vocabulary:
            result = ExportPackager(vocabulary, repository).export(submission_file, name=name, description=description)
    except Exception as e:
        console.print_exception()
        console.print(Panel(f"[bold red]An error occurred during export: {e}", title="[bold red]Error[/bold red]"))
        raise typer.Exit(code=1)

    _print_issues(result.errors, result.warnings)
    if not result.success:
        body = result.message
        if result.scratch_path:
            body += f"\nFiles kept in: {result.scratch_path}"
        console.print(Panel(f"[bold red]{body}[/bold red]", title=f"[bold red]Export {result.status.value}[/bold red]"))
        raise typer.Exit(code=1)

    total = (result.mapped_count + result.unmapped_count) or 1
    console.print(Panel(
        f"Mapped:   {result.mapped_count} ({round(100 * result.mapped_count / total)}%)\n"
        f"Unmapped: {result.unmapped_count} ({round(100 * result.unmapped_count / total)}%)\n"
        f"Package:  {result.package_path}",
        title="[bold green]VALIDATION PASSED[/bold green]"
    ))


if __name__ == "__main__":
    app()
