"""
Command-line interface for versions regeneration.

Uses Typer to provide commands to regenerate versions, list declared
documents, mark documents as done and reset the progress checkpoint.
Supports loading .env files for path configuration.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table

from .config import AppConfig, load_config
from .core.rules import DONE, RuleStore
from .declarations import DeclarationSet
from .errors import RegenerationError
from .review import AutoReviewer, ConsoleReviewer
from .runner import is_explicit, run_regeneration

app = typer.Typer(add_completion=False)
console = Console()


def _load(config: Path | None, log_level: str | None = None) -> AppConfig:
    load_dotenv()
    cfg = load_config(str(config) if config else None)
    if log_level:
        cfg.logging.level = log_level
    return cfg


def _rule_store(cfg: AppConfig) -> RuleStore:
    store = RuleStore(cfg.paths.rules_path, cfg.paths.rules_filename)
    store.load()
    return store


@app.command()
def run(
    service: str = typer.Option("*", "--service", "-s", help="Service id or glob."),
    document_type: str = typer.Option("*", "--document-type", "-d", help="Document type or glob."),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Review every new version."),
    resume: bool | None = typer.Option(
        None, "--resume/--restart", help="Continue after the saved checkpoint, or start over."
    ),
    progress: bool = typer.Option(True, "--progress/--no-progress"),
    config: Path | None = typer.Option(Path("config.yaml"), "--config", "-c"),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level."),
    force: bool = typer.Option(False, "--force", help="Review documents already marked as done."),
):
    """Regenerate versions from snapshots.

    Args:
        service: Service id or glob
        document_type: Document type or glob
        interactive: Ask for a decision on each new version and failure
        resume: Resume from the checkpoint; asked when omitted in interactive mode
        progress: Whether to show progress bar
        config: Optional path to YAML config file
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        force: Allow interactive review of a document marked as done
    """
    cfg = _load(config, log_level)

    if resume is None:
        resume = True
        checkpoint = _rule_store(cfg).get_progress()
        if interactive and checkpoint is not None:
            resume = Confirm.ask(
                f"A previous run stopped after snapshot {checkpoint.snapshot_id} "
                f"({checkpoint.index - 1} processed, {checkpoint.saved_at}). Resume it?",
                default=True,
                console=console,
            )

    reviewer = (
        ConsoleReviewer(console, cfg.review.snapshot_url_template) if interactive else AutoReviewer()
    )
    try:
        stats = run_regeneration(
            cfg,
            service_id=service,
            document_type=document_type,
            resume=resume,
            reviewer=reviewer,
            interactive=interactive,
            force=force,
            show_progress=progress and not interactive,
            console=console,
        )
    except RegenerationError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    if interactive and is_explicit(service) and is_explicit(document_type) and stats.visited:
        if Confirm.ask(
            f"Everything has been processed for {service} - {document_type}. Mark it as done?",
            default=False,
            console=console,
        ):
            _rule_store(cfg).update_document(service, document_type, DONE, datetime.now(timezone.utc))
            console.print(f"{service} - {document_type} marked as done")


@app.command("list")
def list_documents(
    config: Path | None = typer.Option(Path("config.yaml"), "--config", "-c"),
):
    """List declared documents and whether they are done."""
    cfg = _load(config)
    store = _rule_store(cfg)
    declarations = DeclarationSet(Path(cfg.paths.declarations_dir))

    table = Table(title="Documents")
    table.add_column("Service")
    table.add_column("Document type")
    table.add_column("Done")
    for service_id, document_type in declarations.document_types():
        done = store.load()["documents"].get(service_id, {}).get(document_type, {}).get(DONE)
        table.add_row(service_id, document_type, done or "")
    console.print(table)


@app.command("mark-done")
def mark_done(
    service: str = typer.Option(..., "--service", "-s"),
    document_type: str = typer.Option(..., "--document-type", "-d"),
    config: Path | None = typer.Option(Path("config.yaml"), "--config", "-c"),
):
    """Mark a document as done so interactive runs leave it alone."""
    cfg = _load(config)
    _rule_store(cfg).update_document(service, document_type, DONE, datetime.now(timezone.utc))
    console.print(f"{service} - {document_type} marked as done")


@app.command("reset-progress")
def reset_progress(
    config: Path | None = typer.Option(Path("config.yaml"), "--config", "-c"),
):
    """Forget the saved checkpoint; the next run starts from the first snapshot."""
    cfg = _load(config)
    _rule_store(cfg).reset_progress()
    console.print("Progress checkpoint removed")


if __name__ == "__main__":
    app()
