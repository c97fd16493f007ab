"""
Review decisions on regenerated versions and extraction failures.

The pipeline asks a ``Reviewer`` what to do with each new version (or each
snapshot that could not be extracted) and applies the returned decision
itself. ``AutoReviewer`` keeps everything, ``ConsoleReviewer`` asks the
operator through rich prompts.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.rule import Rule
from rich.syntax import Syntax

from .core.types import Classification, DocumentDeclaration, Snapshot, format_iso8601
from .declarations import declaration_to_json


class Decision(str, Enum):
    KEEP = "keep"
    BYPASS = "bypass"
    RETRY = "retry"
    SKIP = "skip"
    SKIP_CONTENT = "skip-content"
    SKIP_SELECTOR = "skip-selector"
    SKIP_MISSING_SELECTOR = "skip-missing-selector"
    UPDATE_HISTORY = "update-history"


# Decisions after which the same snapshot goes through the pipeline again.
RETRY_DECISIONS = {
    Decision.RETRY,
    Decision.SKIP_CONTENT,
    Decision.SKIP_SELECTOR,
    Decision.SKIP_MISSING_SELECTOR,
    Decision.UPDATE_HISTORY,
}


@dataclass
class ReviewRequest:
    """Everything a reviewer may want to look at before deciding.

    Attributes:
        message: Question to ask
        snapshot: Snapshot under review (last page for multi-page documents)
        declaration: Declaration used for extraction, when one was resolved
        version: Extracted text, None when extraction failed
        classification: Deduplication result for the version
        error: Extraction error message for failures
        review_path: Copy of the snapshot saved for review
        fingerprint: Whole-page text of the snapshot
    """

    message: str
    snapshot: Snapshot
    declaration: DocumentDeclaration | None = None
    version: str | None = None
    classification: Classification | None = None
    error: str | None = None
    review_path: Path | None = None
    fingerprint: str = ""


@dataclass
class Adjudication:
    decision: Decision
    selector: str | None = None
    value: str | None = None


class Reviewer(Protocol):
    def review(self, request: ReviewRequest) -> Adjudication: ...


class AutoReviewer:
    """Non-interactive reviewer: keeps every version, bypasses every failure."""

    def review(self, request: ReviewRequest) -> Adjudication:
        if request.version is not None:
            return Adjudication(Decision.KEEP)
        return Adjudication(Decision.BYPASS)


_LABELS = {
    Decision.KEEP: "Keep: Version is fine",
    Decision.BYPASS: "Bypass: Decide later",
    Decision.RETRY: "Retry: Declaration updated",
    Decision.SKIP: "Skip: Content of this snapshot is unprocessable",
    Decision.SKIP_CONTENT: "Define content: Skip when content within selector is found",
    Decision.SKIP_SELECTOR: "Define selector: Skip when this selector is found",
    Decision.SKIP_MISSING_SELECTOR: "Define selector: Skip when this selector is NOT found",
    Decision.UPDATE_HISTORY: "Update: Add entry in history (declaration should still be fixed)",
}
_SHOW_DATE = "show-date"
_SHOW_DATA = "show-data"
_SHOW_SNAPSHOT = "show-snapshot"
_SHOW_DECLARATION = "show-declaration"
_SHOW_LABELS = {
    _SHOW_DATE: "Show: Snapshot date",
    _SHOW_DATA: "Show: Snapshot data",
    _SHOW_SNAPSHOT: "Show: HTML snapshot",
    _SHOW_DECLARATION: "Show: Current declaration used",
}


class ConsoleReviewer:
    """Interactive reviewer driven by rich prompts.

    Attributes:
        console: Rich console used for display and prompts
        snapshot_url_template: Optional URL template, formatted with ``{id}``
    """

    def __init__(self, console: Console | None = None, snapshot_url_template: str | None = None):
        self.console = console or Console()
        self.snapshot_url_template = snapshot_url_template

    def review(self, request: ReviewRequest) -> Adjudication:
        decisions = [decision for decision in Decision if decision is not Decision.KEEP or request.version is not None]
        choices = [decision.value for decision in decisions] + list(_SHOW_LABELS)

        classification = request.classification
        if request.error:
            self.console.print(f"[red]{request.error}[/red]")
        elif classification is not None and classification.diff:
            self.console.print(Syntax(classification.diff, "diff"))
            if classification.similarity is not None:
                self.console.print(f"Similarity with previous version: {classification.similarity:.1f}%")
        elif request.version is not None:
            self.console.print(request.version, markup=False)

        while True:
            self.console.print(Rule(request.message))
            for decision in decisions:
                self.console.print(f"  [bold]{decision.value}[/bold]  {_LABELS[decision]}")
            for key, label in _SHOW_LABELS.items():
                self.console.print(f"  [dim]{key}[/dim]  {label}")

            answer = Prompt.ask("Decision", choices=choices, show_choices=False, console=self.console)
            if answer in _SHOW_LABELS:
                self._show(answer, request)
                continue

            decision = Decision(answer)
            if decision is Decision.SKIP_CONTENT:
                selector = Prompt.ask("CSS selector content will be selected from", console=self.console)
                value = Prompt.ask(
                    "innerHTML which, if the same markup as the content of the selector above "
                    "(tags and entities are compared once parsed), will have the snapshot skipped",
                    console=self.console,
                )
                return Adjudication(decision, selector=selector, value=value)
            if decision is Decision.SKIP_SELECTOR:
                selector = Prompt.ask("CSS selector which, if present in the snapshot, will have it skipped", console=self.console)
                return Adjudication(decision, selector=selector)
            if decision is Decision.SKIP_MISSING_SELECTOR:
                selector = Prompt.ask("CSS selector which, if missing from the snapshot, will have it skipped", console=self.console)
                return Adjudication(decision, selector=selector)
            return Adjudication(decision)

    def _show(self, what: str, request: ReviewRequest) -> None:
        snapshot = request.snapshot
        if what == _SHOW_DATE:
            self.console.print(format_iso8601(snapshot.fetch_date))
        elif what == _SHOW_DATA:
            self.console.print(
                {
                    "id": snapshot.id,
                    "serviceId": snapshot.service_id,
                    "documentType": snapshot.document_type,
                    "pageId": snapshot.page_id,
                    "fetchDate": format_iso8601(snapshot.fetch_date),
                    "mimeType": snapshot.mime_type,
                }
            )
        elif what == _SHOW_SNAPSHOT:
            self.console.print(Rule())
            self.console.print(request.fingerprint, style="cyan", markup=False)
            self.console.print(Rule())
            if request.review_path is not None:
                self.console.print(f"- Open it locally: {request.review_path}")
            if self.snapshot_url_template:
                self.console.print(f"- Or see it online: {self.snapshot_url_template.format(id=snapshot.id)}")
        elif what == _SHOW_DECLARATION and request.declaration is not None:
            payload = json.dumps(declaration_to_json(request.declaration), indent=2, ensure_ascii=False)
            self.console.print(Syntax(payload, "json"))
        Confirm.ask("Continue", default=True, console=self.console)
