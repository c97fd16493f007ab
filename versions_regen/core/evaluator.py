"""
Rule-driven skip evaluation performed before extraction.

A snapshot is parsed at most once and every selector rule is checked against
that single tree, in a fixed priority order:
1. skipSelector: a selector that must not be present
2. skipMissingSelector: a selector that must be present
3. skipContent: a selector whose inner HTML must not equal a given value
"""

from __future__ import annotations

import logging

from bs4 import BeautifulSoup

from .rules import DocumentRules, RuleStore
from .types import PageDeclaration, SkipDecision, Snapshot

logger = logging.getLogger("versions_regen.evaluator")

_HTML_MIME_TYPES = {"text/html", "application/xhtml+xml"}


class RuleEvaluator:
    """Decides whether a snapshot should be skipped before extraction.

    Reads rules from the ``RuleStore`` but never writes them.
    """

    def __init__(self, rule_store: RuleStore):
        self.rule_store = rule_store

    def should_skip(
        self,
        snapshot: Snapshot,
        page_declaration: PageDeclaration | None = None,
        rules: DocumentRules | None = None,
    ) -> SkipDecision:
        """Evaluate the skip rules of the snapshot's document.

        Args:
            snapshot: Snapshot to evaluate
            page_declaration: Declaration of the page the snapshot belongs to;
                              carried for logging, selectors run on the whole page
            rules: Pre-resolved rules; looked up in the store when omitted

        Returns:
            SkipDecision with a display-ready reason when skipped
        """
        if rules is None:
            rules = self.rule_store.get_document_rules(snapshot.service_id, snapshot.document_type)

        if not rules.has_content_rules:
            return SkipDecision(skip=False)

        if snapshot.mime_type not in _HTML_MIME_TYPES:
            logger.debug("Selector rules ignored for %s content of %s", snapshot.mime_type, snapshot.id)
            return SkipDecision(skip=False)

        soup = BeautifulSoup(snapshot.content, "html.parser")
        if page_declaration is not None:
            logger.debug("Evaluating rules of %s against %s", snapshot.id, page_declaration.location)

        for selector in rules.skip_selector:
            if soup.select(selector):
                return SkipDecision(True, f'its content matches a selector to skip: "{selector}"')

        for selector in rules.skip_missing_selector:
            if not soup.select(selector):
                return SkipDecision(True, f'its content does not match a required selector: "{selector}"')

        for selector, value in rules.skip_content.items():
            element = soup.select_one(selector)
            if element is not None and element.decode_contents() == _serialize_fragment(value):
                return SkipDecision(True, f'its content matches a content to skip: "{selector}": "{value}"')

        return SkipDecision(skip=False)


def _serialize_fragment(html: str) -> str:
    """Render a configured fragment the way ``decode_contents`` renders parsed markup."""
    return BeautifulSoup(html, "html.parser").decode_contents()
