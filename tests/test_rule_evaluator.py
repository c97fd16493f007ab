"""Tests for selector-based skip evaluation."""

from __future__ import annotations

from datetime import datetime, timezone

from versions_regen.core.evaluator import RuleEvaluator
from versions_regen.core.rules import SKIP_SELECTOR, DocumentRules, RuleStore
from versions_regen.core.types import Snapshot

PAGE = """
<html><body>
  <div class="banner">We are down for maintenance</div>
  <h1>Title</h1>
  <main><p>Terms</p></main>
</body></html>
"""


def _snapshot(content=PAGE, mime_type="text/html"):
    return Snapshot(
        id="s1",
        service_id="svc",
        document_type="tos",
        fetch_date=datetime(2023, 1, 1, tzinfo=timezone.utc),
        content=content,
        mime_type=mime_type,
    )


def test_no_rules_never_skips(tmp_path):
    evaluator = RuleEvaluator(RuleStore(tmp_path))

    decision = evaluator.should_skip(_snapshot(), rules=DocumentRules())

    assert decision.skip is False
    assert decision.reason is None


def test_selector_rule_beats_content_rule(tmp_path):
    evaluator = RuleEvaluator(RuleStore(tmp_path))
    rules = DocumentRules(skip_content={"h1": "Title"}, skip_selector=[".banner"])

    decision = evaluator.should_skip(_snapshot(), rules=rules)

    assert decision.skip is True
    assert decision.reason == 'its content matches a selector to skip: ".banner"'


def test_missing_selector_rule(tmp_path):
    evaluator = RuleEvaluator(RuleStore(tmp_path))
    rules = DocumentRules(skip_missing_selector=["main", "#terms"])

    decision = evaluator.should_skip(_snapshot(), rules=rules)

    assert decision.skip is True
    assert decision.reason == 'its content does not match a required selector: "#terms"'


def test_content_rule_requires_exact_inner_html(tmp_path):
    evaluator = RuleEvaluator(RuleStore(tmp_path))

    exact = evaluator.should_skip(_snapshot(), rules=DocumentRules(skip_content={"h1": "Title"}))
    partial = evaluator.should_skip(_snapshot(), rules=DocumentRules(skip_content={"h1": "Tit"}))

    assert exact.skip is True
    assert exact.reason == 'its content matches a content to skip: "h1": "Title"'
    assert partial.skip is False


def test_rules_ignored_for_non_html_snapshots(tmp_path):
    evaluator = RuleEvaluator(RuleStore(tmp_path))
    rules = DocumentRules(skip_missing_selector=["main"])

    decision = evaluator.should_skip(_snapshot(b"%PDF-1.4", "application/pdf"), rules=rules)

    assert decision.skip is False


def test_rules_read_from_store_when_not_given(tmp_path):
    store = RuleStore(tmp_path)
    store.update_document("*", "tos", SKIP_SELECTOR, ".banner")

    decision = RuleEvaluator(store).should_skip(_snapshot())

    assert decision.skip is True


def test_content_rule_matches_browser_serialized_markup(tmp_path):
    evaluator = RuleEvaluator(RuleStore(tmp_path))
    page = "<html><body><h1>Down<br>for&nbsp;maintenance</h1><main>Terms</main></body></html>"
    rules = DocumentRules(skip_content={"h1": "Down<br>for&nbsp;maintenance"})

    decision = evaluator.should_skip(_snapshot(page), rules=rules)

    assert decision.skip is True
