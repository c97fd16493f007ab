"""Tests for YAML configuration loading and structured logging."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from versions_regen.config import AppConfig, LoggingConfig, load_config
from versions_regen.logging_utils import log_event, setup_logging


def test_missing_config_returns_defaults(tmp_path):
    cfg = load_config(str(tmp_path / "missing.yaml"))

    assert cfg == AppConfig()
    assert cfg.paths.rules_path == Path("cleaning")
    assert cfg.extract.page_separator == "\n\n"


def test_yaml_overrides_merge_over_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "paths:\n"
        "  declarations_dir: archive/declarations\n"
        "  output_dir: out\n"
        "extract:\n"
        "  fallback: [bs4]\n"
        "run:\n"
        "  checkpoint_interval: 5\n"
        "unknown_section:\n"
        "  ignored: true\n",
        encoding="utf-8",
    )

    cfg = load_config(str(path))

    assert cfg.paths.output_dir == "out"
    assert cfg.paths.snapshots_dir == "snapshots"
    assert cfg.paths.rules_path == Path("archive/cleaning")
    assert cfg.extract.fallback == ["bs4"]
    assert cfg.extract.primary == "trafilatura"
    assert cfg.run.checkpoint_interval == 5
    assert cfg.review.diff_context_lines == 3


def test_explicit_rules_dir(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("paths:\n  rules_dir: rules\n", encoding="utf-8")

    assert load_config(str(path)).paths.rules_path == Path("rules")


def test_non_mapping_config_is_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(str(path))


def test_log_event_writes_jsonl_fields(tmp_path):
    logger = setup_logging(LoggingConfig(console=False), tmp_path)

    log_event(logger, "Version accepted", event="version_accepted", snapshot_id="a1", index=3)
    for handler in logger.handlers:
        handler.flush()

    payload = json.loads((tmp_path / "run.jsonl").read_text(encoding="utf-8").splitlines()[-1])
    assert payload["message"] == "Version accepted"
    assert payload["event"] == "version_accepted"
    assert payload["snapshot_id"] == "a1"
    assert payload["index"] == 3
    assert payload["level"] == "INFO"


def test_plain_log_format_and_level(tmp_path):
    logger = setup_logging(LoggingConfig(console=False, format="plain", level="WARNING"), tmp_path)

    log_event(logger, "Hidden", level=logging.INFO, event="hidden")
    log_event(logger, "Shown", level=logging.WARNING, event="shown")
    for handler in logger.handlers:
        handler.flush()

    content = (tmp_path / "run.jsonl").read_text(encoding="utf-8")
    assert "Hidden" not in content
    assert "WARNING Shown" in content


def test_log_event_without_logger_is_noop():
    log_event(None, "Nothing", event="noop")
