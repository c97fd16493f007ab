"""
Configuration management using YAML files and dataclasses.

This module defines all configuration dataclasses and provides loading
from YAML files with defaults. Configuration sections:
- PathsConfig: Declarations, rules, snapshots and output locations
- ExtractConfig: Main-content extractor chain and page joining
- LoggingConfig: Logging behavior
- ReviewConfig: Interactive review settings
- RunConfig: Checkpointing of regeneration runs
- AppConfig: Root configuration container
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class PathsConfig:
    """Locations of the archive inputs and outputs.

    Attributes:
        declarations_dir: Directory of service declarations and history files
        rules_dir: Directory of the rule file; defaults to ``<declarations_dir>/../cleaning``
        rules_filename: Name of the rule file
        snapshots_dir: Root of the snapshot repository
        output_dir: Root for regenerated versions and review copies
    """

    declarations_dir: str = "declarations"
    rules_dir: str | None = None
    rules_filename: str = "index.json"
    snapshots_dir: str = "snapshots"
    output_dir: str = "output"

    @property
    def rules_path(self) -> Path:
        if self.rules_dir:
            return Path(self.rules_dir)
        return Path(self.declarations_dir).parent / "cleaning"


@dataclass
class ExtractConfig:
    """Configuration for content extraction.

    Attributes:
        primary: Extractor used when a page declaration has no ``select``
            ("trafilatura", "readability", or "bs4")
        fallback: Extractors to try if primary yields nothing
        page_separator: Text inserted between pages of a multi-page document
    """

    primary: str = "trafilatura"
    fallback: list[str] = field(default_factory=lambda: ["readability", "bs4"])
    page_separator: str = "\n\n"


@dataclass
class LoggingConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level ("DEBUG", "INFO", "WARNING", "ERROR")
        console: Whether to log to console
        file: Whether to log to file
        format: Log file format ("jsonl" or "plain")
        filename: Name of the log file in the output directory
    """

    level: str = "INFO"
    console: bool = True
    file: bool = True
    format: str = "jsonl"
    filename: str = "run.jsonl"


@dataclass
class ReviewConfig:
    """Configuration for interactive review.

    Attributes:
        snapshot_url_template: URL of a snapshot online, formatted with ``{id}``
        diff_context_lines: Context lines shown around changes
    """

    snapshot_url_template: str | None = None
    diff_context_lines: int = 3


@dataclass
class RunConfig:
    """Configuration for regeneration runs.

    Attributes:
        checkpoint_interval: Snapshots processed between two writes of the
            progress checkpoint; accepted versions always write it
    """

    checkpoint_interval: int = 20


@dataclass
class AppConfig:
    """Root configuration container aggregating all config sections."""

    paths: PathsConfig = field(default_factory=PathsConfig)
    extract: ExtractConfig = field(default_factory=ExtractConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    review: ReviewConfig = field(default_factory=ReviewConfig)
    run: RunConfig = field(default_factory=RunConfig)


def load_config(path: str | None) -> AppConfig:
    """Load configuration from a YAML file with defaults."""
    if not path or not Path(path).exists():
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a YAML mapping: {path}")
    return _merge_config(AppConfig(), raw)


def _merge_config(base: AppConfig, raw: dict[str, Any]) -> AppConfig:
    """Merge raw YAML config into base AppConfig."""
    data = _asdict(base)
    for key, value in raw.items():
        if key not in data:
            continue
        if isinstance(value, dict) and isinstance(data[key], dict):
            data[key].update(value)
        else:
            data[key] = value
    return _fromdict(data)


def _asdict(cfg: AppConfig) -> dict[str, Any]:
    """Convert AppConfig to nested dictionary."""
    return {
        "paths": {
            "declarations_dir": cfg.paths.declarations_dir,
            "rules_dir": cfg.paths.rules_dir,
            "rules_filename": cfg.paths.rules_filename,
            "snapshots_dir": cfg.paths.snapshots_dir,
            "output_dir": cfg.paths.output_dir,
        },
        "extract": {
            "primary": cfg.extract.primary,
            "fallback": list(cfg.extract.fallback),
            "page_separator": cfg.extract.page_separator,
        },
        "logging": {
            "level": cfg.logging.level,
            "console": cfg.logging.console,
            "file": cfg.logging.file,
            "format": cfg.logging.format,
            "filename": cfg.logging.filename,
        },
        "review": {
            "snapshot_url_template": cfg.review.snapshot_url_template,
            "diff_context_lines": cfg.review.diff_context_lines,
        },
        "run": {
            "checkpoint_interval": cfg.run.checkpoint_interval,
        },
    }


def _fromdict(data: dict[str, Any]) -> AppConfig:
    """Reconstruct AppConfig from nested dictionary."""
    return AppConfig(
        paths=PathsConfig(**data["paths"]),
        extract=ExtractConfig(**data["extract"]),
        logging=LoggingConfig(**data["logging"]),
        review=ReviewConfig(**data["review"]),
        run=RunConfig(**data["run"]),
    )
