"""Tests for declaration loading, date resolution and history updates."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from versions_regen.declarations import DeclarationSet, declaration_to_json
from versions_regen.errors import DeclarationAbsent


def _write(path, payload):
    path.write_text(json.dumps(payload), encoding="utf-8")


def _declarations(tmp_path, documents, history=None):
    _write(tmp_path / "svc.json", {"name": "Service", "documents": documents})
    if history is not None:
        _write(tmp_path / "svc.history.json", history)
    return DeclarationSet(tmp_path)


def _date(year, month=1, day=1):
    return datetime(year, month, day, tzinfo=timezone.utc)


def test_resolve_current_single_page(tmp_path):
    declarations = _declarations(tmp_path, {"tos": {"fetch": "https://example.com/tos", "select": "main"}})

    declaration = declarations.resolve("svc", "tos", _date(2023))

    assert declaration.service_name == "Service"
    assert declaration.is_multi_page is False
    assert declaration.pages[0].location == "https://example.com/tos"
    assert declaration.pages[0].select == "main"


def test_resolve_combined_pages_keep_order(tmp_path):
    declarations = _declarations(
        tmp_path,
        {
            "tos": {
                "combine": [
                    {"id": "general", "fetch": "https://example.com/1", "select": "main"},
                    {"id": "payments", "fetch": "https://example.com/2", "select": "main"},
                ]
            }
        },
    )

    declaration = declarations.resolve("svc", "tos", _date(2023))

    assert declaration.page_ids == ["general", "payments"]


def test_resolve_uses_history_until_valid_until(tmp_path):
    declarations = _declarations(
        tmp_path,
        {"tos": {"fetch": "https://example.com/tos", "select": "main"}},
        history={
            "tos": [
                {"fetch": "https://example.com/tos", "select": "#older", "validUntil": "2021-01-01T00:00:00Z"},
                {"fetch": "https://example.com/tos", "select": "#oldest", "validUntil": "2020-01-01T00:00:00Z"},
            ]
        },
    )

    assert declarations.resolve("svc", "tos", _date(2019)).pages[0].select == "#oldest"
    assert declarations.resolve("svc", "tos", _date(2020)).pages[0].select == "#oldest"
    assert declarations.resolve("svc", "tos", _date(2020, 6)).pages[0].select == "#older"
    assert declarations.resolve("svc", "tos", _date(2022)).pages[0].select == "main"


def test_resolve_without_declaration_raises(tmp_path):
    declarations = _declarations(tmp_path, {"tos": {"fetch": "https://example.com/tos", "select": "main"}})

    with pytest.raises(DeclarationAbsent) as excinfo:
        declarations.resolve("svc", "privacy", _date(2023))

    assert excinfo.value.document_type == "privacy"


def test_update_history_appends_then_moves_valid_until(tmp_path):
    declarations = _declarations(tmp_path, {"tos": {"fetch": "https://example.com/tos", "select": "main"}})
    declaration = declarations.resolve("svc", "tos", _date(2023))

    path = declarations.update_history("svc", "tos", declaration, _date(2023))
    declarations.update_history("svc", "tos", declaration, _date(2023, 6))

    history = json.loads(path.read_text(encoding="utf-8"))
    assert history == {
        "tos": [{"fetch": "https://example.com/tos", "select": "main", "validUntil": "2023-06-01T00:00:00Z"}]
    }


def test_update_history_appends_different_declaration(tmp_path):
    declarations = _declarations(
        tmp_path,
        {"tos": {"fetch": "https://example.com/tos", "select": "main"}},
        history={"tos": [{"fetch": "https://example.com/tos", "select": "#old", "validUntil": "2020-01-01T00:00:00Z"}]},
    )
    declaration = declarations.resolve("svc", "tos", _date(2023))

    declarations.update_history("svc", "tos", declaration, _date(2022))

    history = json.loads((tmp_path / "svc.history.json").read_text(encoding="utf-8"))
    assert [entry["select"] for entry in history["tos"]] == ["#old", "main"]
    assert declarations.resolve("svc", "tos", _date(2021)).pages[0].select == "main"


def test_reload_picks_up_edits(tmp_path):
    declarations = _declarations(tmp_path, {"tos": {"fetch": "https://example.com/tos", "select": "main"}})
    _write(tmp_path / "svc.json", {"name": "Service", "documents": {"tos": {"fetch": "https://example.com/tos", "select": "article"}}})

    declarations.reload()

    assert declarations.resolve("svc", "tos", _date(2023)).pages[0].select == "article"


def test_document_types_include_history_only_documents(tmp_path):
    declarations = _declarations(
        tmp_path,
        {"tos": {"fetch": "https://example.com/tos", "select": "main"}},
        history={"privacy": [{"fetch": "https://example.com/privacy", "validUntil": "2020-01-01T00:00:00Z"}]},
    )

    assert declarations.document_types() == [("svc", "privacy"), ("svc", "tos")]


def test_declaration_to_json(tmp_path):
    declarations = _declarations(tmp_path, {"tos": {"fetch": "https://example.com/tos", "select": "main", "remove": ".ad"}})

    payload = declaration_to_json(declarations.resolve("svc", "tos", _date(2023)))

    assert payload == {
        "name": "Service",
        "documents": {"tos": {"fetch": "https://example.com/tos", "select": "main", "remove": ".ad"}},
    }
