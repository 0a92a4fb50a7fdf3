"""Tests for the JSON file extension catalog."""

import json

import pytest

from scim_steward.catalog import JsonFileCatalog
from tests.conftest import EXTENSION, EXTENSION_SCHEMA, make_registry


def _catalog(tmp_path, data):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(data))
    return JsonFileCatalog(path)


def test_entries_and_wrappers(tmp_path):
    catalog = _catalog(tmp_path, {"User": [EXTENSION, {"schema": EXTENSION_SCHEMA, "required": True}]})
    entries = list(catalog.extensions("User"))
    assert entries[0] == EXTENSION
    assert entries[1] == (EXTENSION_SCHEMA, True)
    assert list(catalog.extensions("Group")) == []


def test_reload_sees_edits(tmp_path):
    registry = make_registry(bind_extension=False)
    catalog = _catalog(tmp_path, {"User": [{"schema": EXTENSION, "required": True}]})
    registry.load_catalog(catalog)
    assert registry.extensions_for("User")[0].required is True

    (tmp_path / "catalog.json").write_text(json.dumps({"User": []}))
    registry.load_catalog(catalog)
    assert registry.extensions_for("User") == ()


def test_file_must_be_object(tmp_path):
    catalog = _catalog(tmp_path, ["User"])
    with pytest.raises(ValueError):
        list(catalog.extensions("User"))


def test_schema_with_unknown_type_is_rejected(tmp_path):
    registry = make_registry(bind_extension=False)
    bad = {"id": "urn:test:schemas:extension:Badge", "attributes": [{"name": "level", "type": "text"}]}
    with pytest.raises(ValueError, match="unknown type 'text'"):
        registry.load_catalog(_catalog(tmp_path, {"User": [bad]}))
    assert registry.extensions_for("User") == ()
