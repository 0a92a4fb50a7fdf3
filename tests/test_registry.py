"""Tests for the schema registry."""

import threading

import pytest

from scim_steward.errors import DuplicateSchemaError, InvalidSchemaDeclaration, UnknownSchemaError
from scim_steward.registry import SchemaRegistry, default_registry
from scim_steward.schemas import (
    ENTERPRISE_USER_SCHEMA_URN,
    GROUP_SCHEMA_URN,
    USER_SCHEMA_URN,
    ExtensionBinding,
    ResourceSchema,
)
from tests.conftest import CORE, EXTENSION, make_registry


class StaticCatalog:
    def __init__(self, entries):
        self.entries = entries

    def extensions(self, resource_type):
        return self.entries.get(resource_type, [])


def test_default_registry_contents():
    registry = default_registry()
    assert set(registry.resource_types()) == {"User", "Group"}
    assert registry.core_schema_for("User").id == USER_SCHEMA_URN
    assert registry.core_schema_for("Group").id == GROUP_SCHEMA_URN
    assert registry.extensions_for("User") == (ExtensionBinding("User", ENTERPRISE_USER_SCHEMA_URN),)
    assert registry.extensions_for("Group") == ()


def test_lookup_is_case_insensitive():
    registry = default_registry()
    assert registry.lookup(USER_SCHEMA_URN.upper()).id == USER_SCHEMA_URN


def test_lookup_unknown_raises():
    with pytest.raises(UnknownSchemaError):
        default_registry().lookup("urn:example:nothing")
    assert default_registry().get("urn:example:nothing") is None


def test_register_duplicate_raises():
    registry = make_registry()
    with pytest.raises(DuplicateSchemaError):
        registry.register(ResourceSchema(id=CORE))


def test_bind_unknown_schema_raises():
    registry = make_registry(bind_extension=False)
    with pytest.raises(UnknownSchemaError):
        registry.bind_extension("User", "urn:example:missing")
    with pytest.raises(UnknownSchemaError):
        registry.bind_extension("Device", EXTENSION)


def test_core_schema_cannot_extend_its_own_type():
    registry = make_registry(bind_extension=False)
    with pytest.raises(InvalidSchemaDeclaration):
        registry.bind_extension("User", CORE)


def test_rebinding_replaces_requiredness():
    registry = make_registry()
    registry.bind_extension("User", EXTENSION, required=True)
    assert registry.extensions_for("User") == (ExtensionBinding("User", EXTENSION, True),)


def test_schema_uris_longest_first():
    uris = default_registry().schema_uris()
    assert list(uris) == sorted(uris, key=len, reverse=True)


def test_resource_type_for_schemas():
    registry = default_registry()
    assert registry.resource_type_for_schemas([ENTERPRISE_USER_SCHEMA_URN, USER_SCHEMA_URN]) == "User"
    assert registry.resource_type_for_schemas([GROUP_SCHEMA_URN]) == "Group"
    assert registry.resource_type_for_schemas(["urn:x"]) is None


def test_load_catalog_registers_and_binds():
    registry = make_registry(bind_extension=False)
    document = {"id": "urn:test:schemas:extension:Cost", "attributes": [{"name": "center"}]}
    registry.load_catalog(StaticCatalog({"User": [EXTENSION, (document, True)]}))
    bindings = registry.extensions_for("User")
    assert [b.schema_uri for b in bindings] == [EXTENSION, "urn:test:schemas:extension:Cost"]
    assert [b.required for b in bindings] == [False, True]
    assert registry.lookup("urn:test:schemas:extension:Cost").attribute("center") is not None


def test_load_catalog_replaces_bindings():
    registry = make_registry()
    registry.load_catalog(StaticCatalog({}))
    assert registry.extensions_for("User") == ()
    # The schema itself stays registered
    assert registry.get(EXTENSION) is not None


def test_failed_catalog_load_leaves_registry_untouched():
    registry = make_registry()
    before = registry.extensions_for("User")
    with pytest.raises(UnknownSchemaError):
        registry.load_catalog(StaticCatalog({"User": ["urn:example:missing"]}))
    assert registry.extensions_for("User") == before


def test_catalog_conflicting_definition():
    registry = make_registry()
    with pytest.raises(DuplicateSchemaError):
        registry.load_catalog(StaticCatalog({"User": [{"id": EXTENSION, "attributes": []}]}))


def test_readers_see_consistent_snapshots():
    registry = make_registry(bind_extension=False)
    seen = []
    stop = threading.Event()

    def reader():
        while not stop.is_set():
            bindings = registry.extensions_for("User")
            seen.append(all(registry.get(b.schema_uri) is not None for b in bindings))

    threads = [threading.Thread(target=reader) for _ in range(4)]
    for t in threads:
        t.start()
    for i in range(50):
        uri = f"urn:test:schemas:extension:X{i}"
        registry.register(ResourceSchema(id=uri))
        registry.bind_extension("User", uri)
    stop.set()
    for t in threads:
        t.join()
    assert all(seen)
    assert len(registry.extensions_for("User")) == 50


def test_empty_registry():
    registry = SchemaRegistry()
    assert registry.resource_types() == ()
    with pytest.raises(UnknownSchemaError):
        registry.core_schema_for("User")


@pytest.mark.parametrize("attribute, fragment", [
    ({"name": "level", "type": "text"}, "unknown type"),
    ({"name": "level", "mutability": "sometimes"}, "unknown mutability"),
    ({"name": "badge", "type": "complex", "subAttributes": [{"name": "n", "type": "float"}]}, "unknown type"),
])
def test_schema_rejects_unknown_characteristics(attribute, fragment):
    with pytest.raises(ValueError, match=fragment):
        ResourceSchema.from_dict({"id": "urn:test:schemas:core:Badge", "attributes": [attribute]})
