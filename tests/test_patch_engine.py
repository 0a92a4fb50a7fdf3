"""Tests for applying PATCH operations."""

import pytest

from scim_steward.errors import (
    InvalidPatchOperation,
    InvalidSchemaDeclaration,
    MutabilityViolation,
    NoTarget,
    UnknownAttributePath,
)
from scim_steward.patch import PatchEngine
from scim_steward.resource import PatchOperation, Resource
from scim_steward.schemas import ENTERPRISE_USER_SCHEMA_URN, USER_SCHEMA_URN
from tests.conftest import CORE, EXTENSION


@pytest.fixture
def engine(registry):
    return PatchEngine(registry)


def _user(**attributes):
    schemas = attributes.pop("schemas", [CORE])
    return Resource("User", schemas, dict({"displayName": "Ann"}, **attributes), id="u1")


def _op(op, path=None, value=None):
    return PatchOperation(op, path, value)


def test_empty_patch_returns_equal_copy(engine):
    resource = _user(tags=["a"])
    patched = engine.apply_patch(resource, [])
    assert patched == resource
    assert patched is not resource


def test_replace_display_name(engine):
    resource = _user()
    patched = engine.apply_patch(resource, [_op("replace", "displayName", "B")])
    assert patched.get("displayName") == "B"
    assert resource.get("displayName") == "Ann"


def test_replace_is_idempotent(engine):
    operations = [_op("replace", "tags", ["x", "y"]), _op("replace", "address", {"city": "Oslo"})]
    once = engine.apply_patch(_user(tags=["a"], address={"street": "Main"}), operations)
    twice = engine.apply_patch(once, operations)
    assert once == twice
    assert once.get("tags") == ["x", "y"]
    assert once.get("address") == {"city": "Oslo"}


def test_add_to_multi_valued_is_cumulative_and_ordered(engine):
    patched = engine.apply_patch(_user(tags=["a"]), [
        _op("add", "tags", ["b", "c"]),
        _op("add", "tags", "d"),
        _op("add", "tags", ["a"]),
    ])
    assert patched.get("tags") == ["a", "b", "c", "d"]


def test_add_creates_missing_attribute(engine):
    patched = engine.apply_patch(_user(), [_op("add", "tags", ["a"])])
    assert patched.get("tags") == ["a"]


def test_add_new_primary_demotes_existing(engine):
    patched = engine.apply_patch(_user(emails=[{"value": "a@x", "primary": True}]), [
        _op("add", "emails", [{"value": "b@x", "primary": True}]),
    ])
    assert patched.get("emails") == [{"value": "a@x", "primary": False}, {"value": "b@x", "primary": True}]


def test_add_merges_complex_sub_attributes(engine):
    patched = engine.apply_patch(_user(address={"street": "Main"}), [_op("add", "address", {"city": "Oslo"})])
    assert patched.get("address") == {"street": "Main", "city": "Oslo"}


def test_add_sub_attribute_path(engine):
    patched = engine.apply_patch(_user(), [_op("add", "address.city", "Oslo")])
    assert patched.get("address") == {"city": "Oslo"}


def test_remove_without_path_fails_and_leaves_input(engine):
    resource = _user(tags=["a"])
    before = resource.to_dict()
    with pytest.raises(InvalidPatchOperation):
        engine.apply_patch(resource, [_op("remove")])
    assert resource.to_dict() == before


def test_failed_operation_discards_earlier_ones(engine):
    resource = _user()
    with pytest.raises(UnknownAttributePath):
        engine.apply_patch(resource, [_op("replace", "displayName", "B"), _op("add", "shoeSize", 42)])
    assert resource.get("displayName") == "Ann"


def test_remove_attribute(engine):
    patched = engine.apply_patch(_user(tags=["a"]), [_op("remove", "tags")])
    assert patched.get("tags") is None


def test_filtered_replace_of_sub_attribute(engine):
    resource = _user(emails=[{"value": "a@x", "type": "work"}, {"value": "h@x", "type": "home"}])
    patched = engine.apply_patch(resource, [_op("replace", 'emails[type eq "WORK"].value', "new@x")])
    assert patched.get("emails") == [{"value": "new@x", "type": "work"}, {"value": "h@x", "type": "home"}]


def test_filtered_replace_of_whole_element(engine):
    resource = _user(emails=[{"value": "a@x", "type": "work"}])
    patched = engine.apply_patch(resource, [_op("replace", 'emails[type eq "work"]', {"value": "b@x"})])
    assert patched.get("emails") == [{"value": "b@x"}]


def test_filtered_add_without_match_is_no_target(engine):
    with pytest.raises(NoTarget) as excinfo:
        engine.apply_patch(_user(emails=[{"value": "a@x", "type": "home"}]),
                           [_op("add", 'emails[type eq "work"].value', "b@x")])
    assert excinfo.value.scim_type == "noTarget"


def test_filtered_remove_without_match_is_noop(engine):
    resource = _user(emails=[{"value": "a@x", "type": "home"}])
    patched = engine.apply_patch(resource, [_op("remove", 'emails[type eq "work"]')])
    assert patched == resource


def test_filtered_remove_drops_emptied_attribute(engine):
    patched = engine.apply_patch(_user(emails=[{"value": "a@x", "type": "work"}]),
                                 [_op("remove", 'emails[type eq "work"]')])
    assert patched.get("emails") is None


def test_remove_by_value_from_multi_valued(engine):
    resource = _user(emails=[{"value": "a@x", "type": "work"}, {"value": "b@x"}])
    patched = engine.apply_patch(resource, [_op("remove", "emails", [{"value": "a@x"}])])
    assert patched.get("emails") == [{"value": "b@x"}]


def test_sub_attribute_on_empty_multi_valued_is_no_target(engine):
    with pytest.raises(NoTarget):
        engine.apply_patch(_user(), [_op("add", "emails.type", "work")])


def test_filter_on_single_valued_attribute(engine):
    with pytest.raises(InvalidPatchOperation):
        engine.apply_patch(_user(), [_op("replace", 'displayName[value eq "x"]', "y")])


def test_read_only_target(engine):
    with pytest.raises(MutabilityViolation) as excinfo:
        engine.apply_patch(_user(), [_op("add", "groups", [{"value": "g1"}])])
    assert excinfo.value.scim_type == "mutability"


def test_unknown_sub_attribute(engine):
    with pytest.raises(UnknownAttributePath):
        engine.apply_patch(_user(), [_op("add", "address.zip", "0150")])


def test_patch_on_undeclared_extension(engine):
    with pytest.raises(UnknownAttributePath):
        engine.apply_patch(_user(), [_op("replace", f"{EXTENSION}:department", "R&D")])


def test_patch_on_declared_extension(engine):
    resource = _user(schemas=[CORE, EXTENSION])
    patched = engine.apply_patch(resource, [
        _op("replace", f"{EXTENSION}:department", "R&D"),
        _op("add", "level", 3),
    ])
    assert patched.get(EXTENSION) == {"department": "R&D", "level": 3}


def test_removing_last_extension_attribute_drops_object(engine):
    resource = _user(schemas=[CORE, EXTENSION], **{EXTENSION: {"department": "R&D"}})
    patched = engine.apply_patch(resource, [_op("remove", "department")])
    assert patched.get(EXTENSION) is None
    assert patched.schemas == [CORE, EXTENSION]


def test_remove_whole_extension(engine):
    resource = _user(schemas=[CORE, EXTENSION], **{EXTENSION: {"department": "R&D"}})
    patched = engine.apply_patch(resource, [_op("remove", EXTENSION)])
    assert patched.get(EXTENSION) is None
    assert patched.schemas == [CORE]


def test_replace_whole_extension(engine):
    resource = _user(schemas=[CORE, EXTENSION], **{EXTENSION: {"department": "R&D", "level": 1}})
    patched = engine.apply_patch(resource, [_op("replace", EXTENSION, {"level": 2})])
    assert patched.get(EXTENSION) == {"level": 2}


def test_remove_core_schema(engine):
    with pytest.raises(InvalidPatchOperation):
        engine.apply_patch(_user(), [_op("remove", CORE)])


def test_pathless_add_declares_extension(engine):
    patched = engine.apply_patch(_user(), [_op("add", value={
        "schemas": [EXTENSION],
        EXTENSION: {"department": "R&D"},
        "displayName": "Zed",
    })])
    assert patched.schemas == [CORE, EXTENSION]
    assert patched.get(EXTENSION) == {"department": "R&D"}
    assert patched.get("displayName") == "Zed"


def test_pathless_add_requires_object(engine):
    with pytest.raises(InvalidPatchOperation):
        engine.apply_patch(_user(), [_op("add", value="Zed")])


def test_malformed_schemas_on_input(engine):
    resource = Resource.from_dict({"schemas": CORE, "displayName": "Ann"}, "User")
    with pytest.raises(InvalidSchemaDeclaration):
        engine.apply_patch(resource, [])


def test_accepts_json_and_operation_dicts(scim_registry):
    engine = PatchEngine(scim_registry)
    patched = engine.apply_patch(
        {"schemas": [USER_SCHEMA_URN, ENTERPRISE_USER_SCHEMA_URN], "id": "u1", "userName": "ann",
         ENTERPRISE_USER_SCHEMA_URN: {"manager": {"value": "boss"}}},
        [{"op": "replace", "path": f"{ENTERPRISE_USER_SCHEMA_URN}:manager.value", "value": "chief"},
         {"op": "add", "path": "name.givenName", "value": "Ann"}],
    )
    assert patched.resource_type == "User"
    assert patched.get(ENTERPRISE_USER_SCHEMA_URN) == {"manager": {"value": "chief"}}
    assert patched.get("name") == {"givenName": "Ann"}


def test_meta_is_read_only(scim_registry):
    with pytest.raises(MutabilityViolation):
        PatchEngine(scim_registry).apply_patch(
            {"schemas": [USER_SCHEMA_URN], "userName": "ann"},
            [_op("replace", "meta.created", "2000-01-01T00:00:00Z")],
        )


@pytest.mark.parametrize("kind", ["add", "replace"])
def test_add_and_replace_require_a_value(engine, kind):
    resource = _user(tags=["a"])
    with pytest.raises(InvalidPatchOperation):
        engine.apply_patch(resource, [_op(kind, "tags")])
    assert resource.get("tags") == ["a"]


def test_add_skips_null_items(engine):
    patched = engine.apply_patch(_user(tags=["a"]), [_op("add", "tags", [None, "b"])])
    assert patched.get("tags") == ["a", "b"]


def test_adding_existing_primary_element_changes_nothing(engine):
    emails = [{"value": "a@x", "type": "work", "primary": True}, {"value": "h@x", "type": "home"}]
    resource = _user(emails=emails)
    patched = engine.apply_patch(resource, [_op("add", "emails", [dict(emails[0])])])
    assert patched.get("emails") == emails
    assert patched == resource
