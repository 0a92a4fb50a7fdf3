"""Tests for the payload factory: generated payloads must pass the validator.

Every factory function (make_user, make_enterprise_user, make_group,
make_patch) should produce payloads that are valid against the default
registry, and unique suffixes should actually be unique across calls.
"""

import pytest

from scim_steward.payload_factory import (
    make_enterprise_user,
    make_group,
    make_patch,
    make_user,
    update_user_display_name,
)
from scim_steward.validator import ResourceValidator, validate_patch_request


@pytest.fixture
def validator():
    return ResourceValidator()


def test_make_user_is_valid(validator):
    result = validator.validate(make_user())
    assert result.is_valid, f"Generated user should be valid: {result.errors}"


def test_make_user_unique_values():
    a = make_user()
    b = make_user()
    assert a["userName"] != b["userName"]


def test_make_user_extra():
    assert make_user({"title": "CTO"})["title"] == "CTO"


def test_make_enterprise_user_is_valid(validator):
    payload = make_enterprise_user()
    result = validator.validate(payload)
    assert result.is_valid, f"Generated enterprise user should be valid: {result.errors}"
    assert len(payload["schemas"]) == 2


def test_make_group_is_valid(validator):
    result = validator.validate(make_group())
    assert result.is_valid, f"Generated group should be valid: {result.errors}"


def test_make_group_with_members(validator):
    payload = make_group(members=[{"value": "user-id-123"}])
    result = validator.validate(payload)
    assert result.is_valid, f"Generated group with members should be valid: {result.errors}"
    assert len(payload["members"]) == 1


def test_make_patch_is_valid():
    payload = make_patch([
        {"op": "replace", "path": "active", "value": False},
    ])
    result = validate_patch_request(payload)
    assert result.is_valid, f"Generated patch should be valid: {result.errors}"


def test_update_user_display_name():
    original = make_user()
    updated = update_user_display_name(original, "New Name")
    assert updated["displayName"] == "New Name"
    assert original["displayName"] != "New Name"
    updated["emails"].append({"value": "x@example.com"})
    assert len(original["emails"]) == 1
