"""Shared fixtures: a small hand-built registry next to the RFC 7643 one."""

from datetime import datetime, timezone

import pytest

from scim_steward.registry import SchemaRegistry, default_registry
from scim_steward.schemas import ResourceSchema

CORE = "urn:test:schemas:core:User"
EXTENSION = "urn:test:schemas:extension:Badge"

CORE_SCHEMA = {
    "id": CORE,
    "name": "User",
    "attributes": [
        {"name": "id", "mutability": "readOnly", "returned": "always"},
        {"name": "displayName", "required": True},
        {"name": "employeeId", "mutability": "immutable"},
        {"name": "secret", "mutability": "writeOnly", "returned": "never"},
        {"name": "tags", "multiValued": True},
        {"name": "emails", "type": "complex", "multiValued": True, "subAttributes": [
            {"name": "value", "required": True},
            {"name": "type"},
            {"name": "primary", "type": "boolean"},
        ]},
        {"name": "address", "type": "complex", "subAttributes": [
            {"name": "street"},
            {"name": "city"},
        ]},
        {"name": "groups", "type": "complex", "multiValued": True, "mutability": "readOnly", "subAttributes": [
            {"name": "value"},
        ]},
        {"name": "meta", "type": "complex", "mutability": "readOnly", "subAttributes": [
            {"name": "created", "type": "dateTime"},
        ]},
    ],
}

EXTENSION_SCHEMA = {
    "id": EXTENSION,
    "name": "Badge",
    "attributes": [
        {"name": "department"},
        {"name": "level", "type": "integer"},
        {"name": "issuedBy", "mutability": "readOnly"},
    ],
}


def make_registry(bind_extension=True, required=False) -> SchemaRegistry:
    registry = SchemaRegistry()
    registry.register(ResourceSchema.from_dict(CORE_SCHEMA))
    registry.register(ResourceSchema.from_dict(EXTENSION_SCHEMA))
    registry.register_resource_type("User", CORE, "/Users")
    if bind_extension:
        registry.bind_extension("User", EXTENSION, required=required)
    return registry


class FixedClock:
    """Returns a settable instant; ``advance`` moves it forward."""

    def __init__(self, when=datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = when

    def __call__(self):
        return self.now

    def advance(self, delta):
        self.now = self.now + delta


@pytest.fixture
def registry():
    return make_registry()


@pytest.fixture
def scim_registry():
    return default_registry()


@pytest.fixture
def clock():
    return FixedClock()
