"""SCIM 2.0 core and enterprise extension schemas (RFC 7643).

The raw schema documents below are the JSON representation served from a
``/Schemas`` endpoint.  ``ResourceSchema.from_dict`` turns them (or any
vendor extension document of the same shape) into immutable definitions
the registry hands out to concurrent validations.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

USER_SCHEMA_URN = "urn:ietf:params:scim:schemas:core:2.0:User"
GROUP_SCHEMA_URN = "urn:ietf:params:scim:schemas:core:2.0:Group"
ENTERPRISE_USER_SCHEMA_URN = "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"
PATCH_OP_URN = "urn:ietf:params:scim:api:messages:2.0:PatchOp"
ERROR_URN = "urn:ietf:params:scim:api:messages:2.0:Error"

# Data types from RFC 7643 §2.3
STRING = "string"
BOOLEAN = "boolean"
DECIMAL = "decimal"
INTEGER = "integer"
DATETIME = "dateTime"
REFERENCE = "reference"
BINARY = "binary"
COMPLEX = "complex"
DATA_TYPES = (STRING, BOOLEAN, DECIMAL, INTEGER, DATETIME, REFERENCE, BINARY, COMPLEX)

# Mutability values from RFC 7643 §2.2
READ_ONLY = "readOnly"
READ_WRITE = "readWrite"
IMMUTABLE = "immutable"
WRITE_ONLY = "writeOnly"
MUTABILITIES = (READ_ONLY, READ_WRITE, IMMUTABLE, WRITE_ONLY)

# Sub-attributes shared by the plural "value/display/type/primary" attributes
_PLURAL_SUB_ATTRIBUTES = [
    {"name": "value", "type": "string", "mutability": "readWrite", "returned": "default"},
    {"name": "display", "type": "string", "mutability": "readWrite", "returned": "default"},
    {"name": "type", "type": "string", "mutability": "readWrite", "returned": "default"},
    {"name": "primary", "type": "boolean", "mutability": "readWrite", "returned": "default"},
]

_META_ATTRIBUTE = {"name": "meta", "type": "complex", "mutability": "readOnly", "returned": "default", "subAttributes": [
    {"name": "resourceType", "type": "string", "mutability": "readOnly", "returned": "default"},
    {"name": "created", "type": "dateTime", "mutability": "readOnly", "returned": "default"},
    {"name": "lastModified", "type": "dateTime", "mutability": "readOnly", "returned": "default"},
    {"name": "location", "type": "reference", "mutability": "readOnly", "returned": "default"},
    {"name": "version", "type": "string", "mutability": "readOnly", "returned": "default"},
]}

# Core User schema (RFC 7643 §4.1)
CORE_USER_SCHEMA = {
    "schemas": ["urn:ietf:params:scim:schemas:core:2.0:Schema"],
    "id": USER_SCHEMA_URN,
    "name": "User",
    "description": "User Account",
    "attributes": [
        {"name": "userName", "type": "string", "required": True, "caseExact": False, "mutability": "readWrite", "returned": "default", "uniqueness": "server"},
        {"name": "name", "type": "complex", "mutability": "readWrite", "returned": "default", "subAttributes": [
            {"name": "formatted", "type": "string", "mutability": "readWrite", "returned": "default"},
            {"name": "familyName", "type": "string", "mutability": "readWrite", "returned": "default"},
            {"name": "givenName", "type": "string", "mutability": "readWrite", "returned": "default"},
            {"name": "middleName", "type": "string", "mutability": "readWrite", "returned": "default"},
            {"name": "honorificPrefix", "type": "string", "mutability": "readWrite", "returned": "default"},
            {"name": "honorificSuffix", "type": "string", "mutability": "readWrite", "returned": "default"},
        ]},
        {"name": "displayName", "type": "string", "mutability": "readWrite", "returned": "default"},
        {"name": "nickName", "type": "string", "mutability": "readWrite", "returned": "default"},
        {"name": "profileUrl", "type": "reference", "mutability": "readWrite", "returned": "default"},
        {"name": "title", "type": "string", "mutability": "readWrite", "returned": "default"},
        {"name": "userType", "type": "string", "mutability": "readWrite", "returned": "default",
         "canonicalValues": ["Contractor", "Employee", "Intern", "Temp", "External", "Unknown"]},
        {"name": "preferredLanguage", "type": "string", "mutability": "readWrite", "returned": "default"},
        {"name": "locale", "type": "string", "mutability": "readWrite", "returned": "default"},
        {"name": "timezone", "type": "string", "mutability": "readWrite", "returned": "default"},
        {"name": "active", "type": "boolean", "mutability": "readWrite", "returned": "default"},
        {"name": "password", "type": "string", "mutability": "writeOnly", "returned": "never"},
        {"name": "emails", "type": "complex", "multiValued": True, "mutability": "readWrite", "returned": "default",
         "subAttributes": _PLURAL_SUB_ATTRIBUTES},
        {"name": "phoneNumbers", "type": "complex", "multiValued": True, "mutability": "readWrite", "returned": "default",
         "subAttributes": _PLURAL_SUB_ATTRIBUTES},
        {"name": "ims", "type": "complex", "multiValued": True, "mutability": "readWrite", "returned": "default",
         "subAttributes": _PLURAL_SUB_ATTRIBUTES},
        {"name": "photos", "type": "complex", "multiValued": True, "mutability": "readWrite", "returned": "default", "subAttributes": [
            {"name": "value", "type": "reference", "mutability": "readWrite", "returned": "default"},
            {"name": "display", "type": "string", "mutability": "readWrite", "returned": "default"},
            {"name": "type", "type": "string", "mutability": "readWrite", "returned": "default"},
            {"name": "primary", "type": "boolean", "mutability": "readWrite", "returned": "default"},
        ]},
        {"name": "addresses", "type": "complex", "multiValued": True, "mutability": "readWrite", "returned": "default", "subAttributes": [
            {"name": "formatted", "type": "string", "mutability": "readWrite", "returned": "default"},
            {"name": "streetAddress", "type": "string", "mutability": "readWrite", "returned": "default"},
            {"name": "locality", "type": "string", "mutability": "readWrite", "returned": "default"},
            {"name": "region", "type": "string", "mutability": "readWrite", "returned": "default"},
            {"name": "postalCode", "type": "string", "mutability": "readWrite", "returned": "default"},
            {"name": "country", "type": "string", "mutability": "readWrite", "returned": "default"},
            {"name": "type", "type": "string", "mutability": "readWrite", "returned": "default"},
            {"name": "primary", "type": "boolean", "mutability": "readWrite", "returned": "default"},
        ]},
        {"name": "groups", "type": "complex", "multiValued": True, "mutability": "readOnly", "returned": "default", "subAttributes": [
            {"name": "value", "type": "string", "mutability": "readOnly", "returned": "default"},
            {"name": "$ref", "type": "reference", "mutability": "readOnly", "returned": "default"},
            {"name": "display", "type": "string", "mutability": "readOnly", "returned": "default"},
            {"name": "type", "type": "string", "mutability": "readOnly", "returned": "default"},
        ]},
        {"name": "entitlements", "type": "complex", "multiValued": True, "mutability": "readWrite", "returned": "default",
         "subAttributes": _PLURAL_SUB_ATTRIBUTES},
        {"name": "roles", "type": "complex", "multiValued": True, "mutability": "readWrite", "returned": "default",
         "subAttributes": _PLURAL_SUB_ATTRIBUTES},
        {"name": "x509Certificates", "type": "complex", "multiValued": True, "mutability": "readWrite", "returned": "default", "subAttributes": [
            {"name": "value", "type": "binary", "mutability": "readWrite", "returned": "default"},
            {"name": "display", "type": "string", "mutability": "readWrite", "returned": "default"},
            {"name": "type", "type": "string", "mutability": "readWrite", "returned": "default"},
            {"name": "primary", "type": "boolean", "mutability": "readWrite", "returned": "default"},
        ]},
        {"name": "id", "type": "string", "mutability": "readOnly", "returned": "always"},
        {"name": "externalId", "type": "string", "mutability": "readWrite", "returned": "default", "uniqueness": "none"},
        _META_ATTRIBUTE,
    ]
}

# Core Group schema (RFC 7643 §4.2)
CORE_GROUP_SCHEMA = {
    "schemas": ["urn:ietf:params:scim:schemas:core:2.0:Schema"],
    "id": GROUP_SCHEMA_URN,
    "name": "Group",
    "description": "Group",
    "attributes": [
        {"name": "displayName", "type": "string", "required": True, "mutability": "readWrite", "returned": "default"},
        {"name": "members", "type": "complex", "multiValued": True, "mutability": "readWrite", "returned": "default", "subAttributes": [
            {"name": "value", "type": "string", "mutability": "immutable", "returned": "default"},
            {"name": "$ref", "type": "reference", "mutability": "immutable", "returned": "default"},
            {"name": "type", "type": "string", "mutability": "immutable", "returned": "default",
             "canonicalValues": ["User", "Group"]},
            {"name": "display", "type": "string", "mutability": "readWrite", "returned": "default"},
        ]},
        {"name": "id", "type": "string", "mutability": "readOnly", "returned": "always"},
        {"name": "externalId", "type": "string", "mutability": "readWrite", "returned": "default", "uniqueness": "none"},
        _META_ATTRIBUTE,
    ]
}

# Enterprise User Extension schema (RFC 7643 §4.3)
ENTERPRISE_USER_SCHEMA = {
    "schemas": ["urn:ietf:params:scim:schemas:core:2.0:Schema"],
    "id": ENTERPRISE_USER_SCHEMA_URN,
    "name": "EnterpriseUser",
    "description": "Enterprise User",
    "attributes": [
        {"name": "employeeNumber", "type": "string", "mutability": "readWrite", "returned": "default"},
        {"name": "costCenter", "type": "string", "mutability": "readWrite", "returned": "default"},
        {"name": "organization", "type": "string", "mutability": "readWrite", "returned": "default"},
        {"name": "division", "type": "string", "mutability": "readWrite", "returned": "default"},
        {"name": "department", "type": "string", "mutability": "readWrite", "returned": "default"},
        {"name": "manager", "type": "complex", "mutability": "readWrite", "returned": "default", "subAttributes": [
            {"name": "value", "type": "string", "mutability": "readWrite", "returned": "default"},
            {"name": "$ref", "type": "reference", "mutability": "readWrite", "returned": "default"},
            {"name": "displayName", "type": "string", "mutability": "readOnly", "returned": "default"},
        ]},
    ]
}

# Core resource types and the schema each one is validated against
CORE_RESOURCE_TYPES = {
    "User": (USER_SCHEMA_URN, "/Users"),
    "Group": (GROUP_SCHEMA_URN, "/Groups"),
}


@dataclass(frozen=True)
class AttributeDefinition:
    """One attribute (or sub-attribute) of a schema, per RFC 7643 §7."""

    name: str
    type: str = STRING
    multi_valued: bool = False
    required: bool = False
    mutability: str = READ_WRITE
    returned: str = "default"
    case_exact: bool = False
    uniqueness: str = "none"
    canonical_values: Tuple[str, ...] = ()
    sub_attributes: Tuple["AttributeDefinition", ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AttributeDefinition":
        """Build a definition from RFC 7643 §7 JSON; unknown types or mutabilities raise ``ValueError``."""
        data_type = data.get("type", STRING)
        if data_type not in DATA_TYPES:
            raise ValueError(f"Attribute '{data.get('name')}' has unknown type '{data_type}'")
        mutability = data.get("mutability", READ_WRITE)
        if mutability not in MUTABILITIES:
            raise ValueError(f"Attribute '{data.get('name')}' has unknown mutability '{mutability}'")
        return cls(
            name=data["name"],
            type=data_type,
            multi_valued=bool(data.get("multiValued", False)),
            required=bool(data.get("required", False)),
            mutability=mutability,
            returned=data.get("returned", "default"),
            case_exact=bool(data.get("caseExact", False)),
            uniqueness=data.get("uniqueness", "none"),
            canonical_values=tuple(data.get("canonicalValues", ())),
            sub_attributes=tuple(cls.from_dict(sub) for sub in data.get("subAttributes", ())),
        )

    def sub_attribute(self, name: str) -> Optional["AttributeDefinition"]:
        """Case-insensitive sub-attribute lookup (RFC 7643 §2.1)."""
        return _find_definition(self.sub_attributes, name)

    @property
    def is_complex(self) -> bool:
        return self.type == COMPLEX


@dataclass(frozen=True)
class ResourceSchema:
    """A named set of attribute definitions, identified by its URI."""

    id: str
    attributes: Tuple[AttributeDefinition, ...] = ()
    name: str = ""
    description: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceSchema":
        """Build a schema from its RFC 7643 §7 JSON representation."""
        if not isinstance(data, dict) or not data.get("id"):
            raise ValueError("Schema definition must be an object with an 'id'")
        return cls(
            id=data["id"],
            attributes=tuple(AttributeDefinition.from_dict(attr) for attr in data.get("attributes", ())),
            name=data.get("name", ""),
            description=data.get("description", ""),
        )

    def attribute(self, name: str) -> Optional[AttributeDefinition]:
        """Case-insensitive attribute lookup."""
        return _find_definition(self.attributes, name)


@dataclass(frozen=True)
class ExtensionBinding:
    """Attaches an extension schema to a core resource type."""

    resource_type: str
    schema_uri: str
    required: bool = False


def _find_definition(definitions: Iterable[AttributeDefinition], name: str) -> Optional[AttributeDefinition]:
    lower = name.lower()
    for definition in definitions:
        if definition.name.lower() == lower:
            return definition
    return None


def builtin_schemas() -> Tuple[ResourceSchema, ...]:
    """The RFC 7643 schemas every registry starts from."""
    return tuple(ResourceSchema.from_dict(doc) for doc in (CORE_USER_SCHEMA, CORE_GROUP_SCHEMA, ENTERPRISE_USER_SCHEMA))
