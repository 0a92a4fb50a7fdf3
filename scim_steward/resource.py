"""Transient SCIM resource, its server-owned meta, and PATCH operations.

Resources are built per request from their JSON form and discarded after
the response is produced.  Extension attributes are kept under their
schema URI key exactly as RFC 7643 §3.3 lays them out on the wire.
"""

import copy
import hashlib
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import InvalidPatchOperation

# Top-level keys that are not ordinary attributes
RESERVED_KEYS = ("schemas", "id", "meta")


def format_timestamp(dt: datetime) -> str:
    """Format ``dt`` as an ISO-8601 UTC timestamp with a ``Z`` suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def find_key(mapping: Dict[str, Any], name: str) -> Optional[str]:
    """Return the key of ``mapping`` matching ``name`` case-insensitively."""
    if name in mapping:
        return name
    lower = name.lower()
    for key in mapping:
        if isinstance(key, str) and key.lower() == lower:
            return key
    return None


class Meta:
    """Server-managed resource metadata (RFC 7643 §3.1)."""

    def __init__(self, resource_type: Optional[str] = None, created: Optional[str] = None,
                 last_modified: Optional[str] = None, version: Optional[str] = None,
                 location: Optional[str] = None):
        self.resource_type = resource_type
        self.created = created
        self.last_modified = last_modified
        self.version = version
        self.location = location

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Meta"]:
        if not isinstance(data, dict):
            return None
        return cls(
            resource_type=data.get("resourceType"),
            created=data.get("created"),
            last_modified=data.get("lastModified"),
            version=data.get("version"),
            location=data.get("location"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "resourceType": self.resource_type,
            "created": self.created,
            "lastModified": self.last_modified,
            "location": self.location,
            "version": self.version,
        }
        return {k: v for k, v in data.items() if v is not None}

    def __eq__(self, other):
        return isinstance(other, Meta) and self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"Meta({self.to_dict()!r})"


class Resource:
    """A schema-described identity object (User, Group, ...).

    Args:
        resource_type:  Name of the resource type, e.g. ``"User"``.
        schemas:        Schema URIs declared by the resource.
        attributes:     Attribute name to value mapping, extension objects
                        included under their URI.
        id:             Identifier assigned by the persistence layer.
        meta:           Server-owned metadata.
    """

    def __init__(self, resource_type: str, schemas: Optional[List[str]] = None,
                 attributes: Optional[Dict[str, Any]] = None, id: Optional[str] = None,
                 meta: Optional[Meta] = None):
        self.resource_type = resource_type
        self.schemas = list(schemas) if schemas is not None else []
        self.attributes = dict(attributes or {})
        self.id = id
        self.meta = meta

    @classmethod
    def from_dict(cls, data: Dict[str, Any], resource_type: str) -> "Resource":
        """Split a JSON resource into schemas, id, meta, and attributes.

        ``schemas`` is kept as given (even when malformed) so the validator
        can report on it.
        """
        attributes = {k: copy.deepcopy(v) for k, v in data.items() if k not in RESERVED_KEYS}
        schemas = data.get("schemas")
        resource = cls(resource_type, attributes=attributes, id=data.get("id"), meta=Meta.from_dict(data.get("meta")))
        resource.schemas = copy.deepcopy(schemas) if schemas is not None else None
        return resource

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"schemas": copy.deepcopy(self.schemas)}
        if self.id is not None:
            data["id"] = self.id
        data.update(copy.deepcopy(self.attributes))
        if self.meta is not None:
            data["meta"] = self.meta.to_dict()
        return data

    def copy(self) -> "Resource":
        """Deep copy; patching and meta assignment work on copies."""
        clone = Resource(
            self.resource_type,
            attributes=copy.deepcopy(self.attributes),
            id=self.id,
            meta=Meta(**vars(self.meta)) if self.meta is not None else None,
        )
        clone.schemas = copy.deepcopy(self.schemas)
        return clone

    def get(self, name: str, default: Any = None) -> Any:
        key = find_key(self.attributes, name)
        return self.attributes[key] if key is not None else default

    def content_hash(self) -> str:
        """Stable digest of schemas and attributes, ignoring id and meta."""
        body = json.dumps({"schemas": self.schemas, "attributes": self.attributes}, sort_keys=True, default=str)
        return hashlib.sha256(body.encode("utf-8")).hexdigest()

    def __eq__(self, other):
        if not isinstance(other, Resource):
            return NotImplemented
        return self.resource_type == other.resource_type and self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"Resource({self.resource_type!r}, {self.to_dict()!r})"


def compute_version(resource: Resource, last_modified: str) -> str:
    """Weak ETag for ``meta.version`` derived from content and modification time."""
    digest = hashlib.sha256(f"{resource.content_hash()}:{last_modified}".encode("utf-8")).hexdigest()
    return f'W/"{digest[:16]}"'


def coerce_resource(resource: Any, resource_type: Optional[str] = None, registry=None) -> Resource:
    """Accept a ``Resource``, a JSON mapping, or any object offering
    ``resource_type`` and ``to_dict()``.

    For plain mappings without an explicit type, the registry infers it
    from the core URN in ``schemas``.
    """
    if isinstance(resource, Resource):
        return resource
    if isinstance(resource, dict):
        if resource_type is None and registry is not None:
            resource_type = registry.resource_type_for_schemas(resource.get("schemas") or [])
        return Resource.from_dict(resource, resource_type)
    to_dict = getattr(resource, "to_dict", None)
    if callable(to_dict) and hasattr(resource, "resource_type"):
        return Resource.from_dict(to_dict(), resource_type or resource.resource_type)
    raise TypeError(f"Cannot treat {type(resource).__name__} as a SCIM resource")


class PatchOperationType(Enum):
    """The PATCH operation kinds of RFC 7644 §3.5.2."""

    ADD = "add"
    REMOVE = "remove"
    REPLACE = "replace"

    @classmethod
    def from_string(cls, value: str) -> "PatchOperationType":
        # Several providers send "Add"/"Replace"; RFC 7644 op values are case-insensitive
        if isinstance(value, str):
            for member in cls:
                if member.value == value.lower():
                    return member
        raise InvalidPatchOperation(
            f"Invalid 'op' value '{value}'. Must be one of: {', '.join(m.value for m in cls)}"
        )


class PatchOperation:
    """One add/remove/replace instruction."""

    def __init__(self, op, path: Optional[str] = None, value: Any = None):
        self.op = op if isinstance(op, PatchOperationType) else PatchOperationType.from_string(op)
        if path is not None and not isinstance(path, str):
            raise InvalidPatchOperation(f"'path' must be a string, got {type(path).__name__}")
        self.path = path or None
        self.value = value

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatchOperation":
        if not isinstance(data, dict):
            raise InvalidPatchOperation(f"A PATCH operation must be an object, got {type(data).__name__}")
        return cls(data.get("op"), data.get("path"), data.get("value"))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"op": self.op.value}
        if self.path is not None:
            data["path"] = self.path
        if self.value is not None:
            data["value"] = self.value
        return data

    def __repr__(self):
        return f"PatchOperation({self.op.name}, path={self.path!r}, value={self.value!r})"
