"""Process-wide registry of resource schemas and extension bindings.

Reads vastly outnumber writes: every validation and patch looks schemas
up, while registration only happens at startup or on a catalog reload.
The registry therefore publishes immutable snapshots.  Writers serialize
on a lock, build a new snapshot, and swap the reference; readers grab the
current snapshot once and never block.
"""

import logging
import threading
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, NamedTuple, Optional, Tuple

from .errors import DuplicateSchemaError, InvalidSchemaDeclaration, UnknownSchemaError
from .schemas import (
    CORE_RESOURCE_TYPES,
    ENTERPRISE_USER_SCHEMA_URN,
    ExtensionBinding,
    ResourceSchema,
    builtin_schemas,
)

logger = logging.getLogger(__name__)


class ResourceType(NamedTuple):
    name: str
    schema_uri: str
    endpoint: str


class _Snapshot(NamedTuple):
    schemas: Mapping[str, ResourceSchema]
    resource_types: Mapping[str, ResourceType]
    bindings: Mapping[str, Tuple[ExtensionBinding, ...]]


_EMPTY = _Snapshot(MappingProxyType({}), MappingProxyType({}), MappingProxyType({}))


class SchemaRegistry:
    """Holds core schemas, extension schemas, and which types they extend.

    Schema URIs are matched case-insensitively, as RFC 7643 §2.1 does for
    attribute names.
    """

    def __init__(self):
        self._write_lock = threading.Lock()
        self._snapshot = _EMPTY

    # -- Lookups -------------------------------------------------------------

    def lookup(self, schema_uri: str) -> ResourceSchema:
        """Return the schema registered under ``schema_uri``."""
        schema = self._snapshot.schemas.get(schema_uri.lower()) if isinstance(schema_uri, str) else None
        if schema is None:
            raise UnknownSchemaError(f"Unknown schema URN: {schema_uri}")
        return schema

    def get(self, schema_uri: str) -> Optional[ResourceSchema]:
        return self._snapshot.schemas.get(schema_uri.lower())

    def extensions_for(self, resource_type: str) -> Tuple[ExtensionBinding, ...]:
        """Extension bindings configured for ``resource_type``, in binding order."""
        return self._snapshot.bindings.get(resource_type, ())

    def resource_type(self, name: str) -> ResourceType:
        rtype = self._snapshot.resource_types.get(name)
        if rtype is None:
            raise UnknownSchemaError(f"Unknown resource type: {name}")
        return rtype

    def core_schema_for(self, resource_type: str) -> ResourceSchema:
        return self.lookup(self.resource_type(resource_type).schema_uri)

    def resource_types(self) -> Tuple[str, ...]:
        return tuple(self._snapshot.resource_types)

    def schema_uris(self) -> Tuple[str, ...]:
        """Every registered schema id, longest first so prefix matching is greedy."""
        ids = [schema.id for schema in self._snapshot.schemas.values()]
        return tuple(sorted(ids, key=len, reverse=True))

    def resource_type_for_schemas(self, schemas: Iterable[str]) -> Optional[str]:
        """Infer the resource type from the core URN carried in ``schemas``."""
        declared = {uri.lower() for uri in schemas if isinstance(uri, str)}
        for rtype in self._snapshot.resource_types.values():
            if rtype.schema_uri.lower() in declared:
                return rtype.name
        return None

    # -- Registration --------------------------------------------------------

    def register(self, schema: ResourceSchema) -> None:
        """Add ``schema``; its id must not be registered yet."""
        with self._write_lock:
            current = self._snapshot
            key = schema.id.lower()
            if key in current.schemas:
                raise DuplicateSchemaError(f"Schema already registered: {schema.id}")
            schemas = dict(current.schemas)
            schemas[key] = schema
            self._publish(current, schemas=schemas)
        logger.debug("Registered schema %s", schema.id)

    def register_resource_type(self, name: str, schema_uri: str, endpoint: Optional[str] = None) -> None:
        """Declare a resource type validated against the core schema ``schema_uri``."""
        with self._write_lock:
            current = self._snapshot
            if schema_uri.lower() not in current.schemas:
                raise UnknownSchemaError(f"Unknown schema URN: {schema_uri}")
            resource_types = dict(current.resource_types)
            resource_types[name] = ResourceType(name, schema_uri, endpoint or f"/{name}s")
            self._publish(current, resource_types=resource_types)

    def bind_extension(self, resource_type: str, schema_uri: str, required: bool = False) -> None:
        """Attach a registered extension schema to ``resource_type``."""
        with self._write_lock:
            current = self._snapshot
            self._check_binding(current, resource_type, schema_uri)
            existing = tuple(b for b in current.bindings.get(resource_type, ())
                             if b.schema_uri.lower() != schema_uri.lower())
            bindings = dict(current.bindings)
            bindings[resource_type] = existing + (ExtensionBinding(resource_type, schema_uri, required),)
            self._publish(current, bindings=bindings)

    def load_catalog(self, catalog) -> None:
        """Synchronize extension schemas and bindings from an extension catalog.

        ``catalog.extensions(resource_type)`` yields, per registered type, either
        schema URIs that are already registered, schema documents (dicts in
        RFC 7643 §7 form), or ``(schema, required)`` pairs of either.  Each
        type's bindings are replaced as a whole, so a reload that drops an
        extension unbinds it.
        """
        with self._write_lock:
            current = self._snapshot
            schemas = dict(current.schemas)
            bindings = dict(current.bindings)
            for resource_type in current.resource_types:
                new_bindings = []
                for entry in catalog.extensions(resource_type):
                    uri, required = self._catalog_entry(entry, schemas)
                    new_bindings.append(ExtensionBinding(resource_type, uri, required))
                bindings[resource_type] = tuple(new_bindings)
            staged = _Snapshot(MappingProxyType(schemas), current.resource_types, MappingProxyType(bindings))
            for resource_type, type_bindings in bindings.items():
                for binding in type_bindings:
                    self._check_binding(staged, resource_type, binding.schema_uri)
            self._snapshot = staged
        logger.info("Loaded extension catalog: %s",
                    {rtype: [b.schema_uri for b in b_list] for rtype, b_list in bindings.items()})

    # -- Internals -----------------------------------------------------------

    def _publish(self, current: _Snapshot, schemas: Optional[Dict[str, ResourceSchema]] = None,
                 resource_types: Optional[Dict[str, ResourceType]] = None,
                 bindings: Optional[Dict[str, Tuple[ExtensionBinding, ...]]] = None) -> None:
        self._snapshot = _Snapshot(
            MappingProxyType(schemas) if schemas is not None else current.schemas,
            MappingProxyType(resource_types) if resource_types is not None else current.resource_types,
            MappingProxyType(bindings) if bindings is not None else current.bindings,
        )

    @staticmethod
    def _check_binding(snapshot: _Snapshot, resource_type: str, schema_uri: str) -> None:
        rtype = snapshot.resource_types.get(resource_type)
        if rtype is None:
            raise UnknownSchemaError(f"Unknown resource type: {resource_type}")
        if schema_uri.lower() not in snapshot.schemas:
            raise UnknownSchemaError(f"Unknown schema URN: {schema_uri}")
        if schema_uri.lower() == rtype.schema_uri.lower():
            raise InvalidSchemaDeclaration(f"{schema_uri} is the core schema of {resource_type}, not an extension")

    @staticmethod
    def _catalog_entry(entry: Any, schemas: Dict[str, ResourceSchema]) -> Tuple[str, bool]:
        required = False
        if isinstance(entry, (tuple, list)):
            entry, required = entry
        if isinstance(entry, dict):
            entry = ResourceSchema.from_dict(entry)
        if isinstance(entry, ResourceSchema):
            known = schemas.get(entry.id.lower())
            if known is None:
                schemas[entry.id.lower()] = entry
            elif known != entry:
                raise DuplicateSchemaError(f"Schema already registered with a different definition: {entry.id}")
            return entry.id, bool(required)
        if isinstance(entry, str):
            if entry.lower() not in schemas:
                raise UnknownSchemaError(f"Unknown schema URN: {entry}")
            return schemas[entry.lower()].id, bool(required)
        raise ValueError(f"Unsupported extension catalog entry: {entry!r}")


def default_registry() -> SchemaRegistry:
    """A registry holding the RFC 7643 User/Group schemas and the enterprise extension."""
    registry = SchemaRegistry()
    for schema in builtin_schemas():
        registry.register(schema)
    for name, (uri, endpoint) in CORE_RESOURCE_TYPES.items():
        registry.register_resource_type(name, uri, endpoint)
    registry.bind_extension("User", ENTERPRISE_USER_SCHEMA_URN)
    return registry
