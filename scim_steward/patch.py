"""Applies RFC 7644 §3.5.2 PATCH operations to a resource.

``PatchEngine.apply_patch`` is copy-on-write: operations run in order
against a deep copy of the input, and the first failing operation raises
with the copy thrown away.  Callers therefore only ever see the original
resource or the fully patched one.

Meta is left alone here; refreshing ``lastModified``/``version`` is the
decorator's job once the patched resource has been re-validated.
"""

import copy
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from .errors import (
    InvalidPatchOperation,
    InvalidSchemaDeclaration,
    MutabilityViolation,
    NoTarget,
    SCIMError,
    UnknownAttributePath,
)
from .paths import AttributePath, filter_elements, parse_path
from .registry import SchemaRegistry, default_registry
from .resource import PatchOperation, PatchOperationType, Resource, coerce_resource, find_key
from .schemas import READ_ONLY, AttributeDefinition, ResourceSchema
from .validator import validate_patch_operations, validate_patch_request

logger = logging.getLogger(__name__)

ADD = PatchOperationType.ADD
REMOVE = PatchOperationType.REMOVE
REPLACE = PatchOperationType.REPLACE


def parse_patch_request(data: Dict[str, Any]) -> List[PatchOperation]:
    """Turn a PatchOp message into operations, raising on the first structural error."""
    result = validate_patch_request(data)
    if not result.is_valid:
        raise result.errors[0]
    return [PatchOperation.from_dict(op) for op in data["Operations"]]


def parse_patch_operations(operations: Iterable[Any]) -> List[PatchOperation]:
    """Check a bare sequence of operation dicts or ``PatchOperation`` objects and return operations."""
    if isinstance(operations, (str, bytes)):
        raise InvalidPatchOperation("PATCH operations must be an array")
    try:
        operations = list(operations)
    except TypeError:
        raise InvalidPatchOperation("PATCH operations must be an array")
    result = validate_patch_operations(operations)
    if not result.is_valid:
        raise result.errors[0]
    return [op if isinstance(op, PatchOperation) else PatchOperation.from_dict(op) for op in operations]


class PatchEngine:
    """Applies add/remove/replace operations with all-or-nothing semantics."""

    def __init__(self, registry: Optional[SchemaRegistry] = None):
        self.registry = registry or default_registry()

    def apply_patch(self, resource: Any, operations: Iterable[Union[PatchOperation, Dict[str, Any]]],
                    resource_type: Optional[str] = None) -> Resource:
        """Return a new resource with ``operations`` applied in order.

        Raises:
            UnknownAttributePath:   a path names an attribute outside the core
                                    schema and the declared extensions.
            InvalidPatchOperation:  an operation is malformed or ambiguous
                                    (``remove`` without a path, bad filter, ...).
            MutabilityViolation:    a path targets a readOnly attribute.
        """
        original = coerce_resource(resource, resource_type, self.registry)
        core = self.registry.core_schema_for(original.resource_type)
        working = original.copy()
        if not isinstance(working.schemas, list) or not all(isinstance(uri, str) for uri in working.schemas):
            raise InvalidSchemaDeclaration("'schemas' must be a non-empty array of URIs", path="schemas")

        for idx, operation in enumerate(operations):
            if not isinstance(operation, PatchOperation):
                operation = PatchOperation.from_dict(operation)
            try:
                self._apply(working, core, operation)
            except SCIMError as e:
                logger.info("PATCH operation %d (%s %s) rejected: %s", idx, operation.op.value, operation.path, e)
                raise
            logger.debug("Applied PATCH operation %d: %r", idx, operation)
        return working

    # -- Dispatch ------------------------------------------------------------

    def _apply(self, working: Resource, core: ResourceSchema, operation: PatchOperation):
        if operation.op is not REMOVE and operation.value is None:
            raise InvalidPatchOperation(f"'{operation.op.value}' operation requires 'value'", path=operation.path or "")
        if operation.path is None:
            if operation.op is REMOVE:
                raise InvalidPatchOperation("'remove' operation requires 'path'")
            self._apply_members(working, core, core, operation.op, operation.value, "")
            return
        path = parse_path(operation.path, self.registry.schema_uris())
        self._apply_path(working, core, operation.op, path, operation.value, operation.path)

    def _apply_members(self, working: Resource, core: ResourceSchema, schema: ResourceSchema,
                       kind: PatchOperationType, value: Any, raw: str):
        """Apply an object ``value`` member by member, as a path-less operation does."""
        if not isinstance(value, dict):
            raise InvalidPatchOperation(f"'{kind.value}' without a target path requires an object value", path=raw)
        members = dict(value)
        schemas_key = find_key(members, "schemas")
        if schemas_key is not None and schema is core:
            self._extend_schemas(working, members.pop(schemas_key))

        uris = self.registry.schema_uris()
        for name, item in members.items():
            if schema is core:
                path = parse_path(name, uris)
                member_raw = name
            else:
                path = AttributePath(schema.id, name)
                member_raw = f"{schema.id}:{name}"
            self._apply_path(working, core, kind, path, item, member_raw)

    def _apply_path(self, working: Resource, core: ResourceSchema, kind: PatchOperationType,
                    path: AttributePath, value: Any, raw: str):
        schema = self._resolve_schema(working, core, path, raw)
        if path.attribute is None:
            self._apply_whole_schema(working, core, schema, kind, value, raw)
            return

        attr_def = schema.attribute(path.attribute)
        if attr_def is None:
            raise UnknownAttributePath(f"Attribute '{path.attribute}' is not defined by schema {schema.id}", path=raw)
        target_def = attr_def
        if path.sub_attribute:
            target_def = attr_def.sub_attribute(path.sub_attribute)
            if target_def is None:
                raise UnknownAttributePath(
                    f"Attribute '{attr_def.name}' has no sub-attribute '{path.sub_attribute}'", path=raw
                )
        if path.value_filter is not None:
            if not attr_def.multi_valued:
                raise InvalidPatchOperation(
                    f"Value filters apply to multi-valued attributes only; '{attr_def.name}' is single-valued",
                    path=raw,
                )
            if attr_def.is_complex and attr_def.sub_attributes and \
                    attr_def.sub_attribute(path.value_filter.attribute) is None:
                raise UnknownAttributePath(
                    f"Filter attribute '{path.value_filter.attribute}' is not a sub-attribute of '{attr_def.name}'",
                    path=raw,
                )
        if READ_ONLY in (attr_def.mutability, target_def.mutability):
            raise MutabilityViolation(f"Attribute '{target_def.name}' is readOnly and cannot be patched", path=raw)

        container = self._container(working, core, schema, create=kind is not REMOVE)
        if container is None:
            return
        if kind is ADD:
            self._add(container, attr_def, path, value, raw)
        elif kind is REPLACE:
            self._replace(container, attr_def, path, value, raw)
        else:
            self._remove(container, attr_def, path, value)
            if schema is not core and not container:
                _delete(working.attributes, schema.id)

    def _apply_whole_schema(self, working: Resource, core: ResourceSchema, schema: ResourceSchema,
                            kind: PatchOperationType, value: Any, raw: str):
        if kind is REMOVE:
            if schema is core:
                raise InvalidPatchOperation("Cannot remove the core schema of a resource", path=raw)
            _delete(working.attributes, schema.id)
            working.schemas = [uri for uri in working.schemas if uri.lower() != schema.id.lower()]
            return
        if kind is REPLACE and schema is not core:
            _delete(working.attributes, schema.id)
        self._apply_members(working, core, schema, kind, value, raw)

    # -- Resolution ----------------------------------------------------------

    def _applicable(self, working: Resource) -> Dict[str, ResourceSchema]:
        """Extension schemas both declared by the resource and bound to its type."""
        declared = {uri.lower() for uri in working.schemas if isinstance(uri, str)}
        return {
            b.schema_uri.lower(): self.registry.lookup(b.schema_uri)
            for b in self.registry.extensions_for(working.resource_type)
            if b.schema_uri.lower() in declared
        }

    def _resolve_schema(self, working: Resource, core: ResourceSchema, path: AttributePath,
                        raw: str) -> ResourceSchema:
        extensions = self._applicable(working)
        if path.schema_uri is None:
            if core.attribute(path.attribute) is None:
                for schema in extensions.values():
                    if schema.attribute(path.attribute) is not None:
                        return schema
            return core
        if path.schema_uri.lower() == core.id.lower():
            return core
        schema = extensions.get(path.schema_uri.lower())
        if schema is None:
            raise UnknownAttributePath(
                f"Path '{raw}' targets schema '{path.schema_uri}', which is not declared in 'schemas'",
                path=raw,
            )
        return schema

    @staticmethod
    def _container(working: Resource, core: ResourceSchema, schema: ResourceSchema,
                   create: bool) -> Optional[Dict[str, Any]]:
        if schema is core:
            return working.attributes
        key = find_key(working.attributes, schema.id)
        if key is None or working.attributes[key] is None:
            if not create:
                return None
            _set(working.attributes, schema.id, {})
            key = schema.id
        container = working.attributes[key]
        if not isinstance(container, dict):
            raise InvalidPatchOperation(f"Extension '{schema.id}' is not an object", path=schema.id)
        return container

    @staticmethod
    def _extend_schemas(working: Resource, uris: Any):
        if isinstance(uris, str):
            uris = [uris]
        if not isinstance(uris, list) or not all(isinstance(uri, str) for uri in uris):
            raise InvalidPatchOperation("'schemas' must be an array of URIs", path="schemas")
        declared = {uri.lower() for uri in working.schemas}
        for uri in uris:
            if uri.lower() not in declared:
                working.schemas.append(uri)
                declared.add(uri.lower())

    # -- Operations ----------------------------------------------------------

    def _add(self, container: Dict[str, Any], attr_def: AttributeDefinition, path: AttributePath,
             value: Any, raw: str):
        if path.value_filter is not None:
            elements = _get(container, attr_def.name)
            for idx in _matching(elements, attr_def, path, raw):
                if path.sub_attribute:
                    _add_value(elements[idx], attr_def.sub_attribute(path.sub_attribute), value)
                else:
                    if not isinstance(value, dict):
                        raise InvalidPatchOperation(
                            f"Adding to a filtered '{attr_def.name}' element requires an object value", path=raw
                        )
                    elements[idx] = _merge(elements[idx], attr_def, value)
            return

        if path.sub_attribute:
            sub_def = attr_def.sub_attribute(path.sub_attribute)
            if attr_def.multi_valued:
                for element in _elements(container, attr_def, raw):
                    _add_value(element, sub_def, value)
                return
            parent = _get(container, attr_def.name)
            parent = parent if isinstance(parent, dict) else {}
            _add_value(parent, sub_def, value)
            _set(container, attr_def.name, parent)
            return

        _add_value(container, attr_def, value)

    def _replace(self, container: Dict[str, Any], attr_def: AttributeDefinition, path: AttributePath,
                 value: Any, raw: str):
        if path.value_filter is not None:
            elements = _get(container, attr_def.name)
            for idx in _matching(elements, attr_def, path, raw):
                if path.sub_attribute:
                    _set(elements[idx], attr_def.sub_attribute(path.sub_attribute).name, copy.deepcopy(value))
                else:
                    elements[idx] = copy.deepcopy(value)
            return

        if path.sub_attribute:
            sub_def = attr_def.sub_attribute(path.sub_attribute)
            if attr_def.multi_valued:
                for element in _elements(container, attr_def, raw):
                    _delete(element, sub_def.name)
                    _add_value(element, sub_def, value)
                return
            parent = _get(container, attr_def.name)
            parent = parent if isinstance(parent, dict) else {}
            _delete(parent, sub_def.name)
            _add_value(parent, sub_def, value)
            _set(container, attr_def.name, parent)
            return

        # Replace is add with the existing value removed first
        _delete(container, attr_def.name)
        _add_value(container, attr_def, value)

    def _remove(self, container: Dict[str, Any], attr_def: AttributeDefinition, path: AttributePath, value: Any):
        name = attr_def.name
        if path.value_filter is not None:
            elements = _get(container, name)
            matches = filter_elements(elements, path.value_filter, _filter_case_exact(attr_def, path))
            if not matches:
                return
            if path.sub_attribute:
                for idx in matches:
                    _delete(elements[idx], path.sub_attribute)
            else:
                _set_or_delete(container, name, [e for i, e in enumerate(elements) if i not in matches])
            return

        if path.sub_attribute:
            parent = _get(container, name)
            if isinstance(parent, list):
                for element in parent:
                    if isinstance(element, dict):
                        _delete(element, path.sub_attribute)
            elif isinstance(parent, dict):
                _delete(parent, path.sub_attribute)
                if not parent:
                    _delete(container, name)
            return

        if value is not None and attr_def.multi_valued:
            # Azure-style removal of listed members: [{"value": "<id>"}]
            elements = _get(container, name)
            if not isinstance(elements, list):
                return
            targets = value if isinstance(value, list) else [value]
            _set_or_delete(container, name, [e for e in elements if not any(_same_item(e, t) for t in targets)])
            return

        _delete(container, name)


# -- Container helpers (attribute names are case-insensitive) -----------------

def _get(container: Dict[str, Any], name: str) -> Any:
    key = find_key(container, name)
    return container[key] if key is not None else None


def _set(container: Dict[str, Any], name: str, value: Any):
    key = find_key(container, name)
    if key is not None and key != name:
        del container[key]
    container[name] = value


def _delete(container: Dict[str, Any], name: str):
    key = find_key(container, name)
    if key is not None:
        del container[key]


def _set_or_delete(container: Dict[str, Any], name: str, values: List[Any]):
    if values:
        _set(container, name, values)
    else:
        _delete(container, name)


def _merge(existing: Any, attr_def: AttributeDefinition, value: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay ``value``'s sub-attributes on ``existing``; unmentioned ones survive."""
    merged = dict(existing) if isinstance(existing, dict) else {}
    for name, item in value.items():
        sub_def = attr_def.sub_attribute(name)
        _set(merged, sub_def.name if sub_def else name, copy.deepcopy(item))
    return merged


def _add_value(container: Dict[str, Any], attr_def: AttributeDefinition, value: Any):
    name = attr_def.name
    if attr_def.multi_valued:
        existing = _get(container, name)
        if isinstance(existing, list):
            items = list(existing)
        else:
            items = [] if existing is None else [existing]
        new_items = []
        for item in (value if isinstance(value, list) else [value]):
            if item is not None and item not in items and item not in new_items:
                new_items.append(item)
        if any(isinstance(item, dict) and item.get("primary") is True for item in new_items):
            # RFC 7643 §2.4: at most one element may be primary
            items = [dict(item, primary=False) if isinstance(item, dict) and item.get("primary") is True else item
                     for item in items]
        items.extend(copy.deepcopy(new_items))
        _set(container, name, items)
    elif attr_def.is_complex and isinstance(value, dict):
        _set(container, name, _merge(_get(container, name), attr_def, value))
    else:
        _set(container, name, copy.deepcopy(value))


def _elements(container: Dict[str, Any], attr_def: AttributeDefinition, raw: str) -> List[Dict[str, Any]]:
    elements = _get(container, attr_def.name)
    if not isinstance(elements, list) or not elements:
        raise NoTarget(f"'{attr_def.name}' has no values for '{raw}' to apply to", path=raw)
    return [element for element in elements if isinstance(element, dict)]


def _filter_case_exact(attr_def: AttributeDefinition, path: AttributePath) -> bool:
    sub_def = attr_def.sub_attribute(path.value_filter.attribute)
    return sub_def.case_exact if sub_def is not None else False


def _matching(elements: Any, attr_def: AttributeDefinition, path: AttributePath, raw: str) -> List[int]:
    matches = filter_elements(elements, path.value_filter, _filter_case_exact(attr_def, path))
    if not matches:
        raise NoTarget(f"No value of '{attr_def.name}' matches filter [{path.value_filter}]", path=raw)
    return list(matches)


def _same_item(element: Any, target: Any) -> bool:
    if element == target:
        return True
    if isinstance(element, dict) and isinstance(target, dict):
        value_key = find_key(target, "value")
        element_key = find_key(element, "value")
        return value_key is not None and element_key is not None and element[element_key] == target[value_key]
    return False
