"""Core SCIM 2.0 validation logic."""

import base64
import binascii
import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import (
    InvalidAttributeValue,
    InvalidPatchOperation,
    InvalidSchemaDeclaration,
    MissingRequiredAttribute,
    MutabilityViolation,
    SCIMError,
    UnknownAttributePath,
    UnknownSchemaError,
)
from .paths import is_urn_key, split_extension_key
from .registry import SchemaRegistry, default_registry
from .resource import PatchOperation, Resource, coerce_resource, find_key
from .schemas import (
    BINARY,
    BOOLEAN,
    COMPLEX,
    DATETIME,
    DECIMAL,
    IMMUTABLE,
    INTEGER,
    PATCH_OP_URN,
    READ_ONLY,
    REFERENCE,
    STRING,
    AttributeDefinition,
    ResourceSchema,
)

logger = logging.getLogger(__name__)

# Owned by the decorator; client copies are discarded rather than compared
_SERVER_MANAGED = ("meta",)

# xsd:dateTime (RFC 7643 §2.3.5): any number of fraction digits, optional zone
_DATETIME_RE = re.compile(
    r"(?P<date>\d{4}-\d{2}-\d{2})T(?P<time>\d{2}:\d{2}:\d{2})(?:\.(?P<fraction>\d+))?(?P<tz>Z|[+-]\d{2}:\d{2})?"
)


class ValidationResult:
    """Outcome of a validation run.

    ``errors`` holds every finding in the order the checks ran; ``error``
    is the first one's message, which is what callers report.
    """

    def __init__(self, errors: Optional[List[SCIMError]] = None):
        self.errors: List[SCIMError] = list(errors or [])

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def error(self) -> Optional[str]:
        return str(self.errors[0]) if self.errors else None

    def __bool__(self):
        return self.is_valid

    def __repr__(self):
        return "Valid" if self.is_valid else f"Invalid({self.error!r})"


def is_empty(value: Any) -> bool:
    """RFC 7643 §2.5: null, empty strings, and empty containers are unassigned."""
    return value is None or value == "" or value == [] or value == {}


class ResourceValidator:
    """Validates User, Group, and extension-bearing resources against the registry.

    One instance can serve concurrent requests: findings are collected per
    call, never on the instance.
    """

    def __init__(self, registry: Optional[SchemaRegistry] = None):
        self.registry = registry or default_registry()

    def validate(self, resource: Any, resource_type: Optional[str] = None,
                 current: Optional[Any] = None) -> ValidationResult:
        """
        Validate a SCIM resource.

        Args:
            resource: Resource, JSON mapping, or object with ``resource_type``/``to_dict()``
            resource_type: Resource type name; inferred from ``schemas`` when omitted
            current: The persisted resource an update or patch replaces.  When given,
                readOnly and immutable attributes may not change.

        Returns:
            ValidationResult
        """
        errors: List[SCIMError] = []
        if not isinstance(resource, dict) and not hasattr(resource, "to_dict"):
            errors.append(InvalidAttributeValue("Resource must be a JSON object"))
            return ValidationResult(errors)

        resource = coerce_resource(resource, resource_type, self.registry)
        if current is not None:
            current = coerce_resource(current, resource.resource_type, self.registry)

        # Structural problems stop here: nothing below is meaningful without them
        core = self._check_structure(resource, errors)
        if core is None:
            return ValidationResult(errors)

        extensions = self._declared_extensions(resource, core)
        self._validate_required_attributes(resource, core, extensions, errors)
        self._validate_schemas_attribute(resource, core, errors)
        self._validate_validable_attributes(resource, core, current, errors)
        # By RFC 7643 §7 canonical values are advisory; values outside the set are accepted
        self._validate_extended_attributes(resource, extensions, current, errors)

        if errors:
            logger.debug("Validation of %s found %d error(s): %s", resource.resource_type, len(errors), errors)
        return ValidationResult(errors)

    # -- Structure -----------------------------------------------------------

    def _check_structure(self, resource: Resource, errors: List[SCIMError]) -> Optional[ResourceSchema]:
        if resource.resource_type is None:
            errors.append(InvalidSchemaDeclaration(
                "Cannot determine resource type: 'schemas' carries no known core schema URN",
                path="schemas",
            ))
            return None
        try:
            core = self.registry.core_schema_for(resource.resource_type)
        except UnknownSchemaError as e:
            errors.append(e)
            return None

        schemas = resource.schemas
        if schemas is None:
            errors.append(InvalidSchemaDeclaration("Missing required field: 'schemas'", path="schemas"))
            return None
        if not isinstance(schemas, list) or not schemas or not all(isinstance(s, str) for s in schemas):
            errors.append(InvalidSchemaDeclaration("'schemas' must be a non-empty array of URIs", path="schemas"))
            return None
        if core.id.lower() not in (s.lower() for s in schemas):
            errors.append(InvalidSchemaDeclaration(
                f"'schemas' must include the core schema '{core.id}' of {resource.resource_type}",
                path="schemas",
            ))
            return None
        if resource.id is not None and not isinstance(resource.id, str):
            errors.append(InvalidAttributeValue("Attribute 'id' must be a string", path="id"))
        return core

    def _declared_extensions(self, resource: Resource, core: ResourceSchema) -> List[ResourceSchema]:
        """Extension schemas listed in ``schemas`` that are bound to the resource type."""
        bound = {b.schema_uri.lower() for b in self.registry.extensions_for(resource.resource_type)}
        extensions = []
        seen = set()
        for uri in resource.schemas:
            key = uri.lower()
            if key == core.id.lower() or key in seen or key not in bound:
                continue
            seen.add(key)
            extensions.append(self.registry.lookup(uri))
        return extensions

    # -- Step 1: required attributes -----------------------------------------

    def _validate_required_attributes(self, resource: Resource, core: ResourceSchema,
                                      extensions: List[ResourceSchema], errors: List[SCIMError]):
        for attr_def in core.attributes:
            if attr_def.required and attr_def.mutability != READ_ONLY and is_empty(resource.get(attr_def.name)):
                errors.append(MissingRequiredAttribute(
                    f"Missing required attribute: '{attr_def.name}' (schema: {core.id})",
                    path=attr_def.name,
                ))

        for schema in extensions:
            key = find_key(resource.attributes, schema.id)
            extension_data = resource.attributes.get(key) if key is not None else None
            if extension_data is not None and not isinstance(extension_data, dict):
                # Reported by the extended-attribute check
                continue
            extension_data = extension_data or {}
            for attr_def in schema.attributes:
                if attr_def.required and attr_def.mutability != READ_ONLY:
                    sub_key = find_key(extension_data, attr_def.name)
                    if sub_key is None or is_empty(extension_data[sub_key]):
                        errors.append(MissingRequiredAttribute(
                            f"Missing required attribute: '{attr_def.name}' (schema: {schema.id})",
                            path=f"{schema.id}:{attr_def.name}",
                        ))

    # -- Step 2: schemas attribute -------------------------------------------

    def _validate_schemas_attribute(self, resource: Resource, core: ResourceSchema, errors: List[SCIMError]):
        declared = [uri.lower() for uri in resource.schemas]
        if declared.count(core.id.lower()) > 1:
            errors.append(InvalidSchemaDeclaration(
                f"Core schema '{core.id}' must appear exactly once in 'schemas'", path="schemas"
            ))

        bindings = self.registry.extensions_for(resource.resource_type)
        bound = {b.schema_uri.lower() for b in bindings}
        for uri in resource.schemas:
            if uri.lower() == core.id.lower():
                continue
            if self.registry.get(uri) is None:
                errors.append(InvalidSchemaDeclaration(f"Unknown schema URN: {uri}", path="schemas"))
            elif uri.lower() not in bound:
                errors.append(InvalidSchemaDeclaration(
                    f"Schema '{uri}' is not an extension of {resource.resource_type}", path="schemas"
                ))

        for binding in bindings:
            if binding.required and binding.schema_uri.lower() not in declared:
                errors.append(InvalidSchemaDeclaration(
                    f"Required extension '{binding.schema_uri}' is missing from 'schemas'", path="schemas"
                ))

        known_uris = self.registry.schema_uris()
        for key, value in resource.attributes.items():
            if not is_urn_key(key) or is_empty(value):
                continue
            uri = split_extension_key(key, known_uris)
            if uri is None:
                errors.append(InvalidSchemaDeclaration(
                    f"Attribute '{key}' belongs to an unknown schema", path=key
                ))
            elif uri.lower() == core.id.lower():
                errors.append(UnknownAttributePath(
                    f"Core attributes of {core.id} belong at the top level, not under '{key}'", path=key
                ))
            elif uri.lower() not in declared:
                errors.append(InvalidSchemaDeclaration(
                    f"Extension attributes under '{uri}' are present but the URI is not declared in 'schemas'",
                    path=key,
                ))

    # -- Step 3: per-attribute validity --------------------------------------

    def _validate_validable_attributes(self, resource: Resource, core: ResourceSchema,
                                       current: Optional[Resource], errors: List[SCIMError]):
        if current is not None and resource.id is not None and resource.id != current.id:
            errors.append(MutabilityViolation(
                f"Attribute 'id' is readOnly and cannot change from '{current.id}'", path="id"
            ))

        for key, value in resource.attributes.items():
            if is_urn_key(key):
                continue
            attr_def = core.attribute(key)
            if attr_def is None:
                errors.append(UnknownAttributePath(
                    f"Attribute '{key}' is not defined by schema {core.id}", path=key
                ))
                continue
            if attr_def.name in _SERVER_MANAGED:
                continue
            current_value = current.get(attr_def.name) if current is not None else None
            self._check_value(attr_def, value, key, errors, current is not None, current_value)

    def _check_value(self, attr_def: AttributeDefinition, value: Any, path: str, errors: List[SCIMError],
                     compare: bool = False, current_value: Any = None):
        """Check ``value`` against ``attr_def``.

        ``compare`` enables mutability checks against ``current_value``; it is
        off for creates and for elements of multi-valued attributes, whose
        persisted counterpart cannot be identified.
        """
        if value is None:
            return

        if compare and attr_def.mutability == READ_ONLY and value != current_value and not (
                is_empty(value) and is_empty(current_value)):
            errors.append(MutabilityViolation(
                f"Attribute '{attr_def.name}' is readOnly and cannot be changed by the client", path=path
            ))
            return
        if compare and attr_def.mutability == IMMUTABLE and not is_empty(current_value) and value != current_value:
            errors.append(MutabilityViolation(
                f"Attribute '{attr_def.name}' is immutable and already has a value", path=path
            ))
            return

        if attr_def.multi_valued:
            if not isinstance(value, list):
                errors.append(InvalidAttributeValue(
                    f"Attribute '{attr_def.name}' must be an array (multiValued)", path=path
                ))
                return
            for idx, item in enumerate(value):
                if item is None:
                    errors.append(InvalidAttributeValue(
                        f"Attribute '{attr_def.name}' must not contain null values", path=f"{path}[{idx}]"
                    ))
                    continue
                self._check_single(attr_def, item, f"{path}[{idx}]", errors, False, None)
        else:
            if isinstance(value, list):
                errors.append(InvalidAttributeValue(
                    f"Attribute '{attr_def.name}' is single-valued and must not be an array", path=path
                ))
                return
            self._check_single(attr_def, value, path, errors, compare, current_value)

    def _check_single(self, attr_def: AttributeDefinition, value: Any, path: str, errors: List[SCIMError],
                      compare: bool, current_value: Any):
        if value is None:
            return
        if attr_def.type != COMPLEX:
            if not _matches_type(attr_def.type, value):
                errors.append(InvalidAttributeValue(
                    f"Attribute '{attr_def.name}' must be of type {attr_def.type}, got {type(value).__name__}",
                    path=path,
                ))
            return

        if not isinstance(value, dict):
            errors.append(InvalidAttributeValue(
                f"Attribute '{attr_def.name}' must be an object (complex)", path=path
            ))
            return
        self._validate_complex_attribute(value, attr_def, path, errors, compare,
                                         current_value if isinstance(current_value, dict) else {})

    def _validate_complex_attribute(self, value: Dict[str, Any], attr_def: AttributeDefinition, path: str,
                                    errors: List[SCIMError], compare: bool, current_value: Dict[str, Any]):
        """Validate a complex attribute value."""
        for sub_name, sub_value in value.items():
            sub_def = attr_def.sub_attribute(sub_name)
            if sub_def is None:
                errors.append(UnknownAttributePath(
                    f"Unknown sub-attribute '{sub_name}' in '{path}'", path=f"{path}.{sub_name}"
                ))
                continue
            current_key = find_key(current_value, sub_def.name)
            current_sub = current_value[current_key] if current_key is not None else None
            self._check_value(sub_def, sub_value, f"{path}.{sub_name}", errors, compare, current_sub)

        for sub_def in attr_def.sub_attributes:
            if sub_def.required and sub_def.mutability != READ_ONLY:
                key = find_key(value, sub_def.name)
                if key is None or is_empty(value[key]):
                    errors.append(MissingRequiredAttribute(
                        f"Missing required sub-attribute: '{sub_def.name}' in '{path}'",
                        path=f"{path}.{sub_def.name}",
                    ))

    # -- Step 4: extension attributes ----------------------------------------

    def _validate_extended_attributes(self, resource: Resource, extensions: List[ResourceSchema],
                                      current: Optional[Resource], errors: List[SCIMError]):
        for schema in extensions:
            key = find_key(resource.attributes, schema.id)
            if key is None:
                continue
            extension_data = resource.attributes[key]
            if extension_data is None:
                continue
            # Extension schemas store attributes under the schema URN key
            if not isinstance(extension_data, dict):
                errors.append(InvalidAttributeValue(
                    f"Extension schema '{schema.id}' must be an object", path=schema.id
                ))
                continue

            current_data = current.get(schema.id) if current is not None else None
            if not isinstance(current_data, dict):
                current_data = {}
            for name, value in extension_data.items():
                attr_def = schema.attribute(name)
                path = f"{schema.id}:{name}"
                if attr_def is None:
                    errors.append(UnknownAttributePath(
                        f"Attribute '{name}' is not defined by extension schema {schema.id}", path=path
                    ))
                    continue
                current_key = find_key(current_data, attr_def.name)
                current_value = current_data[current_key] if current_key is not None else None
                self._check_value(attr_def, value, path, errors, current is not None, current_value)


def _matches_type(data_type: str, value: Any) -> bool:
    if data_type == BOOLEAN:
        return isinstance(value, bool)
    if data_type == INTEGER:
        return isinstance(value, int) and not isinstance(value, bool)
    if data_type == DECIMAL:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if data_type == DATETIME:
        return isinstance(value, str) and _parse_datetime(value) is not None
    if data_type == BINARY:
        if not isinstance(value, str):
            return False
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return False
        return True
    if data_type in (STRING, REFERENCE):
        return isinstance(value, str)
    return True


def _parse_datetime(value: str) -> Optional[datetime]:
    """Parse an xsd:dateTime; ``Z`` is accepted as UTC and fractions are cut to microseconds."""
    match = _DATETIME_RE.fullmatch(value)
    if not match:
        return None
    fraction = (match.group("fraction") or "").ljust(6, "0")[:6]
    tz = match.group("tz") or ""
    if tz == "Z":
        tz = "+00:00"
    try:
        return datetime.fromisoformat(f"{match.group('date')}T{match.group('time')}.{fraction}{tz}")
    except ValueError:
        return None


# -- PatchOp message ---------------------------------------------------------

def validate_patch_request(data: Any) -> ValidationResult:
    """Validate the structure of an RFC 7644 §3.5.2 PatchOp message."""
    errors: List[SCIMError] = []
    if not isinstance(data, dict):
        errors.append(InvalidPatchOperation("PATCH request must be a JSON object"))
        return ValidationResult(errors)

    # Check schemas
    if "schemas" not in data:
        errors.append(InvalidPatchOperation("Missing required field: 'schemas'"))
        return ValidationResult(errors)

    schemas = data.get("schemas") or []
    if not isinstance(schemas, list) or PATCH_OP_URN not in schemas:
        errors.append(InvalidPatchOperation(f"PATCH operation must include schema: '{PATCH_OP_URN}'"))

    # Check Operations array
    if "Operations" not in data:
        errors.append(InvalidPatchOperation("Missing required field: 'Operations'"))
        return ValidationResult(errors)

    operations = data.get("Operations")
    if not isinstance(operations, list):
        errors.append(InvalidPatchOperation("'Operations' must be an array"))
        return ValidationResult(errors)

    if not operations:
        errors.append(InvalidPatchOperation("'Operations' array cannot be empty"))
        return ValidationResult(errors)

    _check_operations(operations, errors)
    return ValidationResult(errors)


def validate_patch_operations(operations: Any) -> ValidationResult:
    """Structural check of a bare operation list, as found in a PatchOp message's ``Operations``.

    Items may be operation objects or ``PatchOperation`` instances; an empty
    list is valid and patches nothing.
    """
    errors: List[SCIMError] = []
    if not isinstance(operations, (list, tuple)):
        errors.append(InvalidPatchOperation("PATCH operations must be an array"))
        return ValidationResult(errors)
    _check_operations([op.to_dict() if isinstance(op, PatchOperation) else op for op in operations], errors)
    return ValidationResult(errors)


def _check_operations(operations: List[Any], errors: List[SCIMError]):
    valid_ops = ["add", "remove", "replace"]
    for idx, op in enumerate(operations):
        if not isinstance(op, dict):
            errors.append(InvalidPatchOperation(f"Operation {idx} must be an object"))
            continue

        op_type = op.get("op")
        if not op_type:
            errors.append(InvalidPatchOperation(f"Operation {idx}: missing required field 'op'"))
            continue

        if not isinstance(op_type, str) or op_type.lower() not in valid_ops:
            errors.append(InvalidPatchOperation(
                f"Operation {idx}: invalid 'op' value '{op_type}'. Must be one of: {', '.join(valid_ops)}"
            ))
            continue

        path = op.get("path")
        if path is not None and not isinstance(path, str):
            errors.append(InvalidPatchOperation(f"Operation {idx}: 'path' must be a string"))

        # Validate operation structure
        if op_type.lower() == "remove":
            if not path:
                errors.append(InvalidPatchOperation(f"Operation {idx}: 'remove' operation requires 'path'"))
        elif op.get("value") is None:
            errors.append(InvalidPatchOperation(f"Operation {idx}: '{op_type}' operation requires 'value'"))
        elif not path and not isinstance(op.get("value"), dict):
            errors.append(InvalidPatchOperation(
                f"Operation {idx}: '{op_type}' without 'path' requires an object 'value'"
            ))


# -- File and string helpers -------------------------------------------------

def validate_data(data: Any, operation: str = "full", registry: Optional[SchemaRegistry] = None,
                  resource_type: Optional[str] = None) -> ValidationResult:
    """Validate decoded JSON as a resource (``full``) or PatchOp message (``patch``)."""
    if operation == "patch":
        return validate_patch_request(data)
    return ResourceValidator(registry).validate(data, resource_type)


def validate_file(file_path: str, operation: str = "full", registry: Optional[SchemaRegistry] = None,
                  resource_type: Optional[str] = None) -> ValidationResult:
    """Validate a JSON file containing SCIM data."""
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        return ValidationResult([InvalidAttributeValue(f"Invalid JSON: {e}")])
    except OSError as e:
        return ValidationResult([InvalidAttributeValue(f"Error reading file: {e}")])
    return validate_data(data, operation, registry, resource_type)


def validate_string(json_str: str, operation: str = "full", registry: Optional[SchemaRegistry] = None,
                    resource_type: Optional[str] = None) -> ValidationResult:
    """Validate a JSON string containing SCIM data."""
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        return ValidationResult([InvalidAttributeValue(f"Invalid JSON: {e}")])
    return validate_data(data, operation, registry, resource_type)
