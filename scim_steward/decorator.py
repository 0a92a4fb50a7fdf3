"""Validation and meta handling around a resource store.

``ResourceServiceDecorator`` sits between the HTTP layer and the store:
every create, update, and patch is validated before the store sees it,
server-owned ``meta`` replaces whatever the client sent, and failures come
back as ``outcomes`` rather than exceptions.

Request lifecycle::

    RECEIVED -> VALIDATING -> VALID -> META_ASSIGNED -> DELEGATING -> DONE
                           \\-> INVALID -> ERROR_REPORTED
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .errors import SCIMError
from .outcomes import INVALID_VALUE, ClientError, NotFound, Outcome, ServerError, Success
from .patch import PatchEngine, parse_patch_operations, parse_patch_request
from .registry import SchemaRegistry, default_registry
from .resource import Meta, Resource, coerce_resource, compute_version, format_timestamp, utc_now
from .schemas import READ_ONLY, ResourceSchema
from .store import ResourceStore
from .validator import ResourceValidator

logger = logging.getLogger(__name__)


class RequestState(Enum):
    RECEIVED = "received"
    VALIDATING = "validating"
    VALID = "valid"
    INVALID = "invalid"
    META_ASSIGNED = "meta_assigned"
    DELEGATING = "delegating"
    DONE = "done"
    ERROR_REPORTED = "error_reported"


class _Request:
    """Tracks one request through the lifecycle for logging and the outcome."""

    def __init__(self, operation: str, resource_type: str, resource_id: Optional[str] = None):
        self.operation = operation
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.states: List[RequestState] = []
        self.advance(RequestState.RECEIVED)

    def advance(self, state: RequestState):
        self.states.append(state)
        logger.debug("%s %s %s: %s", self.operation, self.resource_type, self.resource_id or "", state.value)

    def finish(self, outcome: Outcome) -> Outcome:
        if not outcome.ok and RequestState.INVALID not in self.states and isinstance(outcome, ClientError):
            self.advance(RequestState.INVALID)
        self.advance(RequestState.DONE if outcome.ok else RequestState.ERROR_REPORTED)
        outcome.state = self.states[-1].value
        return outcome


class ResourceServiceDecorator:
    """Validating front for a ``ResourceStore`` of one resource type.

    Args:
        store:          Persistence collaborator (``exists``/``create``/``update``/``delete``/``fetch``).
        resource_type:  Resource type handled, e.g. ``"User"``.
        registry:       Schema registry; defaults to the RFC 7643 schemas.
        clock:          Returns the current time; replaceable in tests.
    """

    def __init__(self, store: ResourceStore, resource_type: str, registry: Optional[SchemaRegistry] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.resource_type = resource_type
        self.registry = registry or default_registry()
        self.validator = ResourceValidator(self.registry)
        self.patch_engine = PatchEngine(self.registry)
        self.clock = clock

    # -- Public API ----------------------------------------------------------

    def create_resource(self, resource: Any) -> Outcome:
        request = _Request("create", self.resource_type)
        try:
            resource = self._coerce(resource)
        except (TypeError, ValueError) as e:
            return request.finish(ClientError(INVALID_VALUE, str(e)))

        request.advance(RequestState.VALIDATING)
        result = self.validator.validate(resource, self.resource_type)
        if not result.is_valid:
            logger.error("Validation check at create%s returned: %s", self.resource_type, result.error)
            request.advance(RequestState.INVALID)
            return request.finish(ClientError(INVALID_VALUE, result.error))
        request.advance(RequestState.VALID)

        candidate = resource.copy()
        self._strip_read_only(candidate)
        # Client-supplied meta never survives; location is filled in by the store
        now = format_timestamp(self.clock())
        candidate.meta = Meta(resource_type=self.resource_type, created=now, last_modified=now)
        candidate.meta.version = compute_version(candidate, now)
        request.advance(RequestState.META_ASSIGNED)

        request.advance(RequestState.DELEGATING)
        try:
            candidate.id = self.store.create(candidate)
        except Exception:
            logger.exception("Store failed to create %s", self.resource_type)
            return request.finish(ServerError())
        request.resource_id = candidate.id
        return request.finish(Success(self._for_response(candidate)))

    def update_resource(self, resource: Any, resource_id: str) -> Outcome:
        request = _Request("update", self.resource_type, resource_id)
        try:
            resource = self._coerce(resource)
        except (TypeError, ValueError) as e:
            return request.finish(ClientError(INVALID_VALUE, str(e)))

        current = self._fetch(resource_id)
        if isinstance(current, Outcome):
            return request.finish(current)

        request.advance(RequestState.VALIDATING)
        result = self.validator.validate(resource, self.resource_type, current=current)
        if not result.is_valid:
            logger.error("Validation check at update%s returned: %s", self.resource_type, result.error)
            request.advance(RequestState.INVALID)
            return request.finish(ClientError(INVALID_VALUE, result.error))
        request.advance(RequestState.VALID)

        candidate = resource.copy()
        candidate.id = current.id or resource_id
        self._carry_read_only(candidate, current)
        return self._persist_update(request, candidate, current)

    def delete_resource(self, resource_id: str) -> Outcome:
        request = _Request("delete", self.resource_type, resource_id)
        missing = self._check_existence(resource_id)
        if missing is not None:
            return request.finish(missing)
        request.advance(RequestState.DELEGATING)
        try:
            self.store.delete(resource_id)
        except Exception:
            logger.exception("Store failed to delete %s %s", self.resource_type, resource_id)
            return request.finish(ServerError())
        return request.finish(Success())

    def get_resource(self, resource_id: str) -> Outcome:
        request = _Request("get", self.resource_type, resource_id)
        missing = self._check_existence(resource_id)
        if missing is not None:
            return request.finish(missing)
        request.advance(RequestState.DELEGATING)
        current = self._fetch(resource_id)
        if isinstance(current, Outcome):
            return request.finish(current)
        return request.finish(Success(self._for_response(current)))

    def patch_resource(self, operations: Union[Dict[str, Any], Iterable[Any]], resource_id: str) -> Outcome:
        """Fetch, patch, re-validate, and store; the stored resource is untouched on any failure.

        ``operations`` is either a PatchOp message or a sequence of
        ``PatchOperation`` objects / operation dicts.
        """
        request = _Request("patch", self.resource_type, resource_id)
        try:
            if isinstance(operations, dict):
                operations = parse_patch_request(operations)
            else:
                operations = parse_patch_operations(operations)
        except SCIMError as e:
            return request.finish(ClientError(e.scim_type, e.message))

        current = self._fetch(resource_id)
        if isinstance(current, Outcome):
            return request.finish(current)

        try:
            patched = self.patch_engine.apply_patch(current, operations, self.resource_type)
        except SCIMError as e:
            logger.error("Patch of %s %s rejected: %s", self.resource_type, resource_id, e)
            return request.finish(ClientError(e.scim_type, e.message))

        request.advance(RequestState.VALIDATING)
        result = self.validator.validate(patched, self.resource_type, current=current)
        if not result.is_valid:
            logger.error("Validation check at patch%s returned: %s", self.resource_type, result.error)
            request.advance(RequestState.INVALID)
            return request.finish(ClientError(INVALID_VALUE, result.error))
        request.advance(RequestState.VALID)

        patched.id = current.id or resource_id
        return self._persist_update(request, patched, current)

    # -- Internals -----------------------------------------------------------

    def _coerce(self, resource: Any) -> Resource:
        resource = coerce_resource(resource, self.resource_type, self.registry)
        if resource.resource_type != self.resource_type:
            raise ValueError(f"Expected a {self.resource_type} resource, got {resource.resource_type}")
        return resource

    def _persist_update(self, request: _Request, candidate: Resource, current: Resource) -> Outcome:
        now = format_timestamp(self.clock())
        previous = current.meta or Meta()
        candidate.meta = Meta(
            resource_type=self.resource_type,
            created=previous.created,
            last_modified=now,
            location=previous.location,
        )
        candidate.meta.version = compute_version(candidate, now)
        request.advance(RequestState.META_ASSIGNED)

        request.advance(RequestState.DELEGATING)
        try:
            self.store.update(candidate)
        except Exception:
            logger.exception("Store failed to update %s %s", self.resource_type, candidate.id)
            return request.finish(ServerError())
        return request.finish(Success(self._for_response(candidate)))

    def _check_existence(self, resource_id: str) -> Optional[Outcome]:
        try:
            exists = self.store.exists(resource_id)
        except Exception:
            logger.exception("Store failed existence check for %s %s", self.resource_type, resource_id)
            return ServerError()
        if not exists:
            logger.info("%s with id %s not found", self.resource_type, resource_id)
            return NotFound(f"Resource {resource_id} not found")
        return None

    def _fetch(self, resource_id: str) -> Union[Resource, Outcome]:
        try:
            current = self.store.fetch(resource_id)
        except Exception:
            logger.exception("Store failed to fetch %s %s", self.resource_type, resource_id)
            return ServerError()
        if current is None:
            logger.info("%s with id %s not found", self.resource_type, resource_id)
            return NotFound(f"Resource {resource_id} not found")
        return coerce_resource(current, self.resource_type, self.registry)

    def _schemas_of(self, resource: Resource) -> List[ResourceSchema]:
        schemas = [self.registry.core_schema_for(self.resource_type)]
        declared = {uri.lower() for uri in resource.schemas or [] if isinstance(uri, str)}
        for binding in self.registry.extensions_for(self.resource_type):
            if binding.schema_uri.lower() in declared:
                schemas.append(self.registry.lookup(binding.schema_uri))
        return schemas

    def _read_only_names(self, resource: Resource):
        """Yield ``(container_key, attribute_name)`` for readOnly attributes; key None is the core."""
        core, *extensions = self._schemas_of(resource)
        for attr_def in core.attributes:
            if attr_def.mutability == READ_ONLY and attr_def.name not in ("id", "meta"):
                yield None, attr_def.name
        for schema in extensions:
            for attr_def in schema.attributes:
                if attr_def.mutability == READ_ONLY:
                    yield schema.id, attr_def.name

    def _strip_read_only(self, resource: Resource):
        """RFC 7644 §3.3: readOnly values sent on create are ignored."""
        resource.id = None
        for container_key, name in list(self._read_only_names(resource)):
            container = _container(resource, container_key)
            if container is not None:
                _pop(container, name)

    def _carry_read_only(self, candidate: Resource, current: Resource):
        """Keep server-owned values a replacement body omitted."""
        for container_key, name in list(self._read_only_names(candidate)):
            source = _container(current, container_key)
            if source is None:
                continue
            value = _pop(dict(source), name)
            if value is None:
                continue
            target = _container(candidate, container_key)
            if target is None:
                target = {}
                candidate.attributes[container_key] = target
            if _pop(dict(target), name) is None:
                target[name] = value

    def _for_response(self, resource: Resource) -> Resource:
        """Copy of ``resource`` without attributes marked ``returned: never``."""
        response = resource.copy()
        for schema in self._schemas_of(response):
            container = response.attributes if schema.id == self._core_uri() else _container(response, schema.id)
            if container is None:
                continue
            for attr_def in schema.attributes:
                if attr_def.returned == "never":
                    _pop(container, attr_def.name)
        return response

    def _core_uri(self) -> str:
        return self.registry.resource_type(self.resource_type).schema_uri


def _container(resource: Resource, key: Optional[str]) -> Optional[Dict[str, Any]]:
    if key is None:
        return resource.attributes
    value = resource.get(key)
    return value if isinstance(value, dict) else None


def _pop(container: Dict[str, Any], name: str) -> Any:
    lower = name.lower()
    for key in list(container):
        if key.lower() == lower:
            return container.pop(key)
    return None
