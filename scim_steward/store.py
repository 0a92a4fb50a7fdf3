"""Persistence collaborators the decorator delegates to.

The decorator only needs five operations, captured by ``ResourceStore``.
Two implementations ship: an in-process dict store and a store that
forwards to a remote SCIM endpoint over HTTP.
"""

import copy
import logging
import threading
import uuid
from typing import Dict, Optional, Protocol

from .errors import StoreError
from .http_client import SCIMClient, SCIMResponse
from .resource import Meta, Resource

logger = logging.getLogger(__name__)


class ResourceStore(Protocol):
    def exists(self, resource_id: str) -> bool: ...

    def create(self, resource: Resource) -> str: ...

    def update(self, resource: Resource) -> None: ...

    def delete(self, resource_id: str) -> None: ...

    def fetch(self, resource_id: str) -> Optional[Resource]: ...


class InMemoryResourceStore:
    """Thread-safe dict-backed store for one resource type.

    Stored resources are deep copies; callers never share state with the store.
    """

    def __init__(self, resource_type: str, base_url: Optional[str] = None, endpoint: Optional[str] = None):
        self.resource_type = resource_type
        self.base_url = base_url.rstrip("/") if base_url else None
        self.endpoint = endpoint or f"/{resource_type}s"
        self._lock = threading.Lock()
        self._resources: Dict[str, Resource] = {}

    def exists(self, resource_id: str) -> bool:
        with self._lock:
            return resource_id in self._resources

    def create(self, resource: Resource) -> str:
        resource_id = uuid.uuid4().hex
        stored = resource.copy()
        stored.id = resource_id
        self._set_location(stored)
        with self._lock:
            self._resources[resource_id] = stored
        # Caller's resource reflects what was stored
        resource.id = resource_id
        resource.meta = copy.copy(stored.meta)
        logger.debug("Created %s %s", self.resource_type, resource_id)
        return resource_id

    def update(self, resource: Resource) -> None:
        stored = resource.copy()
        self._set_location(stored)
        with self._lock:
            if stored.id not in self._resources:
                raise StoreError(f"{self.resource_type} {stored.id} does not exist", status_code=404)
            self._resources[stored.id] = stored
        resource.meta = copy.copy(stored.meta)

    def delete(self, resource_id: str) -> None:
        with self._lock:
            if self._resources.pop(resource_id, None) is None:
                raise StoreError(f"{self.resource_type} {resource_id} does not exist", status_code=404)

    def fetch(self, resource_id: str) -> Optional[Resource]:
        with self._lock:
            stored = self._resources.get(resource_id)
        return stored.copy() if stored is not None else None

    def __len__(self):
        with self._lock:
            return len(self._resources)

    def _set_location(self, resource: Resource):
        if self.base_url is None:
            return
        if resource.meta is None:
            resource.meta = Meta(resource_type=self.resource_type)
        resource.meta.location = f"{self.base_url}{self.endpoint}/{resource.id}"


class HttpResourceStore:
    """Store backed by a remote SCIM service provider.

    Args:
        client:         Configured ``SCIMClient`` for the remote base URL.
        resource_type:  Resource type name, e.g. ``"User"``.
        endpoint:       Collection path on the remote server, e.g. ``"/Users"``.
    """

    def __init__(self, client: SCIMClient, resource_type: str, endpoint: Optional[str] = None):
        self.client = client
        self.resource_type = resource_type
        self.endpoint = endpoint or f"/{resource_type}s"

    def exists(self, resource_id: str) -> bool:
        resp = self.client.get(self._path(resource_id))
        if resp.status_code == 404:
            return False
        self._expect(resp, 200, "look up")
        return True

    def create(self, resource: Resource) -> str:
        payload = resource.to_dict()
        payload.pop("id", None)
        resp = self.client.post(self.endpoint, payload)
        self._expect(resp, (200, 201), "create")
        body = resp.json() or {}
        resource_id = body.get("id")
        if not resource_id:
            raise StoreError(f"Remote create of {self.resource_type} returned no id", status_code=resp.status_code)
        resource.id = resource_id
        location = (body.get("meta") or {}).get("location") or resp.header("Location")
        if location and resource.meta is not None:
            resource.meta.location = location
        return resource_id

    def update(self, resource: Resource) -> None:
        resp = self.client.put(self._path(resource.id), resource.to_dict())
        self._expect(resp, 200, "update")

    def delete(self, resource_id: str) -> None:
        resp = self.client.delete(self._path(resource_id))
        self._expect(resp, (200, 204), "delete")

    def fetch(self, resource_id: str) -> Optional[Resource]:
        resp = self.client.get(self._path(resource_id))
        if resp.status_code == 404:
            return None
        self._expect(resp, 200, "fetch")
        return Resource.from_dict(resp.json(), self.resource_type)

    def _path(self, resource_id: str) -> str:
        return f"{self.endpoint}/{resource_id}"

    def _expect(self, resp: SCIMResponse, statuses, action: str):
        if isinstance(statuses, int):
            statuses = (statuses,)
        if resp.status_code not in statuses:
            logger.warning("Remote %s of %s failed with HTTP %d: %s",
                           action, self.resource_type, resp.status_code, resp.error_detail())
            raise StoreError(f"Remote {action} of {self.resource_type} failed with HTTP {resp.status_code}",
                             status_code=resp.status_code)
