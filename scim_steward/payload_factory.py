"""Builders for valid SCIM payloads.

Each factory produces a minimal resource that passes ``ResourceValidator``
against the default registry, with UUID-based unique values so repeated
calls never collide on ``userName`` or ``displayName``.  Used by the test
suite and handy for seeding an ``InMemoryResourceStore``.
"""

import copy
import uuid
from typing import Any, Dict, List, Optional

from .schemas import ENTERPRISE_USER_SCHEMA_URN, GROUP_SCHEMA_URN, PATCH_OP_URN, USER_SCHEMA_URN


def _unique_suffix() -> str:
    """Generate an 8-character hex suffix for unique values."""
    return uuid.uuid4().hex[:8]


def make_user(extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Generate a valid User payload with unique userName and email.

    Includes ``name``, ``displayName``, ``active``, and ``emails`` so patch
    paths such as ``emails[type eq "work"].value`` have something to hit.
    """
    suffix = _unique_suffix()
    payload: Dict[str, Any] = {
        "schemas": [USER_SCHEMA_URN],
        "userName": f"steward-{suffix}@example.com",
        "name": {
            "givenName": "Steward",
            "familyName": f"Test-{suffix}",
        },
        "displayName": f"Steward Test User {suffix}",
        "active": True,
        "emails": [
            {
                "value": f"steward-{suffix}@example.com",
                "type": "work",
                "primary": True,
            }
        ],
    }
    if extra:
        payload.update(extra)
    return payload


def make_enterprise_user(enterprise: Optional[Dict[str, Any]] = None,
                         extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """A User that declares and populates the enterprise extension."""
    payload = make_user(extra)
    payload["schemas"] = payload["schemas"] + [ENTERPRISE_USER_SCHEMA_URN]
    payload[ENTERPRISE_USER_SCHEMA_URN] = enterprise or {
        "employeeNumber": _unique_suffix(),
        "department": "Engineering",
    }
    return payload


def make_group(
    members: Optional[List[Dict[str, Any]]] = None, extra: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Generate a valid Group payload with unique displayName."""
    suffix = _unique_suffix()
    payload: Dict[str, Any] = {
        "schemas": [GROUP_SCHEMA_URN],
        "displayName": f"steward-group-{suffix}",
    }
    if members:
        payload["members"] = members
    if extra:
        payload.update(extra)
    return payload


def make_patch(operations: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Wrap ``operations`` in a PatchOp message."""
    return {
        "schemas": [PATCH_OP_URN],
        "Operations": operations,
    }


def update_user_display_name(original: Dict[str, Any], new_name: str) -> Dict[str, Any]:
    """Return a copy of a user payload with ``displayName`` changed; the original is not mutated."""
    updated = copy.deepcopy(original)
    updated["displayName"] = new_name
    return updated
