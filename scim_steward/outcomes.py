"""The fixed set of results the decorator layer hands to the HTTP boundary.

Status-code mapping and body serialization stay with the boundary; these
objects only say what happened.
"""

from typing import Any, Dict, Optional

from .schemas import ERROR_URN

INVALID_VALUE = "invalidValue"


class Outcome:
    """Base class; ``ok`` is True only for ``Success``."""

    ok = False
    state: Optional[str] = None

    def __repr__(self):
        fields = ", ".join(f"{k}={v!r}" for k, v in vars(self).items() if k != "state")
        return f"{type(self).__name__}({fields})"


class Success(Outcome):
    ok = True

    def __init__(self, resource: Any = None):
        self.resource = resource


class ClientError(Outcome):
    """The request was rejected; ``kind`` is the RFC 7644 ``scimType``."""

    def __init__(self, kind: str, message: str):
        self.kind = kind
        self.message = message

    def to_error_body(self, status: int = 400) -> Dict[str, Any]:
        """RFC 7644 §3.12 error body, for boundaries that want it ready-made."""
        return {
            "schemas": [ERROR_URN],
            "status": str(status),
            "scimType": self.kind,
            "detail": self.message,
        }


class NotFound(Outcome):
    def __init__(self, message: str):
        self.message = message


class ServerError(Outcome):
    """A collaborator failed; the cause is logged, never reported."""

    def __init__(self, message: str = "Internal server error"):
        self.message = message
