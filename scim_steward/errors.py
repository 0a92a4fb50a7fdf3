"""Exception taxonomy shared by the registry, validator, and patch engine.

Each error carries the RFC 7644 §3.12 ``scimType`` a boundary layer would
report, the human-readable message, and the attribute path it refers to
(empty when the error is not tied to one attribute).
"""

from typing import Optional


class SCIMError(Exception):
    """Base class for every validation, schema, and patch failure."""

    scim_type: Optional[str] = "invalidValue"

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self):
        loc = f" at {self.path}" if self.path else ""
        return f"{self.message}{loc}"

    def __repr__(self):
        return f"{type(self).__name__}({self.message!r}, path={self.path!r})"


class MissingRequiredAttribute(SCIMError):
    """A required attribute is absent or empty."""


class InvalidSchemaDeclaration(SCIMError):
    """The ``schemas`` attribute disagrees with the resource content."""


class MutabilityViolation(SCIMError):
    """A client tried to change a readOnly or immutable value."""

    scim_type = "mutability"


class InvalidAttributeValue(SCIMError):
    """A value does not match its attribute's data type or plurality."""


class UnknownAttributePath(SCIMError):
    """A path names an attribute not declared by the applicable schemas."""

    scim_type = "invalidPath"


class InvalidPatchOperation(SCIMError):
    """A PATCH operation is malformed or ambiguous."""

    scim_type = "invalidSyntax"


class NoTarget(InvalidPatchOperation):
    """A filtered PATCH path matched no element."""

    scim_type = "noTarget"


class UnknownSchemaError(SCIMError):
    """A schema URI or resource type is not registered."""


class DuplicateSchemaError(SCIMError):
    """A schema with the same id is already registered."""

    scim_type = "uniqueness"


class StoreError(Exception):
    """A persistence collaborator failed to complete a call."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
