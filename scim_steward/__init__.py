"""scim-steward: SCIM 2.0 resource validation and PATCH engine.

Validates User, Group, and extension-bearing resources per RFC 7643 and
applies RFC 7644 add/remove/replace operations to them.  The
``ResourceServiceDecorator`` wraps a resource store with validation and
server-owned ``meta`` handling.
"""

__version__ = "0.1.0"
