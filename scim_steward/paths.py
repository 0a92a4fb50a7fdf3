"""Parsing of RFC 7644 §3.5.2 PATCH ``path`` expressions.

Supported forms::

    displayName
    name.givenName
    emails[type eq "work"]
    emails[type eq "work"].value
    urn:ietf:params:scim:schemas:extension:enterprise:2.0:User:department
    urn:ietf:params:scim:schemas:extension:enterprise:2.0:User

Value filters are limited to a single ``attr eq value`` comparison; richer
filter expressions are rejected rather than guessed at.
"""

import json
import re
from typing import Any, Dict, Iterable, NamedTuple, Optional

from .errors import InvalidPatchOperation, UnknownAttributePath
from .resource import find_key

_ATTR = r"[A-Za-z$][\w$-]*"
_PATH_RE = re.compile(rf"^(?P<attr>{_ATTR})(?:\[(?P<filter>[^\]]*)\])?(?:\.(?P<sub>{_ATTR}))?$")
_FILTER_RE = re.compile(rf"^\s*(?P<attr>{_ATTR})\s+(?P<op>[A-Za-z]+)\s+(?P<value>.+?)\s*$")


class ValueFilter(NamedTuple):
    """An exact-match selector on one sub-attribute of multi-valued elements."""

    attribute: str
    value: Any

    def matches(self, element: Any, case_exact: bool = False) -> bool:
        if not isinstance(element, dict):
            return False
        key = find_key(element, self.attribute)
        if key is None:
            return False
        actual = element[key]
        if isinstance(actual, str) and isinstance(self.value, str) and not case_exact:
            return actual.lower() == self.value.lower()
        return actual == self.value

    def __str__(self):
        return f"{self.attribute} eq {json.dumps(self.value)}"


class AttributePath(NamedTuple):
    """A parsed PATCH path.

    ``attribute`` is None when the path names a whole extension schema.
    """

    schema_uri: Optional[str]
    attribute: Optional[str]
    value_filter: Optional[ValueFilter] = None
    sub_attribute: Optional[str] = None

    def __str__(self):
        text = self.attribute or ""
        if self.value_filter is not None:
            text += f"[{self.value_filter}]"
        if self.sub_attribute:
            text += f".{self.sub_attribute}"
        if self.schema_uri:
            return f"{self.schema_uri}:{text}" if text else self.schema_uri
        return text


def parse_path(path: str, schema_uris: Iterable[str]) -> AttributePath:
    """Parse ``path``, resolving a leading schema URI against ``schema_uris``.

    ``schema_uris`` should be ordered longest first so that a URI that is a
    prefix of another does not shadow it.
    """
    text = path.strip()
    lower = text.lower()
    schema_uri = None
    for uri in schema_uris:
        if lower == uri.lower():
            return AttributePath(uri, None)
        if lower.startswith(uri.lower() + ":"):
            schema_uri = uri
            text = text[len(uri) + 1:]
            break

    head = text.split("[", 1)[0]
    if ":" in head:
        raise UnknownAttributePath(f"Path '{path}' references an unknown schema", path=path)

    match = _PATH_RE.match(text)
    if not match:
        raise InvalidPatchOperation(f"Invalid path expression: '{path}'", path=path)

    value_filter = None
    if match.group("filter") is not None:
        value_filter = _parse_filter(match.group("filter"), path)
    return AttributePath(schema_uri, match.group("attr"), value_filter, match.group("sub"))


def _parse_filter(expression: str, path: str) -> ValueFilter:
    match = _FILTER_RE.match(expression)
    if not match:
        raise InvalidPatchOperation(f"Invalid value filter '{expression}'", path=path)
    if match.group("op").lower() != "eq":
        # TODO: evaluate the remaining RFC 7644 §3.4.2.2 operators once a filter parser lands
        raise InvalidPatchOperation(
            f"Unsupported filter operator '{match.group('op')}'; only 'eq' is supported", path=path
        )
    try:
        value = json.loads(match.group("value"))
    except json.JSONDecodeError:
        raise InvalidPatchOperation(f"Invalid comparison value in filter '{expression}'", path=path)
    return ValueFilter(match.group("attr"), value)


def split_extension_key(key: str, schema_uris: Iterable[str]) -> Optional[str]:
    """Return the schema URI ``key`` names, if it is one of ``schema_uris``."""
    lower = key.lower()
    for uri in schema_uris:
        if uri.lower() == lower:
            return uri
    return None


def is_urn_key(key: Any) -> bool:
    """Extension objects sit under URN keys; plain attribute names never contain ':'."""
    return isinstance(key, str) and ":" in key


def filter_elements(elements: Any, value_filter: ValueFilter, case_exact: bool = False) -> Dict[int, Any]:
    """Indexes and values of the elements of ``elements`` matching ``value_filter``."""
    if not isinstance(elements, list):
        return {}
    return {idx: item for idx, item in enumerate(elements) if value_filter.matches(item, case_exact)}
