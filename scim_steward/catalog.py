"""Extension catalog backed by a JSON file.

File layout::

    {
        "User": [
            "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User",
            {"id": "urn:example:scim:extension:badge", "attributes": [...]},
            {"schema": "urn:example:scim:extension:badge", "required": true}
        ],
        "Group": []
    }

Entries are schema URIs already known to the registry, full schema
documents, or ``{"schema": ..., "required": ...}`` wrappers of either.
Resource types missing from the file have no extensions.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Union

logger = logging.getLogger(__name__)


class JsonFileCatalog:
    """Reads the catalog file on every ``extensions`` call so a reload sees edits."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def extensions(self, resource_type: str) -> Iterator[Any]:
        for entry in self._load().get(resource_type, []):
            if isinstance(entry, dict) and "schema" in entry and "id" not in entry:
                yield entry["schema"], bool(entry.get("required", False))
            else:
                yield entry

    def _load(self) -> Dict[str, List[Any]]:
        with self.path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Extension catalog {self.path} must be a JSON object keyed by resource type")
        logger.debug("Read extension catalog %s", self.path)
        return data
