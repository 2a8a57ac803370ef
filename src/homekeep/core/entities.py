"""Entity collection names accepted by the household backend."""

from __future__ import annotations

import re

# Collection names are PascalCase identifiers, e.g. "Task", "ShoppingItem"
_ENTITY_TYPE_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]{0,63}$")


def validate_entity_type(entity_type: str) -> str:
    """Return ``entity_type`` if it is a well-formed collection name.

    The remote store is the authority on which collections exist; any
    well-formed name is accepted here.

    Raises:
        ValueError: If the name is empty or contains invalid characters.
    """
    if not isinstance(entity_type, str) or not _ENTITY_TYPE_PATTERN.match(entity_type):
        raise ValueError(f"Invalid entity type: {entity_type!r}")
    return entity_type
