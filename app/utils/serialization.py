"""JSON encoding of cached values and tolerant decoding of container members.

Hashes, lists and sets may hold members written by processes that do not
speak JSON. Reads therefore return a tagged result so callers can tell a
decoded value from a raw string.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Parsed:
    """Member that decoded as JSON."""

    value: Any


@dataclass(frozen=True)
class Raw:
    """Member kept as the raw stored string because it is not valid JSON."""

    value: str


DecodedMember = Parsed | Raw


def encode(value: Any) -> str:
    """Serialize a value for storage.

    Raises:
        TypeError: If the value is not JSON-serializable.
        ValueError: If the value contains circular references.
    """

    return json.dumps(value, ensure_ascii=False)


def decode(raw: str) -> Any:
    """Deserialize a stored value.

    Raises:
        ValueError: If ``raw`` is not valid JSON (``json.JSONDecodeError``).
    """

    return json.loads(raw)


def decode_member(raw: str) -> DecodedMember:
    """Decode a container member, falling back to the raw string."""

    try:
        return Parsed(json.loads(raw))
    except (json.JSONDecodeError, TypeError):
        return Raw(raw)
