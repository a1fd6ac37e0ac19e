"""
DID Update Chain - Canonical Serialization and Content Hashing

The issuer hashes a document when it signs the proof for it and every
verifier recomputes that hash from the fetched copy, so both sides must
serialize the same content to the same bytes.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import hashlib
import json
from enum import Enum
from typing import Any


def _serialize_value(value: Any) -> Any:
    """
    Convert a value to its JSON form following canonical rules.

    - Enums as their value
    - Tuples as lists
    - Objects exposing to_dict() as that dictionary
    - Floats are rejected; documents carry strings, integers and booleans only
    """
    if value is None or isinstance(value, (bool, int, str)):
        return value

    if isinstance(value, float):
        raise ValueError("Floating point values have no canonical form")

    if isinstance(value, Enum):
        return value.value

    if isinstance(value, (list, tuple)):
        return [_serialize_value(item) for item in value]

    if isinstance(value, dict):
        return {str(k): _serialize_value(v) for k, v in value.items()}

    if hasattr(value, "to_dict"):
        return _serialize_value(value.to_dict())

    raise TypeError(f"Cannot serialize {type(value)}")


def _sort_keys_recursive(obj: Any) -> Any:
    """Recursively sort dictionary keys alphabetically."""
    if isinstance(obj, dict):
        return {k: _sort_keys_recursive(v) for k, v in sorted(obj.items())}
    if isinstance(obj, list):
        return [_sort_keys_recursive(item) for item in obj]
    return obj


def canonical_serialize(document: Any) -> bytes:
    """
    Serialize a document to canonical JSON bytes.

    Canonical format:
    1. JSON format
    2. UTF-8 encoding
    3. Keys sorted alphabetically (recursive)
    4. No whitespace between elements
    5. No trailing newline
    6. List order preserved as given
    """
    if isinstance(document, dict):
        obj = dict(document)
    elif hasattr(document, "to_dict"):
        obj = document.to_dict()
    else:
        raise TypeError(f"Cannot serialize {type(document)}")

    obj = _sort_keys_recursive(_serialize_value(obj))

    json_str = json.dumps(
        obj,
        separators=(",", ":"),
        ensure_ascii=False,
        sort_keys=True,
    )
    return json_str.encode("utf-8")


def compute_hash(document: Any) -> str:
    """
    Compute the SHA-256 hash of a document's canonical serialization.

    Returns the hash as a lowercase hexadecimal string.
    """
    return hashlib.sha256(canonical_serialize(document)).hexdigest()

