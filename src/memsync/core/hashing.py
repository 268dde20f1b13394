"""
Deterministic fingerprints for change detection.

Manifesto:
    The poll loops must decide "did anything change?" without keeping or
    comparing full snapshots.  A fingerprint is a short SHA-256 digest of
    a stable serialisation of the parts of a snapshot that matter:

    - **Key fingerprint:** sorted keys only (presence changes)
    - **Version fingerprint:** sorted ``key@timestamp`` pairs (content changes)

    Same inputs always produce the same fingerprint, in any input order.

Examples:
    >>> fingerprint_keys(["b", "a"]) == fingerprint_keys(["a", "b"])
    True
    >>> fingerprint_versions({"a": 1}) == fingerprint_versions({"a": 2})
    False

Tags:
    hashing, fingerprint, change-detection, memsync
"""

import hashlib
from collections.abc import Iterable, Mapping
from typing import Any


def compute_hash(*values: Any, length: int = 32) -> str:
    """Deterministic SHA-256 hash of ``values`` joined with ``|``."""
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]


def fingerprint_keys(keys: Iterable[str]) -> str:
    """Fingerprint of a set of keys, independent of iteration order."""
    return compute_hash(*sorted(keys))


def fingerprint_versions(versions: Mapping[str, Any]) -> str:
    """Fingerprint of ``key -> version`` pairs (e.g. last-modified millis)."""
    return compute_hash(*(f"{key}@{versions[key]}" for key in sorted(versions)))
