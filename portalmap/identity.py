"""Zone identity normalization.

Every node id in the graph is produced here. Zone names reach the engine from
OCR output, manual typing and old save files, so "Zone A", " zone a" and
"ZONE A" must all collapse to the same key.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional


def is_blank(raw: Optional[str]) -> bool:
    """Return True for None or whitespace-only strings."""
    return raw is None or not str(raw).strip()


def normalize_zone_id(raw: str) -> str:
    """Return the canonical key for a zone name (trimmed, uppercase).

    Idempotent: ``normalize_zone_id(normalize_zone_id(x)) == normalize_zone_id(x)``.

    Raises:
        ValueError: If ``raw`` is None or blank. Callers filter those first.
    """
    if is_blank(raw):
        raise ValueError("Zone name must be a non-empty string")
    return str(raw).strip().upper()


def endpoint_id(ref: Any) -> str:
    """Extract the bare node id from an edge endpoint reference.

    Rendering layers (force-directed layouts in particular) replace link
    endpoints with the node objects themselves. Accepts a plain string, a
    mapping with an ``"id"`` key, or any object exposing ``id``.
    """
    if isinstance(ref, str):
        return ref
    if isinstance(ref, Mapping):
        if "id" not in ref:
            raise ValueError(f"Endpoint mapping has no 'id': {ref!r}")
        return str(ref["id"])
    node_id = getattr(ref, "id", None)
    if node_id is None:
        raise ValueError(f"Unsupported endpoint reference: {ref!r}")
    return str(node_id)


def canonical_endpoint(ref: Any) -> str:
    """Bare id of ``ref`` passed through :func:`normalize_zone_id`."""
    return normalize_zone_id(endpoint_id(ref))
