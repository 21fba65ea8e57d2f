"""Snapshot codec: GraphSnapshot <-> flat persisted map.

The wire form is ``{"nodes": [{id, name, category}], "edges": [{endpointA,
endpointB, expiresAt}]}`` with ``expiresAt`` as an ISO-8601 UTC string.
Decoding also accepts the browser app's format (``links`` with
``source``/``target``/``expiration`` in epoch milliseconds).

Decoded data is never assigned to the engine directly; ``load_into`` always
routes it through the sanitizing ``GraphStateEngine.set_graph``.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, List, Tuple, TYPE_CHECKING

from pydantic import ValidationError

from .errors import SnapshotDecodeError
from .identity import endpoint_id
from .schemas import GraphSnapshot, PersistedEdge, PersistedMap, PersistedNode, SanitizeReport

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .engine import GraphStateEngine


def encode_snapshot(snapshot: GraphSnapshot) -> PersistedMap:
    """Flatten a snapshot into its persisted form. Endpoints are written as bare ids."""
    nodes = [
        PersistedNode(id=node.id, name=node.name, category=node.category.value)
        for node in snapshot.nodes
    ]
    edges = [
        PersistedEdge(
            endpoint_a=endpoint_id(edge.source),
            endpoint_b=endpoint_id(edge.target),
            expires_at=edge.expires_at.astimezone(timezone.utc),
        )
        for edge in snapshot.edges
    ]
    return PersistedMap(
        nodes=nodes,
        edges=edges,
        metadata={
            "revision": snapshot.revision,
            "saved_at": datetime.now(timezone.utc).isoformat(),
        },
    )


def dumps_snapshot(snapshot: GraphSnapshot, *, indent: int | None = 2) -> str:
    """Serialize a snapshot to JSON text."""
    data = encode_snapshot(snapshot).model_dump(mode="json", by_alias=True)
    return json.dumps(data, indent=indent)


def _rows(payload: Mapping[str, Any], *keys: str) -> List[Any]:
    for key in keys:
        if key in payload:
            rows = payload[key]
            if rows is None:
                return []
            if not isinstance(rows, list):
                raise SnapshotDecodeError(f"'{key}' must be a list, got {type(rows).__name__}")
            return rows
    return []


def _read_row(model: type[PersistedNode] | type[PersistedEdge], raw: Any) -> Any:
    # Unreadable rows are passed through as-is; the sanitizing load drops and counts them
    if not isinstance(raw, Mapping):
        return raw
    try:
        return model.model_validate(raw)
    except ValidationError:
        return raw


def decode_map(payload: PersistedMap | Mapping[str, Any] | str | bytes) -> Tuple[List[Any], List[Any]]:
    """Parse a persisted map into node and edge rows.

    Rows are returned as stored: ids are not normalized and duplicates are not
    merged. That is the engine's job. Rows that fail to parse are returned
    unchanged rather than failing the whole map, so ``set_graph`` can drop
    them and report the count.

    Raises:
        SnapshotDecodeError: If the payload is not JSON or not map-shaped
    """
    if isinstance(payload, PersistedMap):
        return list(payload.nodes), list(payload.edges)

    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise SnapshotDecodeError("payload is not valid JSON", underlying=exc) from exc
    if not isinstance(payload, Mapping):
        raise SnapshotDecodeError(f"expected a JSON object, got {type(payload).__name__}")

    nodes = [_read_row(PersistedNode, raw) for raw in _rows(payload, "nodes")]
    edges = [_read_row(PersistedEdge, raw) for raw in _rows(payload, "edges", "links")]
    return nodes, edges


def load_into(engine: "GraphStateEngine", payload: PersistedMap | Mapping[str, Any] | str | bytes) -> SanitizeReport:
    """Decode ``payload`` and hand it to the engine's sanitizing load.

    The engine is untouched if decoding fails.
    """
    nodes, edges = decode_map(payload)
    return engine.set_graph(nodes, edges)
