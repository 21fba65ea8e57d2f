"""
Pydantic schemas for the portal map.

All data structures shared between the engine, the codec and the review flow
are defined here.

Design Philosophy:
- Graph values (nodes, edges, snapshots) are frozen. Every mutation builds a new
  GraphSnapshot, so readers can hold on to one without locking.
- Edges store bare node ids only. Richer endpoint objects from rendering layers
  are collapsed by the engine before they get here.
- Wire models (Persisted*) are lenient: they accept what old save files and the
  original browser app wrote. The engine sanitizes whatever they carry.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Graph Schemas
# ============================================================================


class ZoneCategory(str, Enum):
    """Closed classification of a zone."""

    ROYAL = "ROYAL"
    BLACK = "BLACK"
    AVALON = "AVALON"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> Optional["ZoneCategory"]:
        """Return the matching category, or None for missing/unrecognised values."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class ZoneNode(BaseModel):
    """A zone in the graph, keyed by its canonical id."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Canonical zone key (trimmed, uppercase)")
    # Display label. Equal to id after a sanitizing load; a rename replaces both.
    name: str = Field(..., description="Display label")
    category: ZoneCategory = Field(ZoneCategory.UNKNOWN, description="Zone classification")


class PortalEdge(BaseModel):
    """A time-bound, undirected portal connection between two zones.

    ``source``/``target`` only record which side was observed first; matching
    always goes through :attr:`pair`.
    """

    model_config = ConfigDict(frozen=True)

    source: str = Field(..., description="Bare node id of one endpoint")
    target: str = Field(..., description="Bare node id of the other endpoint")
    expires_at: datetime = Field(..., description="Absolute UTC time the portal closes")

    @property
    def pair(self) -> frozenset[str]:
        return frozenset((self.source, self.target))

    def connects(self, a: str, b: str) -> bool:
        return (self.source == a and self.target == b) or (self.source == b and self.target == a)

    def touches(self, node_id: str) -> bool:
        return node_id in (self.source, self.target)

    def is_live(self, now: datetime) -> bool:
        return now < self.expires_at


class GraphSnapshot(BaseModel):
    """Complete, immutable state of the portal graph at one revision.

    The engine replaces its snapshot wholesale on every change; ``revision``
    increases by one each time so subscribers can tell snapshots apart cheaply.
    """

    model_config = ConfigDict(frozen=True)

    nodes: Tuple[ZoneNode, ...] = Field(default_factory=tuple)
    edges: Tuple[PortalEdge, ...] = Field(default_factory=tuple)
    revision: int = Field(0, ge=0, description="Monotonic revision counter")

    def node(self, node_id: str) -> Optional[ZoneNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def has_node(self, node_id: str) -> bool:
        return self.node(node_id) is not None

    def node_ids(self) -> set[str]:
        return {node.id for node in self.nodes}

    def find_edge(self, a: str, b: str) -> Optional[PortalEdge]:
        """Return the edge between ``a`` and ``b`` regardless of stored direction."""
        for edge in self.edges:
            if edge.connects(a, b):
                return edge
        return None

    def neighbors(self, node_id: str) -> List[str]:
        result: List[str] = []
        for edge in self.edges:
            if edge.source == node_id:
                result.append(edge.target)
            elif edge.target == node_id:
                result.append(edge.source)
        return result


class SanitizeReport(BaseModel):
    """Diagnostics from a sanitizing bulk load. Anomalies are dropped, not raised."""

    loaded_nodes: int = 0
    loaded_edges: int = 0
    # Rows with no usable id
    dropped_nodes: int = 0
    # Input nodes that normalized onto an id already taken by an earlier node
    merged_nodes: int = 0
    # Edges whose endpoint did not resolve to a surviving node
    dropped_edges: int = 0
    # Edges that became self-loops once both endpoints merged into one node
    dropped_self_loops: int = 0
    # Extra rows for an unordered pair already loaded (latest expiration kept)
    merged_duplicate_edges: int = 0

    @property
    def dropped_total(self) -> int:
        return (
            self.merged_nodes
            + self.dropped_nodes
            + self.dropped_edges
            + self.dropped_self_loops
            + self.merged_duplicate_edges
        )


# ============================================================================
# Observation Schemas
# ============================================================================


class ConnectionObservation(BaseModel):
    """A raw portal sighting from manual entry or the screenshot extractor.

    Any field may be missing: the extractor returns null for values it could
    not read. Field names from the extractor's JSON (``origem``, ``destino``,
    ``minutos_ate_fechar``) are accepted as aliases.
    """

    model_config = ConfigDict(populate_by_name=True)

    origin: Optional[str] = Field(
        None, validation_alias=AliasChoices("origin", "origem"),
    )
    destination: Optional[str] = Field(
        None, validation_alias=AliasChoices("destination", "destino"),
    )
    minutes_remaining: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("minutes_remaining", "minutesRemaining", "minutos_ate_fechar"),
    )

    def missing_fields(self) -> List[str]:
        missing = []
        if not self.origin or not self.origin.strip():
            missing.append("origin")
        if not self.destination or not self.destination.strip():
            missing.append("destination")
        if self.minutes_remaining is None:
            missing.append("minutes_remaining")
        return missing

    def is_complete(self) -> bool:
        return not self.missing_fields() and (self.minutes_remaining or 0) >= 0


class ValidationResult(BaseModel):
    """Outcome of checking a zone name against the known vocabulary."""

    is_valid: bool = False
    suggestions: List[str] = Field(default_factory=list)


# ============================================================================
# Persisted (wire) Schemas
# ============================================================================


class PersistedNode(BaseModel):
    """Node row as stored. Ids may predate normalization."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: Optional[str] = None
    # Kept as raw text so unknown labels from old files don't fail the whole load
    category: Optional[str] = Field(
        None, validation_alias=AliasChoices("category", "type"),
    )


class PersistedEdge(BaseModel):
    """Edge row as stored.

    Endpoints are usually bare ids but may be whole node objects when a
    rendering layer's link objects were saved directly.
    """

    model_config = ConfigDict(populate_by_name=True)

    endpoint_a: Any = Field(
        ...,
        validation_alias=AliasChoices("endpointA", "endpoint_a", "source"),
        serialization_alias="endpointA",
    )
    endpoint_b: Any = Field(
        ...,
        validation_alias=AliasChoices("endpointB", "endpoint_b", "target"),
        serialization_alias="endpointB",
    )
    expires_at: datetime = Field(
        ...,
        validation_alias=AliasChoices("expiresAt", "expires_at", "expiration"),
        serialization_alias="expiresAt",
    )

    @field_validator("expires_at", mode="before")
    @classmethod
    def _coerce_expiration(cls, value: Any) -> Any:
        # The browser app stored epoch milliseconds; ISO strings and datetimes
        # are handled by pydantic itself.
        if isinstance(value, bool):
            raise ValueError("expiresAt must be a timestamp, not a boolean")
        if isinstance(value, (int, float)):
            try:
                return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
            except (OverflowError, OSError, ValueError) as exc:
                raise ValueError(f"expiresAt {value!r} is not a representable epoch time") from exc
        return value

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class PersistedMap(BaseModel):
    """Flat persisted form of a graph: ``{nodes: [...], edges: [...]}``."""

    model_config = ConfigDict(populate_by_name=True)

    nodes: List[PersistedNode] = Field(default_factory=list)
    edges: List[PersistedEdge] = Field(
        default_factory=list, validation_alias=AliasChoices("edges", "links"),
    )
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form save metadata")
