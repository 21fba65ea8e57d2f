"""
Graph state engine: the single owner of the portal graph.

Two layers live here:

1. Pure transition functions (``apply_connection``, ``apply_rename``,
   ``apply_category``, ``sanitize_graph``, ``sweep_expired``). Each takes a
   GraphSnapshot and returns a new one, or the very same object when nothing
   changed. No clocks, no locks, no logging side effects beyond the return
   value, so they are trivial to test.
2. ``GraphStateEngine``, a single-writer container around the current snapshot.
   Every mutation, whether from the UI, the AI pipeline, a persisted load or
   the expiration scheduler, goes through one lock and ends in one atomic
   snapshot replacement. Readers get the snapshot value, never the internal
   collections.

Expected bad input never raises: the engine returns False (or does nothing)
and logs a warning. Only a broken invariant raises GraphInvariantError.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .errors import GraphInvariantError
from .identity import endpoint_id, is_blank, normalize_zone_id
from .logging_utils import log_debug, log_error, log_info, log_warn
from .schemas import (
    ConnectionObservation,
    GraphSnapshot,
    PersistedEdge,
    PersistedNode,
    PortalEdge,
    SanitizeReport,
    ZoneCategory,
    ZoneNode,
)
from .zones import load_zone_classifier

Clock = Callable[[], datetime]
Classify = Callable[[str], ZoneCategory]
SnapshotListener = Callable[[GraphSnapshot, GraphSnapshot], None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================
# Pure transitions
# =============================


def apply_connection(
    graph: GraphSnapshot,
    origin: str,
    destination: str,
    minutes_remaining: int,
    *,
    now: datetime,
    classify: Classify,
) -> GraphSnapshot:
    """Record a portal sighting between ``origin`` and ``destination``.

    Missing nodes are created with their classified category. An existing edge
    for the unordered pair is replaced by a new edge value with the refreshed
    expiration (so change detection by identity works downstream); otherwise a
    new edge is appended. Afterwards exactly one edge joins the pair.

    A self-loop (both names normalize to the same id) returns ``graph`` as is.
    """

    a = normalize_zone_id(origin)
    b = normalize_zone_id(destination)
    if a == b:
        return graph

    nodes = list(graph.nodes)
    known = graph.node_ids()
    for zone_id in (a, b):
        if zone_id not in known:
            nodes.append(ZoneNode(id=zone_id, name=zone_id, category=classify(zone_id)))
            known.add(zone_id)

    expires_at = now + timedelta(minutes=minutes_remaining)

    edges: List[PortalEdge] = []
    refreshed = False
    for edge in graph.edges:
        if not edge.connects(a, b):
            edges.append(edge)
        elif not refreshed:
            # Keep the stored orientation; only the expiration moves
            edges.append(edge.model_copy(update={"expires_at": expires_at}))
            refreshed = True
        # Any further edge for the same pair is folded into the refreshed one
    if not refreshed:
        edges.append(PortalEdge(source=a, target=b, expires_at=expires_at))

    return GraphSnapshot(nodes=tuple(nodes), edges=tuple(edges), revision=graph.revision + 1)


def apply_rename(graph: GraphSnapshot, old_id: str, new_id: str) -> Optional[GraphSnapshot]:
    """Rename node ``old_id`` to ``new_id`` and rewrite every edge that touches it.

    Both ids must already be canonical. Returns None when the old node does not
    exist or when ``new_id`` belongs to a different node (a rename never merges
    two zones). Returns ``graph`` itself when the ids are equal.
    """

    node = graph.node(old_id)
    if node is None:
        return None
    if new_id == old_id:
        return graph
    if graph.has_node(new_id):
        return None

    renamed = node.model_copy(update={"id": new_id, "name": new_id})
    nodes = tuple(renamed if n.id == old_id else n for n in graph.nodes)

    edges: List[PortalEdge] = []
    for edge in graph.edges:
        if not edge.touches(old_id):
            edges.append(edge)
            continue
        # Rebuild from bare ids so nothing downstream keeps a stale reference
        source = new_id if edge.source == old_id else endpoint_id(edge.source)
        target = new_id if edge.target == old_id else endpoint_id(edge.target)
        edges.append(PortalEdge(source=source, target=target, expires_at=edge.expires_at))

    return GraphSnapshot(nodes=nodes, edges=tuple(edges), revision=graph.revision + 1)


def apply_category(graph: GraphSnapshot, node_id: str, category: ZoneCategory) -> GraphSnapshot:
    """Set the category of ``node_id``; unknown ids and no-op changes return ``graph``."""

    node = graph.node(node_id)
    if node is None or node.category == category:
        return graph
    updated = node.model_copy(update={"category": category})
    nodes = tuple(updated if n.id == node_id else n for n in graph.nodes)
    return GraphSnapshot(nodes=nodes, edges=graph.edges, revision=graph.revision + 1)


def sweep_expired(graph: GraphSnapshot, now: datetime) -> GraphSnapshot:
    """Drop edges with ``expires_at <= now`` and the nodes they leave stranded.

    Returns ``graph`` unchanged when nothing expired. This is the only path by
    which nodes leave the graph: a node survives exactly when at least one live
    edge still touches it.
    """

    live = tuple(edge for edge in graph.edges if edge.is_live(now))
    if len(live) == len(graph.edges):
        return graph

    touched: set[str] = set()
    for edge in live:
        touched.add(edge.source)
        touched.add(edge.target)

    nodes = tuple(node for node in graph.nodes if node.id in touched)
    return GraphSnapshot(nodes=nodes, edges=live, revision=graph.revision + 1)


def _node_row(raw: Any) -> Optional[PersistedNode]:
    if isinstance(raw, PersistedNode):
        return raw
    if isinstance(raw, ZoneNode):
        return PersistedNode(id=raw.id, name=raw.name, category=raw.category.value)
    if isinstance(raw, Mapping):
        try:
            return PersistedNode.model_validate(raw)
        except ValidationError:
            return None
    return None


def _edge_row(raw: Any) -> Optional[PersistedEdge]:
    if isinstance(raw, PersistedEdge):
        return raw
    if isinstance(raw, PortalEdge):
        return PersistedEdge(endpoint_a=raw.source, endpoint_b=raw.target, expires_at=raw.expires_at)
    if isinstance(raw, Mapping):
        try:
            return PersistedEdge.model_validate(raw)
        except ValidationError:
            return None
    return None


def _resolve_endpoint(ref: Any, id_map: Dict[str, str]) -> Optional[str]:
    try:
        raw_id = endpoint_id(ref)
    except ValueError:
        return None
    if raw_id in id_map:
        return id_map[raw_id]
    if is_blank(raw_id):
        return None
    # Edge names a node that never appeared in the node list
    return normalize_zone_id(raw_id)


def sanitize_graph(
    nodes: Iterable[Any],
    edges: Iterable[Any],
    *,
    classify: Classify,
    revision: int = 0,
) -> Tuple[GraphSnapshot, SanitizeReport]:
    """Build a consistent snapshot from dirty node/edge rows.

    Rows may be PersistedNode/PersistedEdge, ZoneNode/PortalEdge, or plain
    mappings in the persisted shape. Steps:

    1. Normalize every node id, remembering raw id -> canonical id.
    2. The first node for a canonical id wins (name forced to the id, category
       kept when it is a valid ZoneCategory, classified otherwise). Later rows
       for the same id are merged away.
    3. Resolve edge endpoints through that mapping, falling back to direct
       normalization. Edges with an endpoint outside the surviving nodes are
       dropped, as are self-loops produced by merging.
    4. Rows sharing an unordered pair collapse into one edge with the latest
       expiration.

    Nothing raises for bad rows; everything dropped is counted in the report.
    """

    report = SanitizeReport()
    id_map: Dict[str, str] = {}
    kept_nodes: Dict[str, ZoneNode] = {}

    for raw in nodes:
        row = _node_row(raw)
        if row is None or is_blank(row.id):
            report.dropped_nodes += 1
            continue
        node_id = normalize_zone_id(row.id)
        id_map[row.id] = node_id
        if node_id in kept_nodes:
            report.merged_nodes += 1
            continue
        category = ZoneCategory.parse(row.category) or classify(node_id)
        kept_nodes[node_id] = ZoneNode(id=node_id, name=node_id, category=category)

    kept_edges: List[PortalEdge] = []
    pair_index: Dict[frozenset[str], int] = {}

    for raw in edges:
        row = _edge_row(raw)
        if row is None:
            report.dropped_edges += 1
            continue
        a = _resolve_endpoint(row.endpoint_a, id_map)
        b = _resolve_endpoint(row.endpoint_b, id_map)
        if a is None or b is None or a not in kept_nodes or b not in kept_nodes:
            report.dropped_edges += 1
            continue
        if a == b:
            report.dropped_self_loops += 1
            continue

        edge = PortalEdge(source=a, target=b, expires_at=row.expires_at)
        pair = edge.pair
        if pair in pair_index:
            report.merged_duplicate_edges += 1
            index = pair_index[pair]
            if edge.expires_at > kept_edges[index].expires_at:
                kept_edges[index] = edge
            continue
        pair_index[pair] = len(kept_edges)
        kept_edges.append(edge)

    report.loaded_nodes = len(kept_nodes)
    report.loaded_edges = len(kept_edges)
    snapshot = GraphSnapshot(
        nodes=tuple(kept_nodes.values()),
        edges=tuple(kept_edges),
        revision=revision,
    )
    return snapshot, report


def check_invariants(graph: GraphSnapshot) -> None:
    """Raise GraphInvariantError if ``graph`` is structurally inconsistent."""

    node_ids = [node.id for node in graph.nodes]
    if len(node_ids) != len(set(node_ids)):
        raise GraphInvariantError(f"Duplicate node ids at revision {graph.revision}")
    known = set(node_ids)
    for edge in graph.edges:
        if edge.source == edge.target:
            raise GraphInvariantError(f"Self-loop on {edge.source} at revision {graph.revision}")
        if edge.source not in known or edge.target not in known:
            raise GraphInvariantError(
                f"Edge {edge.source} <-> {edge.target} references a missing node "
                f"at revision {graph.revision}"
            )


# =============================
# Single-writer container
# =============================


class GraphStateEngine:
    """
    Owns the authoritative portal graph.

    All producers share one mutation channel: a re-entrant lock around
    snapshot replacement. Operations are synchronous and never wait on I/O, so
    a scheduler tick and a user action can never interleave mid-mutation or
    overwrite each other's result.
    """

    def __init__(
        self,
        classifier: Optional[Classify] = None,
        clock: Optional[Clock] = None,
        listeners: Optional[List[SnapshotListener]] = None,
    ):
        """Create an empty graph.

        Args:
            classifier: Callable mapping a canonical id to its ZoneCategory.
                Defaults to the packaged zone table.
            clock: Returns the current aware UTC datetime. Injected by tests.
            listeners: Called with ``(previous, current)`` after every
                committed change.
        """
        # An empty ZoneClassifier is falsy, so test for None explicitly
        self.classifier: Classify = classifier if classifier is not None else load_zone_classifier()
        self._clock: Clock = clock or utc_now
        self._lock = threading.RLock()
        self._snapshot = GraphSnapshot()
        self._listeners: List[SnapshotListener] = list(listeners or [])

    # ------------------------------------------------------------------
    # Read interface
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> GraphSnapshot:
        return self._snapshot

    @property
    def nodes(self) -> Tuple[ZoneNode, ...]:
        return self._snapshot.nodes

    @property
    def edges(self) -> Tuple[PortalEdge, ...]:
        return self._snapshot.edges

    def now(self) -> datetime:
        return self._clock()

    def subscribe(self, listener: SnapshotListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: SnapshotListener) -> None:
        with self._lock:
            self._listeners = [item for item in self._listeners if item is not listener]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_connection(
        self,
        origin: Optional[str],
        destination: Optional[str],
        minutes_remaining: Optional[int],
    ) -> bool:
        """Add or refresh the portal between two zones.

        Returns False (graph untouched) for a missing endpoint, a missing or
        negative duration, or a self-loop.
        """
        if is_blank(origin) or is_blank(destination) or minutes_remaining is None:
            log_warn(
                "Attempted to add an invalid connection.",
                {"origin": origin, "destination": destination, "minutes_remaining": minutes_remaining},
            )
            return False
        if minutes_remaining < 0:
            log_warn(f"Rejected connection with negative duration ({minutes_remaining} min).")
            return False

        a = normalize_zone_id(origin)
        b = normalize_zone_id(destination)
        if a == b:
            log_warn(f"Rejected self-loop connection on {a}.")
            return False

        with self._lock:
            current = self._snapshot
            existed = current.find_edge(a, b) is not None
            updated = apply_connection(
                current, a, b, minutes_remaining, now=self._clock(), classify=self.classifier,
            )
            self._commit(current, updated)

        if existed:
            log_debug(f"Updated expiration for link: {a} <-> {b}")
        else:
            log_info(f"Adding connection: {a} -> {b} ({minutes_remaining} min)")
        return True

    def add_observation(self, observation: ConnectionObservation) -> bool:
        """``add_connection`` fed from a ConnectionObservation."""
        return self.add_connection(
            observation.origin, observation.destination, observation.minutes_remaining,
        )

    def update_node_name(self, old_name: Optional[str], new_name: Optional[str]) -> bool:
        """Rename a zone, carrying its edges along.

        Returns False when either name is blank, the zone doesn't exist, or the
        new name already belongs to a different zone. On failure the snapshot
        object is left exactly as it was.
        """
        if is_blank(old_name) or is_blank(new_name):
            log_warn("Rename rejected: zone names must not be empty.")
            return False

        old_id = normalize_zone_id(old_name)
        new_id = normalize_zone_id(new_name)

        with self._lock:
            current = self._snapshot
            updated = apply_rename(current, old_id, new_id)
            if updated is None:
                if current.has_node(old_id):
                    log_error(f"Rename rejected: zone {new_id} already exists.")
                else:
                    log_warn(f"Rename rejected: zone {old_id} not found.")
                return False
            self._commit(current, updated)

        if updated is not current:
            log_info(f"Node renamed from {old_id} to {new_id}")
        return True

    def update_node_type(self, node_id: Optional[str], category: ZoneCategory) -> None:
        """Override a zone's category. Unknown zones are ignored."""
        if is_blank(node_id):
            return
        zone_id = normalize_zone_id(node_id)
        category = ZoneCategory(category)

        with self._lock:
            current = self._snapshot
            updated = apply_category(current, zone_id, category)
            self._commit(current, updated)

        if updated is not current:
            log_debug(f"Zone {zone_id} marked as {category.value}")

    def set_graph(self, nodes: Iterable[Any], edges: Iterable[Any]) -> SanitizeReport:
        """Replace the whole graph from possibly dirty rows (see ``sanitize_graph``)."""
        nodes = list(nodes)
        edges = list(edges)
        log_info(f"Loading graph with {len(nodes)} nodes and {len(edges)} links.")

        with self._lock:
            current = self._snapshot
            updated, report = sanitize_graph(
                nodes, edges, classify=self.classifier, revision=current.revision + 1,
            )
            self._commit(current, updated)

        if report.dropped_total:
            log_warn(
                "Sanitized loaded graph: "
                f"{report.merged_nodes} merged node(s), "
                f"{report.dropped_nodes} unreadable node(s), "
                f"{report.dropped_edges} dangling link(s), "
                f"{report.dropped_self_loops} self-loop(s), "
                f"{report.merged_duplicate_edges} duplicate link(s) dropped."
            )
        return report

    def clear_graph(self) -> None:
        with self._lock:
            current = self._snapshot
            self._commit(current, GraphSnapshot(revision=current.revision + 1))
        log_info("Graph cleared.")

    def sweep_expired(self) -> bool:
        """Remove expired edges and orphaned nodes. Returns True if anything changed.

        Driven by the ExpirationScheduler rather than by user actions.
        """
        with self._lock:
            current = self._snapshot
            updated = sweep_expired(current, self._clock())
            if updated is current:
                return False
            self._commit(current, updated)

        removed_links = len(current.edges) - len(updated.edges)
        removed_nodes = len(current.nodes) - len(updated.nodes)
        log_info(f"Removed {removed_links} expired link(s).")
        if removed_nodes:
            log_info(f"Removed {removed_nodes} orphaned node(s).")
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _commit(self, previous: GraphSnapshot, updated: GraphSnapshot) -> None:
        """Swap in ``updated`` and notify listeners. Caller holds the lock."""
        if updated is previous:
            return
        check_invariants(updated)
        self._snapshot = updated
        for listener in list(self._listeners):
            try:
                listener(previous, updated)
            except Exception as exc:  # noqa: BLE001 - one listener must not block the others
                log_error(f"Graph listener {getattr(listener, '__name__', listener)!r} failed: {exc}")
