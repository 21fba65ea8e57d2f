"""Tests for the graph state engine and its pure transitions."""

import threading
from datetime import datetime, timedelta, timezone
from itertools import combinations

import pytest

from portalmap.engine import (
    GraphStateEngine,
    apply_connection,
    apply_rename,
    check_invariants,
    sanitize_graph,
    sweep_expired,
)
from portalmap.errors import GraphInvariantError
from portalmap.schemas import (
    ConnectionObservation,
    GraphSnapshot,
    PortalEdge,
    ZoneCategory,
    ZoneNode,
)
from portalmap.zones import ZoneClassifier


START = datetime(2160, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock so expirations are deterministic."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_engine(clock: FakeClock | None = None) -> GraphStateEngine:
    classifier = ZoneClassifier(
        {
            "MARTLOCK": ZoneCategory.ROYAL,
            "CAERLEON": ZoneCategory.BLACK,
            "XASES-ATRAGLOS": ZoneCategory.AVALON,
        }
    )
    return GraphStateEngine(classifier=classifier, clock=clock or FakeClock())


def pairs(snapshot: GraphSnapshot) -> list[frozenset[str]]:
    return [edge.pair for edge in snapshot.edges]


# ---------------------------------------------------------------------------
# add_connection
# ---------------------------------------------------------------------------


def test_add_connection_creates_nodes_with_classified_category():
    clock = FakeClock()
    engine = make_engine(clock)

    assert engine.add_connection("Martlock", "xases-atraglos", 30) is True

    snapshot = engine.snapshot
    assert [node.id for node in snapshot.nodes] == ["MARTLOCK", "XASES-ATRAGLOS"]
    assert snapshot.node("MARTLOCK").category == ZoneCategory.ROYAL
    assert snapshot.node("XASES-ATRAGLOS").category == ZoneCategory.AVALON
    assert all(node.name == node.id for node in snapshot.nodes)

    (edge,) = snapshot.edges
    assert (edge.source, edge.target) == ("MARTLOCK", "XASES-ATRAGLOS")
    assert edge.expires_at == START + timedelta(minutes=30)


def test_unknown_zone_defaults_to_unknown_category():
    engine = make_engine()
    engine.add_connection("Nowhere", "Martlock", 10)
    assert engine.snapshot.node("NOWHERE").category == ZoneCategory.UNKNOWN


def test_repeated_observation_refreshes_expiration_in_either_direction():
    clock = FakeClock()
    engine = make_engine(clock)
    engine.add_connection("ZONE A", "ZONE B", 10)
    first_edge = engine.edges[0]

    clock.advance(minutes=5)
    engine.add_connection("zone b", " zone a ", 60)

    assert len(engine.edges) == 1
    refreshed = engine.edges[0]
    assert refreshed.expires_at == START + timedelta(minutes=65)
    # A new value, not an in-place mutation, so identity-based change detection sees it
    assert refreshed is not first_edge
    assert first_edge.expires_at == START + timedelta(minutes=10)
    # Stored orientation is kept
    assert (refreshed.source, refreshed.target) == ("ZONE A", "ZONE B")


def test_no_duplicate_edges_after_any_sequence_of_additions():
    engine = make_engine()
    names = ["a", "B", " c ", "A", "b", "C "]
    for origin, destination in combinations(names, 2):
        engine.add_connection(origin, destination, 15)
        edge_pairs = pairs(engine.snapshot)
        assert len(edge_pairs) == len(set(edge_pairs))

    assert sorted(sorted(pair) for pair in pairs(engine.snapshot)) == [
        ["A", "B"],
        ["A", "C"],
        ["B", "C"],
    ]


def test_self_loop_is_rejected_and_graph_unchanged():
    engine = make_engine()
    engine.add_connection("ZONE B", "ZONE C", 10)
    before = engine.snapshot

    assert engine.add_connection("ZONE A", "zone a", 10) is False
    assert engine.snapshot is before


@pytest.mark.parametrize(
    "origin, destination, minutes",
    [
        (None, "ZONE B", 10),
        ("ZONE A", None, 10),
        ("", "ZONE B", 10),
        ("ZONE A", "   ", 10),
        ("ZONE A", "ZONE B", None),
        ("ZONE A", "ZONE B", -1),
    ],
)
def test_invalid_connection_is_a_signalled_no_op(origin, destination, minutes):
    engine = make_engine()
    before = engine.snapshot
    assert engine.add_connection(origin, destination, minutes) is False
    assert engine.snapshot is before


def test_add_observation_uses_extractor_field_names():
    engine = make_engine()
    observation = ConnectionObservation.model_validate(
        {"origem": "Martlock", "destino": "Caerleon", "minutos_ate_fechar": 477}
    )
    assert engine.add_observation(observation) is True
    assert engine.snapshot.find_edge("CAERLEON", "MARTLOCK") is not None
    assert engine.add_observation(ConnectionObservation(origin="Martlock")) is False


def test_apply_connection_folds_pre_existing_duplicates():
    graph = GraphSnapshot(
        nodes=(ZoneNode(id="A", name="A"), ZoneNode(id="B", name="B")),
        edges=(
            PortalEdge(source="A", target="B", expires_at=START),
            PortalEdge(source="B", target="A", expires_at=START),
        ),
    )
    updated = apply_connection(graph, "A", "B", 5, now=START, classify=lambda _: ZoneCategory.UNKNOWN)
    assert len(updated.edges) == 1
    assert updated.edges[0].expires_at == START + timedelta(minutes=5)
    assert updated.revision == graph.revision + 1


# ---------------------------------------------------------------------------
# update_node_name / update_node_type
# ---------------------------------------------------------------------------


def test_rename_collision_fails_and_leaves_snapshot_identical():
    engine = make_engine()
    engine.add_connection("A", "B", 10)
    before = engine.snapshot
    before_dump = before.model_dump_json()

    assert engine.update_node_name("A", "b") is False
    assert engine.snapshot is before
    assert engine.snapshot.model_dump_json() == before_dump


def test_rename_propagates_to_edges_and_keeps_expiration():
    engine = make_engine()
    engine.add_connection("A", "C", 10)
    expires_at = engine.edges[0].expires_at

    assert engine.update_node_name("a", " z ") is True

    snapshot = engine.snapshot
    assert not snapshot.has_node("A")
    renamed = snapshot.node("Z")
    assert renamed is not None and renamed.name == "Z"
    edge = snapshot.find_edge("Z", "C")
    assert edge is not None
    assert edge.expires_at == expires_at


def test_rename_keeps_category_and_position():
    engine = make_engine()
    engine.add_connection("Martlock", "B", 10)
    assert engine.update_node_name("MARTLOCK", "Martlock Portal") is True
    first = engine.nodes[0]
    assert first.id == "MARTLOCK PORTAL"
    assert first.category == ZoneCategory.ROYAL


def test_rename_to_same_normalized_name_succeeds_without_change():
    engine = make_engine()
    engine.add_connection("A", "B", 10)
    before = engine.snapshot
    assert engine.update_node_name("A", " a ") is True
    assert engine.snapshot is before


@pytest.mark.parametrize("old, new", [("MISSING", "Z"), ("A", ""), (None, "Z")])
def test_rename_rejects_missing_node_or_blank_names(old, new):
    engine = make_engine()
    engine.add_connection("A", "B", 10)
    before = engine.snapshot
    assert engine.update_node_name(old, new) is False
    assert engine.snapshot is before


def test_apply_rename_returns_none_on_collision():
    graph = GraphSnapshot(nodes=(ZoneNode(id="A", name="A"), ZoneNode(id="B", name="B")))
    assert apply_rename(graph, "A", "B") is None


def test_update_node_type_overrides_category_without_touching_edges():
    engine = make_engine()
    engine.add_connection("A", "B", 10)
    edges_before = engine.edges

    engine.update_node_type("a", ZoneCategory.BLACK)

    assert engine.snapshot.node("A").category == ZoneCategory.BLACK
    assert engine.edges == edges_before


def test_update_node_type_on_missing_node_is_silent():
    engine = make_engine()
    engine.add_connection("A", "B", 10)
    before = engine.snapshot
    engine.update_node_type("NOPE", ZoneCategory.AVALON)
    assert engine.snapshot is before


# ---------------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------------


def test_sweep_removes_expired_edge_and_orphaned_node_in_same_pass():
    clock = FakeClock()
    engine = make_engine(clock)
    engine.set_graph(
        nodes=[{"id": "A"}, {"id": "B"}, {"id": "C"}],
        edges=[
            {"endpointA": "A", "endpointB": "B", "expiresAt": (START - timedelta(milliseconds=1)).isoformat()},
            {"endpointA": "B", "endpointB": "C", "expiresAt": (START + timedelta(minutes=1)).isoformat()},
        ],
    )

    assert engine.sweep_expired() is True

    snapshot = engine.snapshot
    assert [node.id for node in snapshot.nodes] == ["B", "C"]
    assert pairs(snapshot) == [frozenset({"B", "C"})]


def test_sweep_leaves_live_edges_untouched():
    clock = FakeClock()
    engine = make_engine(clock)
    engine.add_connection("A", "B", 1)
    before = engine.snapshot

    assert engine.sweep_expired() is False
    assert engine.snapshot is before


def test_edge_expires_exactly_at_its_deadline():
    clock = FakeClock()
    engine = make_engine(clock)
    engine.add_connection("A", "B", 1)

    clock.advance(seconds=59)
    assert engine.sweep_expired() is False
    clock.advance(seconds=1)
    assert engine.sweep_expired() is True
    assert engine.nodes == ()
    assert engine.edges == ()


def test_sweeps_never_overwrite_concurrent_additions():
    engine = make_engine()
    writers, per_writer = 4, 50
    barrier = threading.Barrier(writers + 1)
    writing = threading.Event()
    writing.set()
    added = []

    def write(worker: int) -> None:
        barrier.wait()
        for index in range(per_writer):
            added.append(engine.add_connection(f"W{worker}-{index}", f"W{worker}-{index}-B", 60))

    def sweep() -> None:
        barrier.wait()
        rounds = 0
        while writing.is_set():
            # zero-minute edges are already expired, so every sweep commits a change
            engine.add_connection(f"GONE-{rounds}", f"GONE-{rounds}-B", 0)
            engine.sweep_expired()
            rounds += 1

    threads = [threading.Thread(target=write, args=(worker,)) for worker in range(writers)]
    sweeper = threading.Thread(target=sweep)
    sweeper.start()
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    writing.clear()
    sweeper.join()
    engine.sweep_expired()

    assert len(added) == writers * per_writer and all(added)
    snapshot = engine.snapshot
    check_invariants(snapshot)
    expected = {
        frozenset({f"W{worker}-{index}", f"W{worker}-{index}-B"})
        for worker in range(writers)
        for index in range(per_writer)
    }
    assert set(pairs(snapshot)) == expected
    assert not any(node_id.startswith("GONE-") for node_id in snapshot.node_ids())


def test_sweep_function_returns_same_object_when_nothing_expired():
    graph = GraphSnapshot(
        nodes=(ZoneNode(id="A", name="A"), ZoneNode(id="B", name="B")),
        edges=(PortalEdge(source="A", target="B", expires_at=START + timedelta(minutes=1)),),
    )
    assert sweep_expired(graph, START) is graph


# ---------------------------------------------------------------------------
# Sanitizing load
# ---------------------------------------------------------------------------


def test_sanitizing_merge_collapses_case_duplicates_and_drops_self_loop():
    engine = make_engine()
    expires = (START + timedelta(hours=1)).isoformat()

    report = engine.set_graph(
        nodes=[{"id": "Zone A"}, {"id": "ZONE A"}],
        edges=[{"endpointA": "Zone A", "endpointB": "ZONE A", "expiresAt": expires}],
    )

    snapshot = engine.snapshot
    assert [(node.id, node.name) for node in snapshot.nodes] == [("ZONE A", "ZONE A")]
    assert snapshot.edges == ()
    assert report.merged_nodes == 1
    assert report.dropped_self_loops == 1


def test_sanitizing_load_resolves_rich_endpoints_and_drops_dangling_edges():
    engine = make_engine()
    expires_ms = int((START + timedelta(minutes=30)).timestamp() * 1000)

    report = engine.set_graph(
        nodes=[
            {"id": " martlock ", "name": "whatever", "category": "black"},
            {"id": "xases-atraglos"},
            {"id": "lonely"},
            {"name": "no id at all"},
        ],
        edges=[
            # Rendering layer replaced endpoints with node objects
            {"source": {"id": " martlock ", "x": 10.0}, "target": "xases-atraglos", "expiration": expires_ms},
            # Endpoint never declared as a node
            {"source": "martlock", "target": "ghost", "expiration": expires_ms},
            # Unreadable row
            {"source": "martlock"},
        ],
    )

    snapshot = engine.snapshot
    assert [node.id for node in snapshot.nodes] == ["MARTLOCK", "XASES-ATRAGLOS", "LONELY"]
    # Explicit category survives; absent category comes from the classifier
    assert snapshot.node("MARTLOCK").category == ZoneCategory.BLACK
    assert snapshot.node("MARTLOCK").name == "MARTLOCK"
    assert snapshot.node("XASES-ATRAGLOS").category == ZoneCategory.AVALON

    (edge,) = snapshot.edges
    assert edge.pair == frozenset({"MARTLOCK", "XASES-ATRAGLOS"})
    assert edge.expires_at == START + timedelta(minutes=30)

    assert report.dropped_nodes == 1
    assert report.dropped_edges == 2
    assert report.loaded_nodes == 3
    assert report.loaded_edges == 1


def test_sanitizing_load_dedupes_pairs_keeping_latest_expiration():
    early = START + timedelta(minutes=5)
    late = START + timedelta(minutes=50)
    snapshot, report = sanitize_graph(
        [{"id": "A"}, {"id": "B"}],
        [
            {"endpointA": "A", "endpointB": "B", "expiresAt": early.isoformat()},
            {"endpointA": "b", "endpointB": "a", "expiresAt": late.isoformat()},
            {"endpointA": "A", "endpointB": "B", "expiresAt": early.isoformat()},
        ],
        classify=lambda _: ZoneCategory.UNKNOWN,
    )
    (edge,) = snapshot.edges
    assert edge.expires_at == late
    assert (edge.source, edge.target) == ("B", "A")
    assert report.merged_duplicate_edges == 2


def test_sanitizing_load_accepts_engine_values():
    engine = make_engine()
    engine.add_connection("A", "B", 10)
    engine.add_connection("B", "C", 20)
    original = engine.snapshot

    other = make_engine()
    report = other.set_graph(original.nodes, original.edges)

    assert report.dropped_total == 0
    assert other.snapshot.nodes == original.nodes
    assert other.snapshot.edges == original.edges


def test_set_graph_replaces_state_and_clear_empties_it():
    engine = make_engine()
    engine.add_connection("A", "B", 10)
    engine.set_graph(nodes=[{"id": "C"}], edges=[])
    assert [node.id for node in engine.nodes] == ["C"]

    engine.clear_graph()
    assert engine.nodes == ()
    assert engine.edges == ()


# ---------------------------------------------------------------------------
# Snapshots, listeners, invariants
# ---------------------------------------------------------------------------


def test_listeners_receive_previous_and_current_snapshots_on_change_only():
    clock = FakeClock()
    engine = make_engine(clock)
    calls = []
    engine.subscribe(lambda previous, current: calls.append((previous.revision, current.revision)))

    engine.add_connection("A", "B", 1)
    engine.add_connection("A", "A", 1)  # rejected
    engine.sweep_expired()  # nothing expired yet
    clock.advance(minutes=2)
    engine.sweep_expired()

    assert calls == [(0, 1), (1, 2)]


def test_failing_listener_does_not_block_others_or_the_commit():
    engine = make_engine()
    seen = []

    def broken(previous, current):
        raise RuntimeError("renderer crashed")

    engine.subscribe(broken)
    engine.subscribe(lambda previous, current: seen.append(current.revision))

    assert engine.add_connection("A", "B", 5) is True
    assert seen == [1]
    assert len(engine.edges) == 1

    engine.unsubscribe(broken)
    engine.add_connection("B", "C", 5)
    assert seen == [1, 2]


def test_snapshot_is_frozen():
    engine = make_engine()
    engine.add_connection("A", "B", 5)
    with pytest.raises(Exception):
        engine.snapshot.nodes[0].id = "HACKED"
    assert isinstance(engine.nodes, tuple)


def test_check_invariants_flags_dangling_edges_and_self_loops():
    dangling = GraphSnapshot(
        nodes=(ZoneNode(id="A", name="A"),),
        edges=(PortalEdge(source="A", target="B", expires_at=START),),
    )
    with pytest.raises(GraphInvariantError):
        check_invariants(dangling)

    loop = GraphSnapshot(
        nodes=(ZoneNode(id="A", name="A"),),
        edges=(PortalEdge(source="A", target="A", expires_at=START),),
    )
    with pytest.raises(GraphInvariantError):
        check_invariants(loop)


def test_default_classifier_uses_packaged_zone_table():
    engine = GraphStateEngine(clock=FakeClock())
    engine.add_connection("martlock", "caerleon", 5)
    assert engine.snapshot.node("MARTLOCK").category == ZoneCategory.ROYAL
    assert engine.snapshot.node("CAERLEON").category == ZoneCategory.BLACK


def test_empty_classifier_is_respected():
    engine = GraphStateEngine(classifier=ZoneClassifier(), clock=FakeClock())
    engine.add_connection("martlock", "caerleon", 5)
    assert engine.snapshot.node("MARTLOCK").category == ZoneCategory.UNKNOWN
