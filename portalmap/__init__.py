"""
Portalmap - live, self-pruning map of portal connections between game zones.

Feed it confirmed portal sightings; it keeps one edge per zone pair, expires
portals as they close and drops zones nobody can reach any more.

No rendering, no AI calls, no storage engine. Those are injected collaborators.
"""

__version__ = "0.1.0"

# Graph state
from .engine import (
    GraphStateEngine,
    apply_category,
    apply_connection,
    apply_rename,
    sanitize_graph,
    sweep_expired,
)
from .scheduler import ExpirationScheduler

# Identity, classification, matching
from .identity import normalize_zone_id, endpoint_id
from .zones import ZoneClassifier, load_zone_classifier
from .matching import FuzzyMatcher, levenshtein_distance, suggest_zone_names

# Persistence
from .codec import decode_map, dumps_snapshot, encode_snapshot, load_into
from .persistence import BlobStore, InMemoryBlobStore, JsonFileBlobStore, MapRepository

# Observation review
from .review import PendingReview, ReviewQueue, parse_extraction

# Schemas
from .schemas import (
    ConnectionObservation,
    GraphSnapshot,
    PersistedEdge,
    PersistedMap,
    PersistedNode,
    PortalEdge,
    SanitizeReport,
    ValidationResult,
    ZoneCategory,
    ZoneNode,
)

# Errors
from .errors import (
    ExtractionError,
    GraphInvariantError,
    PortalMapError,
    SnapshotDecodeError,
)

__all__ = [
    # Engine
    "GraphStateEngine",
    "ExpirationScheduler",
    "apply_category",
    "apply_connection",
    "apply_rename",
    "sanitize_graph",
    "sweep_expired",
    # Identity and zones
    "normalize_zone_id",
    "endpoint_id",
    "ZoneClassifier",
    "load_zone_classifier",
    # Matching
    "FuzzyMatcher",
    "levenshtein_distance",
    "suggest_zone_names",
    # Persistence
    "encode_snapshot",
    "dumps_snapshot",
    "decode_map",
    "load_into",
    "BlobStore",
    "InMemoryBlobStore",
    "JsonFileBlobStore",
    "MapRepository",
    # Review
    "PendingReview",
    "ReviewQueue",
    "parse_extraction",
    # Schemas
    "ConnectionObservation",
    "GraphSnapshot",
    "PersistedEdge",
    "PersistedMap",
    "PersistedNode",
    "PortalEdge",
    "SanitizeReport",
    "ValidationResult",
    "ZoneCategory",
    "ZoneNode",
    # Errors
    "PortalMapError",
    "GraphInvariantError",
    "SnapshotDecodeError",
    "ExtractionError",
]
