"""Exception hierarchy for portalmap.

Expected bad input (typos, incomplete AI extractions, rename collisions) is
reported through return values, never through these exceptions. They cover
malformed external payloads and broken internal invariants.
"""


class PortalMapError(Exception):
    """Base class for all portalmap errors."""


class GraphInvariantError(PortalMapError):
    """Raised when a committed snapshot would violate a graph invariant.

    Sanitization and the mutation functions make this structurally impossible;
    seeing it means a bug in the engine, not bad input.
    """


class SnapshotDecodeError(PortalMapError):
    """Raised when a persisted map cannot be decoded."""

    def __init__(self, reason: str, *, underlying: Exception | None = None) -> None:
        self.reason = reason
        self.underlying = underlying
        message = f"Persisted map could not be decoded: {reason}"
        if underlying is not None:
            message += f"\n  Cause: {underlying}"
        super().__init__(message)


class ExtractionError(PortalMapError):
    """Raised when an AI extraction payload is unusable."""

    def __init__(self, reason: str, *, missing_fields: list[str] | None = None) -> None:
        self.reason = reason
        self.missing_fields = missing_fields or []
        super().__init__(reason)
