"""Observation review: the confirmation step between extraction and the graph.

Screenshot extraction is imperfect, so an extracted connection is held as a
pending review. Both zone names are checked against the known vocabulary, the
user may correct them (picking a suggestion or typing), and only a confirmed
review reaches ``GraphStateEngine.add_connection``. Discarding a review means
the observation never reaches the engine.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import ValidationError

from .engine import GraphStateEngine
from .errors import ExtractionError
from .logging_utils import log_ai, log_info, log_warn
from .matching import FuzzyMatcher
from .schemas import ConnectionObservation, ValidationResult


def parse_extraction(payload: str | bytes | Mapping[str, Any]) -> ConnectionObservation:
    """Validate the extractor's JSON answer.

    Raises:
        ExtractionError: If the payload is not JSON, has the wrong types, or
            lacks one of origin/destination/minutes (the extractor answers
            null for anything it could not read)
    """
    if isinstance(payload, (str, bytes)):
        try:
            text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as exc:
            raise ExtractionError(f"AI response is not UTF-8 text: {exc}") from exc
        log_ai(f"Raw AI Response: {text.strip()}")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ExtractionError(f"AI response is not valid JSON: {exc}") from exc

    if not isinstance(payload, Mapping):
        raise ExtractionError(f"AI response must be a JSON object, got {type(payload).__name__}")

    try:
        observation = ConnectionObservation.model_validate(payload)
    except ValidationError as exc:
        raise ExtractionError(f"AI response has invalid fields: {exc}") from exc

    missing = observation.missing_fields()
    if missing:
        raise ExtractionError(
            f"AI response was missing required fields: {', '.join(missing)}",
            missing_fields=missing,
        )
    return observation


@dataclass
class PendingReview:
    """An observation waiting for the user, with vocabulary checks for both ends."""

    observation: ConnectionObservation
    origin_check: ValidationResult = field(default_factory=ValidationResult)
    destination_check: ValidationResult = field(default_factory=ValidationResult)

    @property
    def ready(self) -> bool:
        """True once both names and the duration are filled in."""
        return not self.observation.missing_fields()

    @property
    def recognized(self) -> bool:
        return self.origin_check.is_valid and self.destination_check.is_valid

    def revalidate(
        self,
        matcher: FuzzyMatcher,
        *,
        origin: Optional[str] = None,
        destination: Optional[str] = None,
        minutes_remaining: Optional[int] = None,
    ) -> "PendingReview":
        """Apply user edits and re-check the edited names."""
        updates: dict[str, Any] = {}
        if origin is not None:
            updates["origin"] = origin
        if destination is not None:
            updates["destination"] = destination
        if minutes_remaining is not None:
            updates["minutes_remaining"] = minutes_remaining
        if updates:
            self.observation = self.observation.model_copy(update=updates)
        if origin is not None or not self.origin_check.suggestions:
            self.origin_check = matcher.suggest(self.observation.origin)
        if destination is not None or not self.destination_check.suggestions:
            self.destination_check = matcher.suggest(self.observation.destination)
        return self


class ReviewQueue:
    """Holds at most one pending review and commits confirmed ones to the engine."""

    def __init__(self, engine: GraphStateEngine, matcher: FuzzyMatcher):
        self.engine = engine
        self.matcher = matcher
        self.pending: Optional[PendingReview] = None

    def submit(self, observation: ConnectionObservation | Mapping[str, Any]) -> PendingReview:
        """Stage an observation for review, replacing any earlier one.

        Raises:
            ExtractionError: If a mapping cannot be read as an observation
        """
        if not isinstance(observation, ConnectionObservation):
            if not isinstance(observation, Mapping):
                raise ExtractionError(
                    f"Observation must be a mapping, got {type(observation).__name__}"
                )
            try:
                observation = ConnectionObservation.model_validate(observation)
            except ValidationError as exc:
                raise ExtractionError(f"Observation has invalid fields: {exc}") from exc
        if self.pending is not None:
            log_warn("Replacing an unconfirmed pending connection.")
        review = PendingReview(observation=observation)
        review.revalidate(self.matcher)
        self.pending = review
        log_info(
            f"Pending review: {observation.origin} -> {observation.destination} "
            f"({observation.minutes_remaining} min)"
        )
        return review

    def confirm(
        self,
        *,
        origin: Optional[str] = None,
        destination: Optional[str] = None,
        minutes_remaining: Optional[int] = None,
    ) -> bool:
        """Apply final edits and add the connection.

        Returns False if nothing is pending or the engine rejects the
        observation; the pending review is cleared either way.
        """
        review = self.pending
        if review is None:
            log_warn("Nothing pending to confirm.")
            return False
        self.pending = None

        review.revalidate(
            self.matcher,
            origin=origin,
            destination=destination,
            minutes_remaining=minutes_remaining,
        )
        added = self.engine.add_observation(review.observation)
        if added:
            log_info(
                "User confirmed connection: "
                f"{review.observation.origin} -> {review.observation.destination}"
            )
        return added

    def discard(self) -> None:
        if self.pending is None:
            return
        self.pending = None
        log_warn("User discarded pending connection.")
