"""
Zone classification and the known-zone vocabulary.

The classifier is a pure lookup table: canonical zone id -> ZoneCategory. It is
loaded from JSON so the zone list can be refreshed without code changes.

Zone file structure:
```json
{
  "ROYAL": ["MARTLOCK", "THETFORD", ...],
  "BLACK": ["CAERLEON", ...],
  "AVALON": ["XASES-ATRAGLOS", ...]
}
```

Usage:
    classifier = load_zone_classifier()
    classifier.classify("martlock")   # ZoneCategory.ROYAL
    classifier.vocabulary             # names the fuzzy matcher compares against
"""

import json
from pathlib import Path
from collections.abc import Iterable, Mapping
from typing import Dict, List, Optional

from .config import Config
from .identity import is_blank, normalize_zone_id
from .logging_utils import log_info
from .schemas import ZoneCategory


class ZoneClassifier:
    """Maps canonical zone ids to categories.

    Never fails: anything not in the table is ZoneCategory.UNKNOWN. Keys are
    normalized on construction, so the table itself may come from dirty data.
    """

    def __init__(self, zones: Optional[Mapping[str, ZoneCategory]] = None):
        self._zones: Dict[str, ZoneCategory] = {}
        for name, category in (zones or {}).items():
            if is_blank(name):
                continue
            # First occurrence wins, matching how the engine merges nodes
            self._zones.setdefault(normalize_zone_id(name), ZoneCategory(category))

    def classify(self, zone_id: str) -> ZoneCategory:
        if is_blank(zone_id):
            return ZoneCategory.UNKNOWN
        return self._zones.get(normalize_zone_id(zone_id), ZoneCategory.UNKNOWN)

    __call__ = classify

    @property
    def vocabulary(self) -> List[str]:
        """Known canonical zone names in load order."""
        return list(self._zones)

    def __contains__(self, zone_id: object) -> bool:
        return isinstance(zone_id, str) and not is_blank(zone_id) and normalize_zone_id(zone_id) in self._zones

    def __len__(self) -> int:
        return len(self._zones)

    @classmethod
    def from_categories(cls, data: Mapping[str, Iterable[str]]) -> "ZoneClassifier":
        """Build from ``{"ROYAL": [...], "BLACK": [...], ...}``.

        Raises:
            ValueError: If a key is not a known category or a value is not a list of names
        """
        zones: Dict[str, ZoneCategory] = {}
        for raw_category, names in data.items():
            category = ZoneCategory.parse(raw_category)
            if category is None:
                raise ValueError(
                    f"Unknown zone category '{raw_category}'. "
                    f"Expected one of: {', '.join(c.value for c in ZoneCategory)}"
                )
            if isinstance(names, str) or not isinstance(names, Iterable):
                raise ValueError(f"Zones for category '{raw_category}' must be a list of names")
            for name in names:
                if not isinstance(name, str):
                    raise ValueError(f"Zone name in '{raw_category}' must be a string, got {name!r}")
                zones.setdefault(name, category)
        return cls(zones)

    @classmethod
    def from_file(cls, path: Path | str) -> "ZoneClassifier":
        """Load a classifier from a JSON zone file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file is not valid JSON or has the wrong shape
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Zone file not found: {path}")

        try:
            data = json.loads(path.read_text("utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in zone file {path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError(f"Zone file {path} must contain a JSON object keyed by category")

        classifier = cls.from_categories(data)
        log_info(f"Loaded {len(classifier)} known zones from {path.name}")
        return classifier


def load_zone_classifier(path: Path | str | None = None) -> ZoneClassifier:
    """Load the zone table from ``path`` or ``Config.ZONES_FILE``."""
    return ZoneClassifier.from_file(path or Config.ZONES_FILE)
