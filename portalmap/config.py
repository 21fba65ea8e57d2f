"""
Portalmap Configuration

Loads configuration from environment variables with sensible defaults.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


class Config:
    """Application configuration loaded from environment variables."""

    # Expiration sweep cadence. Edge expirations are minute-granular, so any
    # interval well under a minute keeps the map accurate.
    SWEEP_INTERVAL_SECONDS: float = float(os.getenv("PORTALMAP_SWEEP_INTERVAL_SECONDS", "5"))

    # Zone name suggestions
    MAX_SUGGESTION_DISTANCE: int = int(os.getenv("PORTALMAP_MAX_SUGGESTION_DISTANCE", "3"))
    MAX_SUGGESTIONS: int = int(os.getenv("PORTALMAP_MAX_SUGGESTIONS", "5"))

    # Persistence
    MAP_STORAGE_KEY: str = os.getenv("PORTALMAP_MAP_KEY", "avalonScribeMap")
    STORE_DIR: Path = Path(os.getenv("PORTALMAP_STORE_DIR", "portal_maps"))

    # Zone data
    PACKAGE_ROOT: Path = Path(__file__).parent
    ZONES_FILE: Path = Path(
        os.getenv("PORTALMAP_ZONES_FILE", str(PACKAGE_ROOT / "data" / "zones.json"))
    )

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    DEBUG_LOG_SIZE: int = int(os.getenv("PORTALMAP_DEBUG_LOG_SIZE", "200"))

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors for unusable values."""
        if cls.SWEEP_INTERVAL_SECONDS <= 0:
            raise ValueError(
                "PORTALMAP_SWEEP_INTERVAL_SECONDS must be positive "
                f"(got {cls.SWEEP_INTERVAL_SECONDS})"
            )

        if cls.MAX_SUGGESTION_DISTANCE < 0:
            raise ValueError(
                "PORTALMAP_MAX_SUGGESTION_DISTANCE must not be negative "
                f"(got {cls.MAX_SUGGESTION_DISTANCE})"
            )

        if cls.MAX_SUGGESTIONS <= 0 or cls.DEBUG_LOG_SIZE <= 0:
            raise ValueError(
                "PORTALMAP_MAX_SUGGESTIONS and PORTALMAP_DEBUG_LOG_SIZE must be positive"
            )

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            "Portalmap Configuration:",
            f"  Sweep Interval: {cls.SWEEP_INTERVAL_SECONDS}s",
            f"  Suggestions: up to {cls.MAX_SUGGESTIONS} within distance {cls.MAX_SUGGESTION_DISTANCE}",
            f"  Map Key: {cls.MAP_STORAGE_KEY}",
            f"  Store Dir: {cls.STORE_DIR}",
            f"  Zones File: {cls.ZONES_FILE}",
            f"  Log Level: {cls.LOG_LEVEL}",
        ]
        return "\n".join(lines)
