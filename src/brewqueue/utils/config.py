from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Config:
    """Central configuration loaded from environment variables."""

    # Database
    db_path: Path = field(
        default_factory=lambda: Path(
            os.environ.get("BREWQUEUE_DB_PATH", "data/brewqueue.db")
        )
    )

    # Loop periods, in seconds
    recalc_interval: float = field(
        default_factory=lambda: float(os.environ.get("BREWQUEUE_RECALC_INTERVAL", "30"))
    )
    assign_interval: float = field(
        default_factory=lambda: float(os.environ.get("BREWQUEUE_ASSIGN_INTERVAL", "30"))
    )
    decay_interval: float = field(
        default_factory=lambda: float(os.environ.get("BREWQUEUE_DECAY_INTERVAL", "60"))
    )

    # Logging
    log_level: str = field(
        default_factory=lambda: os.environ.get("BREWQUEUE_LOG_LEVEL", "INFO")
    )


def get_config() -> Config:
    """Return a Config instance built from the current environment."""
    return Config()
