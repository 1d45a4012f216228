"""Environment variable validation and management."""

import os
import logging
from pathlib import Path
from typing import Dict, Tuple

logger = logging.getLogger(__name__)

DEFAULT_REWARD_SCHEDULE = "10,7,5,2"
DEFAULT_LEADERBOARD_LIMIT = 50
MAX_LEADERBOARD_LIMIT = 500


class EnvironmentValidationError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass


def get_reward_schedule() -> Tuple[int, ...]:
    """Parse ``QUIZ_REWARD_SCHEDULE`` into per-attempt quiz rewards.

    Raises EnvironmentValidationError for non-integer or out-of-range entries.
    """
    raw = os.getenv("QUIZ_REWARD_SCHEDULE") or DEFAULT_REWARD_SCHEDULE
    values = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            value = int(chunk)
        except ValueError as exc:
            raise EnvironmentValidationError(
                f"QUIZ_REWARD_SCHEDULE entries must be integers, got {chunk!r}"
            ) from exc
        if not 0 <= value <= 100:
            raise EnvironmentValidationError(
                f"QUIZ_REWARD_SCHEDULE entries must be between 0 and 100, got {value}"
            )
        values.append(value)
    if not values:
        raise EnvironmentValidationError("QUIZ_REWARD_SCHEDULE may not be empty")
    return tuple(values)


def get_leaderboard_limit() -> int:
    raw = os.getenv("LEADERBOARD_LIMIT")
    if not raw:
        return DEFAULT_LEADERBOARD_LIMIT
    try:
        value = int(raw)
    except ValueError as exc:
        raise EnvironmentValidationError(f"LEADERBOARD_LIMIT must be an integer, got {raw!r}") from exc
    if not 1 <= value <= MAX_LEADERBOARD_LIMIT:
        raise EnvironmentValidationError(
            f"LEADERBOARD_LIMIT must be between 1 and {MAX_LEADERBOARD_LIMIT}, got {value}"
        )
    return value


def validate_environment() -> None:
    """Validate configuration environment variables.

    Raises EnvironmentValidationError if validation fails.
    """
    defaults: Dict[str, str] = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
    }

    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_paths = {
        "RANKING_TIERS_PATH": "Ranking tier table (JSON or YAML)",
        "BADGE_LEVELS_PATH": "Badge level definitions (JSON or YAML)",
    }
    for var, description in optional_paths.items():
        value = os.getenv(var)
        if value and not Path(value).exists():
            raise EnvironmentValidationError(f"{var} points to a missing file: {value} ({description})")

    get_reward_schedule()
    get_leaderboard_limit()


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}
