"""Ranking tier and badge level configuration loader."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Type

import yaml


class TierTableConfigError(ValueError):
    """Raised when a ranking tier table is empty, malformed or not a partition."""


class BadgeConfigError(ValueError):
    """Raised when ``badge_levels.json`` contains invalid data."""


_BASE_PATH = Path(__file__).resolve().parent
DEFAULT_TIERS_PATH = _BASE_PATH / "ranking_tiers.json"
DEFAULT_BADGES_PATH = _BASE_PATH / "badge_levels.json"

_BUCKET_ICONS = {
    "bronze": "medal",
    "silver": "award",
    "gold": "zap",
    "platinum": "zap",
    "diamond": "crown",
}


def tier_icon(bucket: str) -> str:
    """Map a display bucket to its badge icon classification."""

    return _BUCKET_ICONS.get((bucket or "").strip().lower(), "medal")


@dataclass(frozen=True)
class RankingTier:
    """Immutable band of accumulated course points."""

    name: str
    min_points: int
    max_points: Optional[int]
    rank: int
    color: str = ""
    bucket: str = ""

    @property
    def icon(self) -> str:
        return tier_icon(self.bucket)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "min_points": self.min_points,
            "max_points": self.max_points,
            "rank": self.rank,
            "color": self.color,
            "bucket": self.bucket,
            "icon": self.icon,
        }


@dataclass(frozen=True)
class BadgeLevel:
    """Overall-points badge shown next to a learner's name."""

    name: str
    min_points: int
    color: str = ""
    icon: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "min_points": self.min_points,
            "color": self.color,
            "icon": self.icon,
        }


# ----------------------------------------------------------------------
def _load_payload(path: Path) -> Any:
    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if suffix in {".json", ".jsonc"}:
        return json.loads(text)
    if suffix in {".yml", ".yaml"}:
        return yaml.safe_load(text)
    raise ValueError(f"Unsupported configuration format: {path}")


def _field(entry: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in entry:
            return entry[name]
    return None


def _coerce_int(
    value: Any,
    label: str,
    error_cls: Type[ValueError],
) -> int:
    if isinstance(value, bool):
        raise error_cls(f"{label} must be an integer")
    if isinstance(value, float) and not value.is_integer():
        raise error_cls(f"{label} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise error_cls(f"{label} must be an integer") from exc


def _default_bucket(name: str) -> str:
    head = name.split(" ", 1)[0].strip().lower()
    return head if head in _BUCKET_ICONS else ""


def parse_tier_records(raw: Any) -> List[RankingTier]:
    """Turn raw ``{name, min_points, max_points, rank}`` records into tiers.

    ``minPoints``/``maxPoints`` and the ``tier``/``order`` spellings used by
    older exports are accepted as aliases.
    """

    if not isinstance(raw, (list, tuple)):
        raise TierTableConfigError("Tier table must be a list of tier records")

    tiers: List[RankingTier] = []
    for idx, entry in enumerate(raw, start=1):
        if isinstance(entry, RankingTier):
            tiers.append(entry)
            continue
        if not isinstance(entry, Mapping):
            raise TierTableConfigError(f"Tier #{idx} must be an object")

        name = str(_field(entry, "name", "tier") or "").strip()
        if not name:
            raise TierTableConfigError(f"Tier #{idx} is missing a non-empty 'name'")

        min_raw = _field(entry, "min_points", "minPoints")
        if min_raw is None:
            raise TierTableConfigError(f"Tier {name} is missing 'min_points'")
        min_points = _coerce_int(min_raw, f"Tier {name} min_points", TierTableConfigError)

        max_raw = _field(entry, "max_points", "maxPoints")
        max_points = None
        if max_raw is not None and max_raw != "":
            max_points = _coerce_int(max_raw, f"Tier {name} max_points", TierTableConfigError)

        rank_raw = _field(entry, "rank", "order")
        rank = idx if rank_raw is None else _coerce_int(rank_raw, f"Tier {name} rank", TierTableConfigError)

        bucket = str(entry.get("bucket") or _default_bucket(name)).strip().lower()
        color = str(entry.get("color") or "").strip()
        tiers.append(RankingTier(name, min_points, max_points, rank, color, bucket))
    return tiers


def validate_partition(tiers: Sequence[RankingTier]) -> None:
    """Raise :class:`TierTableConfigError` unless ``tiers`` partition ``[0, ∞)``.

    ``tiers`` must already be ordered by ``min_points``.
    """

    if not tiers:
        raise TierTableConfigError("Tier table may not be empty")

    seen: set[str] = set()
    for tier in tiers:
        if tier.name in seen:
            raise TierTableConfigError(f"Duplicate tier name detected: {tier.name}")
        seen.add(tier.name)

    if tiers[0].min_points != 0:
        raise TierTableConfigError(
            f"Lowest tier {tiers[0].name} must start at 0 points (found {tiers[0].min_points})"
        )

    for position, tier in enumerate(tiers, start=1):
        if tier.rank != position:
            raise TierTableConfigError(
                f"Tier {tier.name} has rank {tier.rank}; expected {position} in ascending order"
            )
        is_top = position == len(tiers)
        if tier.max_points is None:
            if not is_top:
                raise TierTableConfigError(f"Tier {tier.name} is missing 'max_points'")
            continue
        if tier.max_points < tier.min_points:
            raise TierTableConfigError(f"Tier {tier.name} max_points is below min_points")

    for lower, upper in zip(tiers, tiers[1:]):
        expected = (lower.max_points or 0) + 1
        if upper.min_points != expected:
            kind = "gap" if upper.min_points > expected else "overlap"
            raise TierTableConfigError(
                f"Tier {upper.name} starts at {upper.min_points}; {kind} after {lower.name} "
                f"(expected {expected})"
            )


class TierTable:
    """Ordered, validated sequence of :class:`RankingTier` entries."""

    def __init__(self, tiers: Iterable[RankingTier | Mapping[str, Any]]) -> None:
        parsed = parse_tier_records(list(tiers))
        parsed.sort(key=lambda tier: (tier.min_points, tier.rank))
        validate_partition(parsed)
        self._tiers: Tuple[RankingTier, ...] = tuple(parsed)
        self._floors: Tuple[int, ...] = tuple(tier.min_points for tier in parsed)

    @classmethod
    def from_records(cls, records: Any) -> "TierTable":
        return cls(parse_tier_records(records))

    @classmethod
    def from_path(cls, path: str | Path) -> "TierTable":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Ranking tier file not found: {path}")
        return cls.from_records(_load_payload(path))

    # ------------------------------------------------------------------
    @property
    def tiers(self) -> Tuple[RankingTier, ...]:
        return self._tiers

    @property
    def floors(self) -> Tuple[int, ...]:
        """``min_points`` of every tier in ascending order."""

        return self._floors

    def lowest(self) -> RankingTier:
        return self._tiers[0]

    def highest(self) -> RankingTier:
        return self._tiers[-1]

    def get(self, name: str) -> Optional[RankingTier]:
        for tier in self._tiers:
            if tier.name == name:
                return tier
        return None

    def next_tier(self, tier: RankingTier) -> Optional[RankingTier]:
        """Return the tier ranked directly above ``tier`` or ``None`` at the top."""

        if tier.rank >= len(self._tiers):
            return None
        return self._tiers[tier.rank]

    def to_records(self) -> List[Dict[str, Any]]:
        return [tier.to_dict() for tier in self._tiers]

    # ------------------------------------------------------------------
    def __iter__(self) -> Iterator[RankingTier]:
        return iter(self._tiers)

    def __len__(self) -> int:
        return len(self._tiers)

    def __getitem__(self, index: int) -> RankingTier:
        return self._tiers[index]


class BadgeRegistry:
    """Load overall-points badge levels from ``badge_levels.json``."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else DEFAULT_BADGES_PATH
        self._levels: List[BadgeLevel] = []
        self.reload()

    def reload(self) -> None:
        """Reload badge levels from disk and validate the structure."""

        if not self.path.exists():
            raise FileNotFoundError(f"Badge levels file not found: {self.path}")

        raw = _load_payload(self.path)
        if not isinstance(raw, list):
            raise BadgeConfigError("Badge levels file must contain a list")

        levels: List[BadgeLevel] = []
        seen: set[str] = set()
        for idx, entry in enumerate(raw, start=1):
            if not isinstance(entry, dict):
                raise BadgeConfigError(f"Entry #{idx} must be an object")
            name = str(entry.get("name") or "").strip()
            if not name:
                raise BadgeConfigError(f"Entry #{idx} is missing a non-empty 'name'")
            if name in seen:
                raise BadgeConfigError(f"Duplicate badge name detected: {name}")
            seen.add(name)

            min_raw = _field(entry, "min_points", "points")
            if min_raw is None:
                raise BadgeConfigError(f"Badge {name} is missing 'min_points'")
            min_points = _coerce_int(min_raw, f"Badge {name} min_points", BadgeConfigError)
            if min_points < 0:
                raise BadgeConfigError(f"Badge {name} min_points cannot be negative")

            levels.append(
                BadgeLevel(
                    name,
                    min_points,
                    str(entry.get("color") or "").strip(),
                    str(entry.get("icon") or "").strip(),
                )
            )

        if not levels:
            raise BadgeConfigError("Badge levels file may not be empty")

        levels.sort(key=lambda level: level.min_points)
        if levels[0].min_points != 0:
            raise BadgeConfigError("The lowest badge must start at 0 points")
        self._levels = levels

    @property
    def levels(self) -> List[BadgeLevel]:
        """Return a shallow copy of the known badge levels."""

        return list(self._levels)

    def __iter__(self) -> Iterator[BadgeLevel]:
        return iter(self._levels)

    def __len__(self) -> int:
        return len(self._levels)


def load_tier_table(path: str | Path | None = None) -> TierTable:
    """Load the tier table from ``path``, ``RANKING_TIERS_PATH`` or the bundled file."""

    if path is None:
        path = os.getenv("RANKING_TIERS_PATH") or DEFAULT_TIERS_PATH
    return TierTable.from_path(path)


def load_badge_levels(path: str | Path | None = None) -> BadgeRegistry:
    if path is None:
        path = os.getenv("BADGE_LEVELS_PATH") or DEFAULT_BADGES_PATH
    return BadgeRegistry(path)


RANKING_TIERS = load_tier_table()
"""Tier table loaded once at process start."""

BADGE_LEVELS = load_badge_levels()
"""Badge registry loaded once at process start."""
