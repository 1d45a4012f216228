"""Tier, badge and leaderboard resolution over accumulated course points."""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from ranking_tiers import BadgeLevel, BadgeRegistry, RankingTier, TierTable, TierTableConfigError
from schemas import COURSE_POINT_CEILING, CoursePointsLedger

TierTableLike = Union[TierTable, Sequence[RankingTier], Sequence[Mapping[str, Any]]]


@dataclass(frozen=True)
class TierProgress:
    """Where a point total sits inside its tier."""

    total_points: int
    current_tier: RankingTier
    next_tier: Optional[RankingTier]
    points_needed: int
    percent_within_tier: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_points": self.total_points,
            "current_tier": self.current_tier.to_dict(),
            "next_tier": self.next_tier.to_dict() if self.next_tier else None,
            "points_needed": self.points_needed,
            "percent_within_tier": self.percent_within_tier,
        }


@dataclass(frozen=True)
class LeaderboardEntry:
    position: int
    user_id: str
    total_points: int
    tier: RankingTier
    ceiling_percent: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "user_id": self.user_id,
            "total_points": self.total_points,
            "tier": self.tier.to_dict(),
            "ceiling_percent": self.ceiling_percent,
        }


def as_tier_table(tier_table: TierTableLike) -> TierTable:
    """Validate ``tier_table`` and return it as a :class:`TierTable`.

    Raises :class:`TierTableConfigError` for empty or non-partitioning tables.
    """

    if isinstance(tier_table, TierTable):
        return tier_table
    if tier_table is None:
        raise TierTableConfigError("Tier table may not be empty")
    return TierTable(tier_table)


def resolve_tier(total_points: int, tier_table: TierTableLike) -> RankingTier:
    """Return the tier whose interval contains ``total_points``.

    Totals past the top interval stay in the top tier; negative totals are
    treated as zero.
    """

    table = as_tier_table(tier_table)
    points = max(int(total_points), 0)
    index = bisect_right(table.floors, points) - 1
    return table[max(index, 0)]


def progress_to_next_tier(total_points: int, tier_table: TierTableLike) -> TierProgress:
    table = as_tier_table(tier_table)
    points = max(int(total_points), 0)
    current = resolve_tier(points, table)
    upcoming = table.next_tier(current)
    if upcoming is None:
        return TierProgress(points, current, None, 0, 100.0)

    span = upcoming.min_points - current.min_points
    percent = 100.0 * (points - current.min_points) / span if span > 0 else 100.0
    percent = max(0.0, min(100.0, percent))
    return TierProgress(
        total_points=points,
        current_tier=current,
        next_tier=upcoming,
        points_needed=max(upcoming.min_points - points, 0),
        percent_within_tier=round(percent, 2),
    )


def resolve_badge(points: int, badge_levels: Union[BadgeRegistry, Sequence[BadgeLevel]]) -> BadgeLevel:
    """Highest badge whose threshold ``points`` has reached."""

    levels = sorted(badge_levels, key=lambda level: level.min_points)
    if not levels:
        raise ValueError("Badge levels may not be empty")
    chosen = levels[0]
    for level in levels:
        if points >= level.min_points:
            chosen = level
    return chosen


def ceiling_percent(total_points: int, ceiling: int = COURSE_POINT_CEILING) -> int:
    """Share of the per-course display ceiling, uncapped."""

    return int(max(total_points, 0) * 100 / max(ceiling, 1) + 0.5)


def rank_leaderboard(
    ledgers: Iterable[CoursePointsLedger],
    tier_table: TierTableLike,
    *,
    limit: Optional[int] = None,
) -> List[LeaderboardEntry]:
    """Order course ledgers by points; equal totals share a position."""

    table = as_tier_table(tier_table)
    ordered = sorted(ledgers, key=lambda ledger: (-ledger.total_points, ledger.user_id))
    entries: List[LeaderboardEntry] = []
    previous_points: Optional[int] = None
    position = 0
    for index, ledger in enumerate(ordered, start=1):
        if ledger.total_points != previous_points:
            position = index
            previous_points = ledger.total_points
        entries.append(
            LeaderboardEntry(
                position=position,
                user_id=ledger.user_id,
                total_points=ledger.total_points,
                tier=resolve_tier(ledger.total_points, table),
                ceiling_percent=ceiling_percent(ledger.total_points),
            )
        )
    if limit is not None:
        entries = entries[: max(int(limit), 0)]
    return entries


def count_by_tier(totals: Iterable[int], tier_table: TierTableLike) -> Dict[str, int]:
    """Number of ledger totals in each tier, every tier present even when empty."""
    table = as_tier_table(tier_table)
    counts = {tier.name: 0 for tier in table}
    for total in totals:
        counts[resolve_tier(total, table).name] += 1
    return counts


def tier_distribution(entries: Iterable[LeaderboardEntry], tier_table: TierTableLike) -> Dict[str, int]:
    return count_by_tier((entry.total_points for entry in entries), tier_table)
