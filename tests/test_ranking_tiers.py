import json
from pathlib import Path

import pytest

from ranking_tiers import (
    BADGE_LEVELS,
    RANKING_TIERS,
    BadgeConfigError,
    BadgeRegistry,
    TierTable,
    TierTableConfigError,
    load_tier_table,
    tier_icon,
)


def _records(*bounds):
    return [
        {"name": f"T{idx}", "min_points": low, "max_points": high, "rank": idx}
        for idx, (low, high) in enumerate(bounds, start=1)
    ]


def test_default_table_spans_course_ceiling():
    names = [tier.name for tier in RANKING_TIERS]
    assert names == ["Bronze III", "Bronze II", "Bronze I", "Silver", "Gold", "Platinum", "Diamond"]
    assert RANKING_TIERS.lowest().min_points == 0
    assert RANKING_TIERS.highest().max_points == 120
    assert [tier.icon for tier in RANKING_TIERS] == [
        "medal", "medal", "medal", "award", "zap", "zap", "crown",
    ]


def test_default_badges_are_sorted_from_zero():
    assert [level.name for level in BADGE_LEVELS] == [
        "Newbie", "Explorer", "Achiever", "Specialist", "Expert", "Master",
    ]
    assert BADGE_LEVELS.levels[0].min_points == 0


def test_next_tier_walks_up_the_table():
    bronze_one = RANKING_TIERS.get("Bronze I")
    assert RANKING_TIERS.next_tier(bronze_one).name == "Silver"
    assert RANKING_TIERS.next_tier(RANKING_TIERS.highest()) is None
    assert RANKING_TIERS.get("Obsidian") is None


@pytest.mark.parametrize(
    "records, message",
    [
        ([], "may not be empty"),
        (_records((0, 10), (12, 20)), "gap"),
        (_records((0, 10), (10, 20)), "overlap"),
        (_records((5, 10), (11, 20)), "must start at 0"),
        (_records((0, None), (1, 20)), "missing 'max_points'"),
        (_records((0, 10), (11, 5), (6, 20)), "rank"),
    ],
)
def test_partition_violations_raise(records, message):
    with pytest.raises(TierTableConfigError, match=message):
        TierTable.from_records(records)


def test_duplicate_names_and_bad_bounds_raise():
    records = _records((0, 10), (11, 20))
    records[1]["name"] = "T1"
    with pytest.raises(TierTableConfigError, match="Duplicate"):
        TierTable.from_records(records)

    with pytest.raises(TierTableConfigError, match="must be an integer"):
        TierTable.from_records([{"name": "Only", "min_points": "zero", "max_points": 10}])

    with pytest.raises(TierTableConfigError, match="list"):
        TierTable.from_records({"name": "Only"})


def test_records_accept_aliases_and_unbounded_top():
    table = TierTable.from_records(
        [
            {"tier": "Silver", "minPoints": 40, "order": 2},
            {"tier": "Bronze", "minPoints": 0, "maxPoints": 39, "order": 1},
        ]
    )
    assert [tier.name for tier in table] == ["Bronze", "Silver"]
    assert table.highest().max_points is None
    assert table[0].bucket == "bronze"
    assert table[1].icon == "award"


def test_yaml_tier_file_is_supported(tmp_path: Path):
    cfg = tmp_path / "tiers.yaml"
    cfg.write_text(
        "- {name: Rookie, min_points: 0, max_points: 49, rank: 1, bucket: bronze}\n"
        "- {name: Veteran, min_points: 50, max_points: 120, rank: 2, bucket: diamond}\n",
        encoding="utf-8",
    )
    table = load_tier_table(cfg)
    assert table.floors == (0, 50)
    assert table.highest().icon == "crown"


def test_env_override_for_tier_path(tmp_path: Path, monkeypatch):
    cfg = tmp_path / "tiers.json"
    cfg.write_text(json.dumps(_records((0, 59), (60, 120))), encoding="utf-8")
    monkeypatch.setenv("RANKING_TIERS_PATH", str(cfg))
    assert [tier.name for tier in load_tier_table()] == ["T1", "T2"]

    monkeypatch.setenv("RANKING_TIERS_PATH", str(tmp_path / "missing.json"))
    with pytest.raises(FileNotFoundError):
        load_tier_table()


def test_badge_registry_validates(tmp_path: Path):
    cfg = tmp_path / "badges.json"
    cfg.write_text(
        json.dumps([{"name": "Pro", "min_points": 50}, {"name": "Novice", "min_points": 0}]),
        encoding="utf-8",
    )
    registry = BadgeRegistry(cfg)
    assert [level.name for level in registry] == ["Novice", "Pro"]

    no_floor = tmp_path / "no_floor.json"
    no_floor.write_text(json.dumps([{"name": "Pro", "min_points": 50}]), encoding="utf-8")
    with pytest.raises(BadgeConfigError):
        BadgeRegistry(no_floor)

    duplicate = tmp_path / "duplicate.json"
    duplicate.write_text(
        json.dumps([{"name": "A", "min_points": 0}, {"name": "A", "min_points": 5}]),
        encoding="utf-8",
    )
    with pytest.raises(BadgeConfigError):
        BadgeRegistry(duplicate)


def test_tier_icon_defaults_to_medal():
    assert tier_icon("Diamond") == "crown"
    assert tier_icon("") == "medal"
    assert tier_icon("unobtainium") == "medal"
