import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", str(db_path))

    # Reset the connection pool for each test
    previous_pool = db._pool
    db._pool = db.SQLiteConnectionPool(str(db_path), max_connections=10)
    db.init()
    yield str(db_path)
    db._pool.close_all()
    db._pool = previous_pool


@pytest.fixture
def simple_tiers():
    from ranking_tiers import TierTable

    return TierTable.from_records(
        [
            {"name": "Bronze", "min_points": 0, "max_points": 39, "rank": 1},
            {"name": "Silver", "min_points": 40, "max_points": 79, "rank": 2},
            {"name": "Gold", "min_points": 80, "max_points": 120, "rank": 3},
        ]
    )
