"""Alembic migration tests.

File named test_zzz_alembic.py to sort LAST in pytest collection order.
"""

from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory

from noorboard.db import models  # noqa: F401
from noorboard.db.base import Base

ROOT = Path(__file__).resolve().parents[1]


def _script_directory() -> ScriptDirectory:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    return ScriptDirectory.from_config(cfg)


def test_single_head() -> None:
    """Migrations form one linear history ending at the leaderboard tables."""
    script = _script_directory()
    assert script.get_heads() == ["001_leaderboard_tables"]


def test_migration_creates_every_orm_table() -> None:
    """Every ORM table and index is created by the migration."""
    source = (ROOT / "alembic" / "versions" / "001_leaderboard_tables.py").read_text(encoding="utf-8")
    for table in Base.metadata.tables.values():
        assert f"CREATE TABLE IF NOT EXISTS {table.name}" in source
        for index in table.indexes:
            assert index.name in source
