"""Apply the task queue schema from inside the process."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config

MIGRATIONS_DIR = Path(__file__).resolve().parents[3] / "alembic"


def build_alembic_config(db_path: Path) -> Config:
    """Alembic config for ``db_path`` without reading ``alembic.ini``."""

    if not (MIGRATIONS_DIR / "env.py").is_file():
        raise FileNotFoundError(f"Alembic scripts not found at {MIGRATIONS_DIR}")
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config


def upgrade_head(db_path: Path) -> None:
    """Migrate the SQLite database at ``db_path`` to the latest revision."""

    command.upgrade(build_alembic_config(db_path), "head")
