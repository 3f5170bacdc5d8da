from pathlib import Path

import allure
from sqlalchemy import text

from agent_crew.orchestrator.repository import TaskRepository

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Task Store"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = TaskRepository(tmp_path / "migrations.db")
    repository.init_schema()
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).all()
        tables = connection.execute(
            text(
                """
                SELECT name
                FROM sqlite_master
                WHERE type = 'table'
                  AND name IN ('businesses', 'tasks', 'task_events')
                ORDER BY name
                """,
            ),
        ).all()
        journal_mode = connection.execute(text("PRAGMA journal_mode")).scalar_one()
    repository.close()

    assert [str(row[0]) for row in version] == ["20261017_0001"]
    assert [str(row[0]) for row in tables] == ["businesses", "task_events", "tasks"]
    assert str(journal_mode).lower() == "wal"
