from __future__ import annotations

from pathlib import Path

import allure
import pytest

from agent_crew.config import NotifierSettings, Settings, WorkerApiSettings
from agent_crew.orchestrator.models import TaskType, WorkerRole

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Configuration"),
]


def test_from_env_defaults() -> None:
    settings = Settings.from_env()

    assert settings.db_path == Path(".agent_crew.db")
    assert settings.orchestrator.batch_size == 10
    assert settings.orchestrator.poll_interval_seconds == 5.0
    assert settings.orchestrator.auto_approve_full_auto is False
    assert settings.orchestrator.task_role_overrides == {}
    assert settings.worker_api.invoker == "http"
    assert settings.worker_api.timeout_seconds == 300.0
    assert settings.notifier.kind == "log"


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AGENT_CREW_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("AGENT_CREW_BATCH_SIZE", "3")
    monkeypatch.setenv("AGENT_CREW_AUTO_APPROVE_FULL_AUTO", "yes")
    monkeypatch.setenv("AGENT_CREW_TASK_ROLE_MAP", "intel=researcher, engage=writer")
    monkeypatch.setenv("AGENT_CREW_INVOKER", " Echo ")
    monkeypatch.setenv("AGENT_CREW_WORKER_ENDPOINTS", "watcher=/spy/")
    monkeypatch.setenv("AGENT_CREW_WORKER_TIMEOUT_SECONDS", "0")

    settings = Settings.from_env()

    assert settings.db_path == tmp_path / "env.db"
    assert settings.orchestrator.batch_size == 3
    assert settings.orchestrator.auto_approve_full_auto is True
    assert settings.orchestrator.task_role_overrides == {
        TaskType.INTEL: WorkerRole.RESEARCHER,
        TaskType.ENGAGE: WorkerRole.WRITER,
    }
    assert settings.worker_api.invoker == "echo"
    assert settings.worker_api.endpoints == {WorkerRole.WATCHER: "spy"}
    settings.validate()


def test_explicit_db_path_wins(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AGENT_CREW_DB_PATH", str(tmp_path / "env.db"))

    assert Settings.from_env(db_path=tmp_path / "cli.db").db_path == tmp_path / "cli.db"


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("AGENT_CREW_TASK_ROLE_MAP", "dance=writer", "task type"),
        ("AGENT_CREW_TASK_ROLE_MAP", "write=poet", "role for 'write'"),
        ("AGENT_CREW_TASK_ROLE_MAP", "write", "Expected format"),
        ("AGENT_CREW_WORKER_ENDPOINTS", "scout=/x", "AGENT_CREW_WORKER_ENDPOINTS role"),
        ("AGENT_CREW_AUTO_APPROVE_FULL_AUTO", "maybe", "Invalid boolean"),
    ],
)
def test_from_env_rejects_malformed_values(
    monkeypatch: pytest.MonkeyPatch,
    name: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=message):
        Settings.from_env()


def test_validate_requires_worker_base_url_for_http_invoker() -> None:
    with pytest.raises(ValueError, match="AGENT_CREW_WORKER_BASE_URL"):
        Settings().validate()

    Settings(worker_api=WorkerApiSettings(base_url="https://workers.example.com")).validate()
    Settings(worker_api=WorkerApiSettings(invoker="echo")).validate()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(worker_api=WorkerApiSettings(invoker="grpc")), "AGENT_CREW_INVOKER"),
        (
            Settings(worker_api=WorkerApiSettings(invoker="echo", timeout_seconds=-1)),
            "AGENT_CREW_WORKER_TIMEOUT_SECONDS",
        ),
        (
            Settings(
                worker_api=WorkerApiSettings(invoker="echo"),
                notifier=NotifierSettings(kind="redis", redis_url="http://cache:6379"),
            ),
            "AGENT_CREW_REDIS_URL",
        ),
        (
            Settings(
                worker_api=WorkerApiSettings(invoker="echo"),
                notifier=NotifierSettings(kind="kafka"),
            ),
            "AGENT_CREW_NOTIFIER",
        ),
    ],
)
def test_validate_rejects_out_of_range_settings(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()
