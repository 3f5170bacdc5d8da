"""Runtime configuration for the task store, dispatcher, workers and notifier."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from agent_crew.orchestrator.models import TaskType, WorkerRole

INVOKER_KINDS = frozenset({"http", "echo"})
NOTIFIER_KINDS = frozenset({"log", "redis", "none"})


@dataclass(slots=True)
class OrchestratorSettings:
    """Dispatcher and routing settings."""

    batch_size: int = 10
    poll_interval_seconds: float = 5.0
    auto_approve_full_auto: bool = False
    task_role_overrides: dict[TaskType, WorkerRole] = field(default_factory=dict)


@dataclass(slots=True)
class WorkerApiSettings:
    """How workers are reached."""

    invoker: str = "http"
    base_url: str = ""
    api_key: str | None = None
    timeout_seconds: float = 300.0
    endpoints: dict[WorkerRole, str] = field(default_factory=dict)


@dataclass(slots=True)
class NotifierSettings:
    """Change notification side channel."""

    kind: str = "log"
    redis_url: str = "redis://localhost:6379/0"
    channel_prefix: str = "agent_crew:tasks"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".agent_crew.db")
    sqlite_busy_timeout_ms: int = 5_000
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    worker_api: WorkerApiSettings = field(default_factory=WorkerApiSettings)
    notifier: NotifierSettings = field(default_factory=NotifierSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("AGENT_CREW_DB_PATH", ".agent_crew.db")),
            sqlite_busy_timeout_ms=int(os.getenv("AGENT_CREW_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            orchestrator=OrchestratorSettings(
                batch_size=int(os.getenv("AGENT_CREW_BATCH_SIZE", "10")),
                poll_interval_seconds=float(
                    os.getenv("AGENT_CREW_POLL_INTERVAL_SECONDS", "5.0"),
                ),
                auto_approve_full_auto=_env_bool(
                    "AGENT_CREW_AUTO_APPROVE_FULL_AUTO",
                    default=False,
                ),
                task_role_overrides=_collect_task_role_overrides(),
            ),
            worker_api=WorkerApiSettings(
                invoker=os.getenv("AGENT_CREW_INVOKER", "http").strip().lower(),
                base_url=os.getenv("AGENT_CREW_WORKER_BASE_URL", "").strip(),
                api_key=os.getenv("AGENT_CREW_WORKER_API_KEY") or None,
                timeout_seconds=float(os.getenv("AGENT_CREW_WORKER_TIMEOUT_SECONDS", "300")),
                endpoints=_collect_worker_endpoints(),
            ),
            notifier=NotifierSettings(
                kind=os.getenv("AGENT_CREW_NOTIFIER", "log").strip().lower(),
                redis_url=os.getenv("AGENT_CREW_REDIS_URL", "redis://localhost:6379/0"),
                channel_prefix=os.getenv("AGENT_CREW_NOTIFY_CHANNEL_PREFIX", "agent_crew:tasks"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any setting is out of range."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("AGENT_CREW_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.orchestrator.batch_size <= 0:
            raise ValueError("AGENT_CREW_BATCH_SIZE must be > 0.")
        if self.orchestrator.poll_interval_seconds <= 0:
            raise ValueError("AGENT_CREW_POLL_INTERVAL_SECONDS must be > 0.")
        if self.worker_api.timeout_seconds < 0:
            raise ValueError("AGENT_CREW_WORKER_TIMEOUT_SECONDS must be >= 0.")
        if self.worker_api.invoker not in INVOKER_KINDS:
            raise ValueError(
                f"AGENT_CREW_INVOKER must be one of {sorted(INVOKER_KINDS)}, "
                f"got {self.worker_api.invoker!r}.",
            )
        if self.worker_api.invoker == "http":
            _validate_http_url(self.worker_api.base_url, name="AGENT_CREW_WORKER_BASE_URL")
        if self.notifier.kind not in NOTIFIER_KINDS:
            raise ValueError(
                f"AGENT_CREW_NOTIFIER must be one of {sorted(NOTIFIER_KINDS)}, "
                f"got {self.notifier.kind!r}.",
            )
        if self.notifier.kind == "redis":
            parsed = urlparse(self.notifier.redis_url)
            if parsed.scheme not in {"redis", "rediss", "unix"}:
                raise ValueError(
                    "AGENT_CREW_REDIS_URL must use redis://, rediss:// or unix:// scheme, "
                    f"got {self.notifier.redis_url!r}.",
                )
            if not self.notifier.channel_prefix.strip():
                raise ValueError("AGENT_CREW_NOTIFY_CHANNEL_PREFIX must be non-empty.")


def _collect_task_role_overrides() -> dict[TaskType, WorkerRole]:
    overrides: dict[TaskType, WorkerRole] = {}
    for key, value in _parse_pairs("AGENT_CREW_TASK_ROLE_MAP").items():
        try:
            task_type = TaskType(key)
        except ValueError as error:
            raise ValueError(
                f"Invalid AGENT_CREW_TASK_ROLE_MAP task type: {key!r}",
            ) from error
        try:
            overrides[task_type] = WorkerRole(value)
        except ValueError as error:
            raise ValueError(
                f"Invalid AGENT_CREW_TASK_ROLE_MAP role for {key!r}: {value!r}",
            ) from error
    return overrides


def _collect_worker_endpoints() -> dict[WorkerRole, str]:
    endpoints: dict[WorkerRole, str] = {}
    for key, value in _parse_pairs("AGENT_CREW_WORKER_ENDPOINTS").items():
        try:
            role = WorkerRole(key)
        except ValueError as error:
            raise ValueError(f"Invalid AGENT_CREW_WORKER_ENDPOINTS role: {key!r}") from error
        endpoints[role] = value.strip("/")
    return endpoints


def _parse_pairs(name: str) -> dict[str, str]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return {}

    pairs: dict[str, str] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if "=" not in token:
            raise ValueError(
                f"Invalid {name} entry: {token!r}. Expected format '<key>=<value>'.",
            )
        key, value = token.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key or not value:
            raise ValueError(f"Invalid {name} entry: {token!r}. Key and value are required.")
        pairs[key] = value
    return pairs


def _validate_http_url(value: str, *, name: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"{name} must be an absolute URL with http:// or https:// scheme, got {value!r}.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
