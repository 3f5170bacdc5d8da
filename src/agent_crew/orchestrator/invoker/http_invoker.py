"""HTTP worker invoker: one JSON POST per task, no retries."""

from __future__ import annotations

import logging

import httpx

from agent_crew.config import WorkerApiSettings
from agent_crew.orchestrator.contracts import (
    InvocationResult,
    WorkerRequest,
    parse_worker_response,
)
from agent_crew.orchestrator.errors import InvocationError
from agent_crew.orchestrator.models import WorkerRole

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0
DEFAULT_USER_AGENT = "agent-crew/0.1"
_ERROR_BODY_PREVIEW_CHARS = 200


class HttpWorkerInvoker:
    """Calls workers at ``{base_url}/{endpoint}`` with a bearer token."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 300.0,
        endpoints: dict[WorkerRole, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if timeout_seconds > 0:
            timeout = httpx.Timeout(
                timeout_seconds,
                connect=min(DEFAULT_CONNECT_TIMEOUT_SECONDS, timeout_seconds),
            )
        else:
            timeout = httpx.Timeout(None)
        headers = {"User-Agent": DEFAULT_USER_AGENT}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._endpoints = dict(endpoints or {})
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: WorkerApiSettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> HttpWorkerInvoker:
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            timeout_seconds=settings.timeout_seconds,
            endpoints=settings.endpoints,
            transport=transport,
        )

    def endpoint_for(self, role: WorkerRole) -> str:
        return self._endpoints.get(role, role.value).strip("/")

    def invoke(self, request: WorkerRequest) -> InvocationResult:
        """POST the request; every failure mode becomes a failed result."""

        try:
            return self._call(request)
        except InvocationError as error:
            return InvocationResult.fail(str(error), status_code=error.status_code)

    def _call(self, request: WorkerRequest) -> InvocationResult:
        role = request.role.value
        endpoint = self.endpoint_for(request.role)
        try:
            response = self._client.post(endpoint, json=request.to_payload())
        except httpx.TimeoutException as exc:
            logger.warning("Timeout calling worker %s for task %s", endpoint, request.task_id)
            raise InvocationError(f"Worker {role} timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "HTTP error calling worker %s for task %s: %s",
                endpoint,
                request.task_id,
                exc,
            )
            raise InvocationError(f"Worker {role} unreachable: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.is_success:
            message = None
            if isinstance(body, dict) and isinstance(body.get("error"), str):
                message = body["error"]
            if not message:
                preview = response.text[:_ERROR_BODY_PREVIEW_CHARS].strip()
                message = f"HTTP {response.status_code}" + (f": {preview}" if preview else "")
            raise InvocationError(message, status_code=response.status_code)

        if body is None:
            raise InvocationError(
                f"Worker {role} returned a non-JSON body",
                status_code=response.status_code,
            )
        try:
            result = parse_worker_response(body)
        except (TypeError, ValueError) as error:
            raise InvocationError(
                f"Malformed response from worker {role}: {error}",
                status_code=response.status_code,
            ) from error
        result.status_code = response.status_code
        return result

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpWorkerInvoker:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
