"""HTTP client for the coordinator's node API."""

from __future__ import annotations

import json
import logging
from urllib.parse import quote

import httpx

from dcn_node.coordinator.outcomes import (
    AvailabilityFailed,
    AvailabilityOutcome,
    AvailabilityUpdated,
    FetchFailed,
    FetchOutcome,
    NoTaskAvailable,
    Registered,
    RegisterOutcome,
    RegistrationFailed,
    SubmitAccepted,
    SubmitFailed,
    SubmitOutcome,
    TaskFetched,
)
from dcn_node.models import (
    ComputeSpecs,
    ErrorKind,
    InvalidPayloadError,
    RenderJob,
    ResultArtifact,
    TaskAssignment,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_USER_AGENT = "dcn-node/1.0"
RESULT_ID_FIELDS: tuple[str, ...] = ("image_id", "result_id")
NODE_ID_FIELDS: tuple[str, ...] = ("node_id", "nodeID")
_BODY_PREVIEW_CHARS = 200


class _CallError(Exception):
    """Internal signal converted into a failure outcome at the public boundary."""

    def __init__(self, kind: ErrorKind, detail: str) -> None:
        super().__init__(detail)
        self.kind = kind
        self.detail = detail


class CoordinatorClient:
    """Wire-level calls to the coordinator.

    Every public method returns an explicit outcome value instead of raising on
    transport, status, or decoding problems.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"User-Agent": user_agent},
            transport=transport or httpx.HTTPTransport(retries=max_retries),
            follow_redirects=True,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def fetch_task(self, node_id: str) -> FetchOutcome:
        """Ask the coordinator for the next task assigned to ``node_id``."""

        try:
            response = self._send("GET", f"/node/task/{quote(node_id, safe='')}")
            body = _json_object(response)
            if "task_id" not in body:
                raise _CallError(ErrorKind.MALFORMED_RESPONSE, "response has no task_id field")
            task_id = body["task_id"]
            if task_id is None or task_id == "":
                return NoTaskAvailable()
            if not isinstance(task_id, str):
                raise _CallError(ErrorKind.MALFORMED_RESPONSE, "task_id must be a string")
            try:
                job = RenderJob.from_payload(body.get("instruction_data"))
            except InvalidPayloadError as error:
                raise _CallError(ErrorKind.MALFORMED_RESPONSE, str(error)) from error
        except _CallError as error:
            return FetchFailed(kind=error.kind, detail=f"Failed to fetch task: {error.detail}")
        return TaskFetched(assignment=TaskAssignment(task_id=task_id, job=job))

    def submit_result(self, node_id: str, artifact: ResultArtifact) -> SubmitOutcome:
        """Upload a rendered image; success requires a result id in the reply."""

        files = {"image": (artifact.filename, artifact.image_bytes, "image/png")}
        data = {
            "node_id": node_id,
            "task_id": artifact.task_id,
            "metadata": json.dumps(artifact.metadata.to_payload()),
        }
        try:
            response = self._send("POST", "/node/submit-image", data=data, files=files)
            body = _json_object(response)
            result_id = _first_text_field(body, RESULT_ID_FIELDS)
            if result_id is None:
                raise _CallError(
                    ErrorKind.MALFORMED_RESPONSE,
                    "server did not return an image_id",
                )
        except _CallError as error:
            return SubmitFailed(kind=error.kind, detail=f"Failed to submit image: {error.detail}")
        return SubmitAccepted(result_id=result_id)

    def register_node(self, name: str, specs: ComputeSpecs | None = None) -> RegisterOutcome:
        """Register this machine and return the coordinator-issued node id."""

        name = name.strip()
        if not name:
            raise ValueError("Node name is required.")
        payload = {"name": name, "compute_specs": (specs or ComputeSpecs()).to_payload()}
        try:
            response = self._send("POST", "/node/register", json=payload)
            body = _json_object(response)
            node_id = _first_text_field(body, NODE_ID_FIELDS)
            if node_id is None:
                raise _CallError(
                    ErrorKind.MALFORMED_RESPONSE,
                    "registration response has no node id",
                )
        except _CallError as error:
            return RegistrationFailed(
                kind=error.kind,
                detail=f"Node registration failed: {error.detail}",
            )
        return Registered(node_id=node_id, payload=body)

    def update_availability(self, node_id: str, *, available: bool) -> AvailabilityOutcome:
        payload = {"node_id": node_id, "availability": available}
        try:
            response = self._send("PATCH", "/node/availability", json=payload)
            _json_object(response)
        except _CallError as error:
            return AvailabilityFailed(
                kind=error.kind,
                detail=f"Failed to update availability: {error.detail}",
            )
        return AvailabilityUpdated(available=available)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> CoordinatorClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _send(self, method: str, path: str, **kwargs: object) -> httpx.Response:
        url = f"{self._base_url}{path}"
        try:
            response = self._client.request(method, url, **kwargs)  # type: ignore[arg-type]
        except httpx.TimeoutException as error:
            logger.warning("Timeout calling %s %s", method, url)
            raise _CallError(ErrorKind.TRANSIENT_NETWORK, "timeout") from error
        except httpx.HTTPError as error:
            logger.warning("HTTP error calling %s %s: %s", method, url, error)
            detail = str(error) or type(error).__name__
            raise _CallError(ErrorKind.TRANSIENT_NETWORK, detail) from error
        if not response.is_success:
            preview = response.text[:_BODY_PREVIEW_CHARS].strip()
            detail = f"HTTP {response.status_code}"
            if preview:
                detail = f"{detail}: {preview}"
            raise _CallError(ErrorKind.TRANSIENT_NETWORK, detail)
        return response


def _json_object(response: httpx.Response) -> dict[str, object]:
    try:
        body = response.json()
    except ValueError as error:
        raise _CallError(
            ErrorKind.MALFORMED_RESPONSE,
            "response body is not valid JSON",
        ) from error
    if not isinstance(body, dict):
        raise _CallError(ErrorKind.MALFORMED_RESPONSE, "response body is not a JSON object")
    return body


def _first_text_field(body: dict[str, object], names: tuple[str, ...]) -> str | None:
    for name in names:
        value = body.get(name)
        if isinstance(value, str) and value.strip():
            return value
    return None
