"""HTTP outcome classification shared by every outbound integration."""

from __future__ import annotations

from typing import cast

import httpx

from marketiq_core.errors import FailureKind, PermanentError, TransientError

RETRY_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


class HttpTransientError(TransientError):
    """Retryable HTTP failure (timeout, throttling, server error)."""

    def __init__(
        self,
        message: str,
        http_status: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.http_status = http_status
        self.response_body = response_body


class HttpPermanentError(PermanentError):
    """Non-retryable HTTP failure (client error, unexpected payload shape)."""

    def __init__(
        self,
        message: str,
        http_status: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.http_status = http_status
        self.response_body = response_body


def classify_status(status: int) -> FailureKind | None:
    """Return the failure kind for an HTTP status, ``None`` for success."""
    if status < 400:
        return None
    if status in RETRY_STATUSES or status >= 500:
        return FailureKind.TRANSIENT
    return FailureKind.PERMANENT


def _truncate(text: str, limit: int = 500) -> str:
    return text[:limit]


def error_message(response: httpx.Response, default: str) -> str:
    """Extract a provider error message from a JSON error body if present."""
    try:
        payload = response.json()
    except ValueError:
        return default
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return cast(str, error["message"]) or default
        if isinstance(error, str) and error:
            return error
        errors = payload.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            message = errors[0].get("message")
            if isinstance(message, str) and message:
                return message
    return default


def raise_for_response(response: httpx.Response, *, label: str) -> None:
    """Raise a classified error when ``response`` is not successful."""
    kind = classify_status(response.status_code)
    if kind is None:
        return
    message = error_message(response, f"{label}_http_{response.status_code}")
    body = _truncate(response.text)
    if kind is FailureKind.TRANSIENT:
        raise HttpTransientError(
            message,
            http_status=response.status_code,
            response_body=body,
        )
    raise HttpPermanentError(
        message,
        http_status=response.status_code,
        response_body=body,
    )


async def send(
    client: httpx.AsyncClient,
    request: httpx.Request,
    *,
    label: str,
) -> httpx.Response:
    """Send ``request`` and classify transport and status failures."""
    try:
        response = await client.send(request)
    except httpx.TimeoutException as exc:
        raise HttpTransientError(f"{label}_timeout") from exc
    except httpx.RequestError as exc:
        raise HttpTransientError(f"{label}_transport: {exc}") from exc
    raise_for_response(response, label=label)
    return response


def parse_json_object(response: httpx.Response, *, label: str) -> dict[str, object]:
    """Decode a JSON object body or raise a permanent shape error."""
    try:
        payload = response.json()
    except ValueError as exc:
        raise HttpPermanentError(
            f"{label}_parse",
            http_status=response.status_code,
            response_body=_truncate(response.text),
        ) from exc
    if not isinstance(payload, dict):
        raise HttpPermanentError(
            f"{label}_parse",
            http_status=response.status_code,
            response_body=_truncate(response.text),
        )
    return cast(dict[str, object], payload)


def parse_json(response: httpx.Response, *, label: str) -> object:
    """Decode any JSON body or raise a permanent shape error."""
    try:
        return response.json()
    except ValueError as exc:
        raise HttpPermanentError(
            f"{label}_parse",
            http_status=response.status_code,
            response_body=_truncate(response.text),
        ) from exc
