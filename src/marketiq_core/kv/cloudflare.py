"""Workers KV adapter over the Cloudflare REST API."""

from __future__ import annotations

from typing import cast
from urllib.parse import quote

import httpx
from tenacity import retry_if_exception_type

from marketiq_core.errors import PermanentError, StorageError, TransientError
from marketiq_core.http import parse_json_object, send
from marketiq_core.kv.storage import AbstractKeyValueStore, KeyPage
from marketiq_core.retry import RetryBackoffPolicy, build_exponential_jitter_retrying
from marketiq_core.settings import CoreSettings

MIN_EXPIRATION_TTL_SECONDS = 60
MAX_LIST_LIMIT = 1000
MIN_LIST_LIMIT = 10


class CloudflareKvStore(AbstractKeyValueStore):
    """Key-value store backed by one Workers KV namespace."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        account_id: str,
        namespace_id: str,
        api_token: str,
        base_url: str = "https://api.cloudflare.com/client/v4",
        timeout_seconds: float = 8.0,
        retry_attempts: int = 3,
        retry_min_seconds: float = 0.2,
        retry_max_seconds: float = 1.0,
    ) -> None:
        """Create a KV adapter sharing ``client`` with the rest of the process.

        Args:
            client: Shared async HTTP client.
            account_id: Cloudflare account id.
            namespace_id: KV namespace id.
            api_token: API token with KV read/write permission.
            base_url: API root, overridable for tests.
            timeout_seconds: Per-request timeout.
            retry_attempts: Max attempts per operation on transient failures.
            retry_min_seconds: Minimum retry backoff in seconds.
            retry_max_seconds: Maximum retry backoff in seconds.
        """
        self._client = client
        self._namespace_url = (
            f"{base_url.rstrip('/')}/accounts/{account_id}"
            f"/storage/kv/namespaces/{namespace_id}"
        )
        self._headers = {"authorization": f"Bearer {api_token}"}
        self._timeout = timeout_seconds
        self._retry_policy = RetryBackoffPolicy(
            attempts=retry_attempts,
            min_seconds=retry_min_seconds,
            max_seconds=retry_max_seconds,
        )

    @classmethod
    def from_settings(
        cls,
        settings: CoreSettings,
        *,
        client: httpx.AsyncClient,
    ) -> CloudflareKvStore:
        """Build the adapter from ``MARKETIQ_KV_*`` settings.

        Raises:
            ValueError: If the account, namespace or token is missing.
        """
        if not settings.kv_configured():
            raise ValueError("kv_account_id, kv_namespace_id and kv_api_token are required")
        return cls(
            client=client,
            account_id=settings.kv_account_id,
            namespace_id=settings.kv_namespace_id,
            api_token=settings.kv_api_token,
            base_url=settings.kv_base_url,
            timeout_seconds=settings.kv_request_timeout_seconds,
            retry_attempts=settings.kv_retry_attempts,
        )

    def _value_url(self, key: str) -> str:
        return f"{self._namespace_url}/values/{quote(key, safe='')}"

    async def _send(self, request: httpx.Request, *, label: str) -> httpx.Response:
        retrying = build_exponential_jitter_retrying(
            retry=retry_if_exception_type(TransientError),
            policy=self._retry_policy,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await send(self._client, request, label=label)
        except (TransientError, PermanentError) as exc:
            raise StorageError(str(exc)) from exc

        raise RuntimeError("KV retry loop exited unexpectedly.")

    def _build(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        content: str | None = None,
    ) -> httpx.Request:
        return self._client.build_request(
            method,
            url,
            params=params,
            content=content,
            headers=self._headers,
            timeout=self._timeout,
        )

    async def get(self, key: str) -> str | None:
        request = self._build("GET", self._value_url(key))
        try:
            response = await self._send(request, label="kv_get")
        except StorageError as exc:
            cause = exc.__cause__
            if getattr(cause, "http_status", None) == 404:
                return None
            raise
        return response.text

    async def put(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        params: dict[str, str] | None = None
        if ttl_seconds is not None:
            ttl = max(int(ttl_seconds), MIN_EXPIRATION_TTL_SECONDS)
            params = {"expiration_ttl": str(ttl)}
        request = self._build("PUT", self._value_url(key), params=params, content=value)
        await self._send(request, label="kv_put")

    async def delete(self, key: str) -> None:
        request = self._build("DELETE", self._value_url(key))
        try:
            await self._send(request, label="kv_delete")
        except StorageError as exc:
            if getattr(exc.__cause__, "http_status", None) == 404:
                return
            raise

    async def list_prefix(
        self,
        prefix: str,
        *,
        limit: int = 100,
        cursor: str | None = None,
    ) -> KeyPage:
        params = {
            "prefix": prefix,
            "limit": str(min(max(limit, MIN_LIST_LIMIT), MAX_LIST_LIMIT)),
        }
        if cursor:
            params["cursor"] = cursor
        request = self._build("GET", f"{self._namespace_url}/keys", params=params)
        response = await self._send(request, label="kv_list")
        try:
            payload = parse_json_object(response, label="kv_list")
        except PermanentError as exc:
            raise StorageError(str(exc)) from exc

        result = payload.get("result")
        if not isinstance(result, list):
            raise StorageError("kv_list response missing result")
        names = [
            cast(str, item["name"])
            for item in result
            if isinstance(item, dict) and isinstance(item.get("name"), str)
        ]
        next_cursor: str | None = None
        info = payload.get("result_info")
        if isinstance(info, dict):
            raw_cursor = info.get("cursor")
            if isinstance(raw_cursor, str) and raw_cursor:
                next_cursor = raw_cursor
        return KeyPage(keys=tuple(names), cursor=next_cursor)
