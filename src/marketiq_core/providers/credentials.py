"""Credential rotation within one provider."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from tenacity import retry_if_exception_type

from marketiq_core.errors import PermanentError, TransientError
from marketiq_core.retry import build_rotation_retrying
from marketiq_core.settings import collect_keys

T = TypeVar("T")

__all__ = ["call_with_credentials", "collect_keys"]


async def call_with_credentials(
    keys: Sequence[str],
    invoke: Callable[[str], Awaitable[T]],
    *,
    label: str,
    attempt_timeout: float | None = None,
) -> T:
    """Call ``invoke`` with each key in turn until one succeeds.

    Transient failures (throttling, server errors, timeouts) rotate to the next
    key. Any other error aborts immediately so a malformed request is not
    replayed against every credential. When every key fails transiently the
    last transient error is re-raised.

    ``attempt_timeout`` bounds each key separately, so a hanging key rotates
    instead of consuming the caller's whole deadline.
    """
    if not keys:
        raise PermanentError(f"{label}_credentials_missing")

    ordered = tuple(keys)
    retrying = build_rotation_retrying(
        retry=retry_if_exception_type((TransientError, TimeoutError)),
        attempts=len(ordered),
    )
    async for attempt in retrying:
        with attempt:
            key = ordered[attempt.retry_state.attempt_number - 1]
            if attempt_timeout is None:
                return await invoke(key)
            return await asyncio.wait_for(invoke(key), timeout=attempt_timeout)

    raise RuntimeError("Credential rotation loop exited unexpectedly.")
