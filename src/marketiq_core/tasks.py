"""Background work handed off after an immediate acknowledgment.

``BoundedTaskQueue`` runs fire-and-forget work on a fixed worker pool with a
bounded backlog and per-outcome counters, so failures are logged and counted
instead of vanishing. ``PagedJob`` advances long jobs one bounded page per
invocation and persists its cursor, so a restarted process resumes where the
last page stopped.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass, field, replace
from typing import Any

from marketiq_core.kv.keys import job_key
from marketiq_core.kv.storage import AbstractKeyValueStore
from marketiq_core.logging import (
    AnyLogger,
    bind_log_context,
    get_logger,
    log_exception,
    log_info,
    log_warning,
)

TaskFactory = Callable[[], Awaitable[object]]
ItemProcessor = Callable[[str, "JobState"], Awaitable[object]]

JOB_RUNNING = "running"
JOB_DONE = "done"
DEFAULT_JOB_TTL_SECONDS = 7 * 24 * 3600
DEFAULT_PAGE_SIZE = 30
_JOB_LISTING_PAGE = 100


@dataclass
class TaskCounters:
    succeeded: int = 0
    failed: int = 0
    rejected: int = 0


class BoundedTaskQueue:
    """Fixed worker pool over a bounded in-process queue."""

    def __init__(
        self,
        *,
        max_pending: int = 100,
        workers: int = 2,
        logger: AnyLogger | None = None,
    ) -> None:
        """Create a queue; call ``start`` to begin processing.

        Args:
            max_pending: Maximum queued, not yet started tasks.
            workers: Number of concurrent worker tasks.
            logger: Structured logger.

        Raises:
            ValueError: If ``max_pending`` or ``workers`` is below 1.
        """
        if max_pending < 1:
            raise ValueError("max_pending must be >= 1")
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._queue: asyncio.Queue[tuple[str, TaskFactory]] = asyncio.Queue(maxsize=max_pending)
        self._worker_count = workers
        self._workers: list[asyncio.Task[None]] = []
        self._logger = get_logger(__name__) if logger is None else logger
        self.counters = TaskCounters()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return any(not worker.done() for worker in self._workers)

    def submit(self, name: str, coro_factory: TaskFactory) -> bool:
        """Queue ``coro_factory`` for execution; False when the backlog is full."""
        try:
            self._queue.put_nowait((name, coro_factory))
        except asyncio.QueueFull:
            self.counters.rejected += 1
            log_warning(
                self._logger,
                "task_queue.rejected",
                task=name,
                pending=self._queue.qsize(),
            )
            return False
        return True

    async def start(self) -> None:
        """Start workers if not already running."""
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._work(), name=f"task-queue-worker-{index}")
            for index in range(self._worker_count)
        ]

    async def join(self) -> None:
        """Wait until every queued task has finished."""
        await self._queue.join()

    async def stop(self, *, drain: bool = True, timeout: float = 5.0) -> None:
        """Stop workers, first waiting up to ``timeout`` for the backlog if ``drain``."""
        if drain and self.running:
            with suppress(TimeoutError):
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
        workers = self._workers
        self._workers = []
        for worker in workers:
            worker.cancel()
        for worker in workers:
            with suppress(asyncio.CancelledError):
                await worker

    async def _work(self) -> None:
        while True:
            name, factory = await self._queue.get()
            try:
                with bind_log_context(task=name):
                    await factory()
            except Exception:
                self.counters.failed += 1
                log_exception(self._logger, "task_queue.task_failed", task=name)
            else:
                self.counters.succeeded += 1
            finally:
                self._queue.task_done()


@dataclass(frozen=True)
class JobState:
    """Persisted progress of one paged job."""

    job_id: str
    kind: str
    source_prefix: str
    status: str = JOB_RUNNING
    cursor: str = ""
    sent: int = 0
    failed: int = 0
    created_at_ms: int = 0
    updated_at_ms: int = 0
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return job_key(self.kind, self.job_id)

    @property
    def done(self) -> bool:
        return self.status == JOB_DONE

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.job_id,
            "kind": self.kind,
            "sourcePrefix": self.source_prefix,
            "status": self.status,
            "cursor": self.cursor,
            "sent": self.sent,
            "failed": self.failed,
            "createdAt": self.created_at_ms,
            "updatedAt": self.updated_at_ms,
            "payload": self.payload,
        }

    @classmethod
    def from_record(cls, record: object) -> JobState | None:
        if not isinstance(record, dict):
            return None
        job_id = record.get("id")
        kind = record.get("kind")
        prefix = record.get("sourcePrefix")
        if not all(isinstance(value, str) and value for value in (job_id, kind, prefix)):
            return None
        payload = record.get("payload")
        return cls(
            job_id=job_id,  # type: ignore[arg-type]
            kind=kind,  # type: ignore[arg-type]
            source_prefix=prefix,  # type: ignore[arg-type]
            status=str(record.get("status") or JOB_RUNNING),
            cursor=str(record.get("cursor") or ""),
            sent=_count(record.get("sent")),
            failed=_count(record.get("failed")),
            created_at_ms=_count(record.get("createdAt")),
            updated_at_ms=_count(record.get("updatedAt")),
            payload=payload if isinstance(payload, dict) else {},
        )


def _count(value: object) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return max(value, 0)
    return 0


class PagedJob:
    """Resumable job walking every key under a prefix, one page per call.

    Storage errors propagate so the caller's scheduler can count the failure;
    the stored cursor only moves after a page is fully processed.
    """

    def __init__(
        self,
        store: AbstractKeyValueStore,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        ttl_seconds: int = DEFAULT_JOB_TTL_SECONDS,
        now_fn: Callable[[], float] = time.time,
        logger: AnyLogger | None = None,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self._store = store
        self._page_size = page_size
        self._ttl_seconds = ttl_seconds
        self._now_fn = now_fn
        self._logger = get_logger(__name__) if logger is None else logger

    def _now_ms(self) -> int:
        return int(self._now_fn() * 1000)

    async def _persist(self, state: JobState) -> None:
        await self._store.put_json(state.key, state.to_record(), ttl_seconds=self._ttl_seconds)

    async def create(
        self,
        kind: str,
        source_prefix: str,
        payload: dict[str, Any] | None = None,
        *,
        job_id: str | None = None,
    ) -> JobState:
        """Persist a new running job over ``source_prefix``."""
        now = self._now_ms()
        state = JobState(
            job_id=job_id or f"{now}-{secrets.token_hex(3)}",
            kind=kind,
            source_prefix=source_prefix,
            created_at_ms=now,
            updated_at_ms=now,
            payload=dict(payload or {}),
        )
        await self._persist(state)
        log_info(self._logger, "paged_job.created", job=state.key)
        return state

    async def load(self, key: str) -> JobState | None:
        return JobState.from_record(await self._store.get_json(key))

    async def run_page(self, key: str, process_item: ItemProcessor) -> JobState | None:
        """Process the next page of a running job and persist its progress.

        Args:
            key: Job key as returned by ``JobState.key``.
            process_item: Called once per source key; raising counts the item
                as failed without stopping the page.

        Returns:
            Updated state, or ``None`` if the job does not exist.
        """
        state = await self.load(key)
        if state is None or state.done:
            return state
        return await self._advance(key, state, process_item)

    async def _advance(
        self,
        key: str,
        state: JobState,
        process_item: ItemProcessor,
    ) -> JobState:
        page = await self._store.list_prefix(
            state.source_prefix,
            limit=self._page_size,
            cursor=state.cursor or None,
        )
        sent = state.sent
        failed = state.failed
        for item_key in page.keys:
            try:
                with bind_log_context(job=key, item=item_key):
                    await process_item(item_key, state)
            except Exception as exc:
                failed += 1
                log_warning(
                    self._logger,
                    "paged_job.item_failed",
                    job=key,
                    item=item_key,
                    error=str(exc) or exc.__class__.__name__,
                )
            else:
                sent += 1

        cursor = page.cursor or ""
        status = JOB_DONE if not cursor or not page.keys else JOB_RUNNING
        updated = replace(
            state,
            cursor=cursor,
            sent=sent,
            failed=failed,
            status=status,
            updated_at_ms=self._now_ms(),
        )
        await self._persist(updated)
        if updated.done:
            log_info(
                self._logger,
                "paged_job.finished",
                job=key,
                sent=updated.sent,
                failed=updated.failed,
            )
        return updated

    async def run_pending(
        self,
        kind: str,
        process_item: ItemProcessor,
        *,
        limit: int = 10,
    ) -> list[JobState]:
        """Advance up to ``limit`` running jobs of ``kind`` by one page each.

        Finished records stay in the store until their TTL lapses, so the
        listing is walked to its end and finished jobs are skipped.
        """
        advanced: list[JobState] = []
        cursor: str | None = None
        while len(advanced) < limit:
            listing = await self._store.list_prefix(
                job_key(kind, ""),
                limit=_JOB_LISTING_PAGE,
                cursor=cursor,
            )
            for key in listing.keys:
                state = await self.load(key)
                if state is None or state.done:
                    continue
                advanced.append(await self._advance(key, state, process_item))
                if len(advanced) >= limit:
                    break
            if not listing.cursor:
                break
            cursor = listing.cursor
        return advanced
