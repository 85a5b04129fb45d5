"""Versioned, audited configuration over the shared key-value store.

Every mutation first snapshots the current config under a fresh version key,
then writes the new current value and appends an audit entry. Rollback goes
through the same path, so a rollback is itself reversible.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable, Collection, Mapping
from dataclasses import dataclass
from typing import Any

from marketiq_core.config.audit import AuditEntry, ConfigSnapshot, config_hash
from marketiq_core.config.model import AppConfig, default_config, normalize_config
from marketiq_core.config.rbac import Role, role_of
from marketiq_core.errors import StorageError
from marketiq_core.kv.keys import (
    audit_key,
    audit_prefix,
    config_key,
    config_version_key,
    config_version_prefix,
)
from marketiq_core.kv.storage import AbstractKeyValueStore
from marketiq_core.logging import AnyLogger, get_logger, log_error, log_info, log_warning
from marketiq_core.settings import CoreSettings

REASON_UPDATE = "config_update"
REASON_ROLLBACK = "config_rollback"

ERROR_VERSION_NOT_FOUND = "version_not_found"
ERROR_ADMIN_ONLY = "admin_only"
ERROR_STORAGE_UNAVAILABLE = "storage_unavailable"

_LIST_PAGE_SIZE = 1000


@dataclass(frozen=True)
class SaveOutcome:
    ok: bool
    config: AppConfig | None = None
    error: str = ""


@dataclass(frozen=True)
class RollbackOutcome:
    ok: bool
    config: AppConfig | None = None
    error: str = ""


def _random_suffix() -> str:
    return secrets.token_hex(4)


class ConfigStore:
    """Read, mutate and roll back the runtime ``AppConfig``.

    Reads are cached in process for ``cache_seconds``. When the store is
    unreachable ``get_current`` serves the last config it loaded, or the
    defaults if it never loaded one. Mutations report storage failures in
    their outcome value instead of raising.
    """

    def __init__(
        self,
        store: AbstractKeyValueStore,
        *,
        owner_ids: Collection[str] = (),
        admin_ids: Collection[str] = (),
        cache_seconds: float = 25.0,
        history_limit: int = 200,
        now_fn: Callable[[], float] = time.time,
        suffix_fn: Callable[[], str] = _random_suffix,
        logger: AnyLogger | None = None,
    ) -> None:
        """Create a config store.

        Args:
            store: Shared key-value store holding current, history and audit.
            owner_ids: User ids with the owner role.
            admin_ids: User ids with the admin role; owners need not be listed.
            cache_seconds: In-process read cache lifetime.
            history_limit: Snapshots and audit entries kept by ``prune_history``.
            now_fn: Wall clock returning epoch seconds.
            suffix_fn: Random suffix source for version and audit keys.
            logger: Structured logger.
        """
        if history_limit < 1:
            raise ValueError("history_limit must be >= 1")
        self._store = store
        self._owner_ids = frozenset(owner_ids)
        self._admin_ids = frozenset(admin_ids) | self._owner_ids
        self._cache_seconds = cache_seconds
        self._history_limit = history_limit
        self._now_fn = now_fn
        self._suffix_fn = suffix_fn
        self._logger = get_logger(__name__) if logger is None else logger
        self._cached: AppConfig | None = None
        self._cached_at = 0.0
        self._last_good: AppConfig | None = None

    @classmethod
    def from_settings(
        cls,
        store: AbstractKeyValueStore,
        settings: CoreSettings,
        **kwargs: Any,
    ) -> ConfigStore:
        return cls(
            store,
            owner_ids=settings.owner_id_set(),
            admin_ids=settings.admin_id_set(),
            cache_seconds=settings.config_cache_seconds,
            history_limit=settings.config_history_limit,
            **kwargs,
        )

    def role_of(self, user_id: str | int) -> Role:
        return role_of(user_id, self._owner_ids, self._admin_ids)

    def invalidate(self) -> None:
        """Drop the in-process cache so the next read hits the store."""
        self._cached = None
        self._cached_at = 0.0

    def _now_ms(self) -> int:
        return int(self._now_fn() * 1000)

    def _remember(self, config: AppConfig) -> None:
        self._cached = config
        self._cached_at = self._now_fn()
        self._last_good = config

    async def get_current(self) -> AppConfig:
        """Return the current config. Never raises."""
        if self._cached is not None and self._now_fn() - self._cached_at < self._cache_seconds:
            return self._cached
        try:
            raw = await self._store.get_json(config_key())
        except StorageError as exc:
            log_warning(
                self._logger,
                "config.load_failed",
                error=str(exc),
                fallback="last_known_good" if self._last_good else "defaults",
            )
            return self._last_good if self._last_good is not None else default_config()
        config = normalize_config(raw if raw is not None else {})
        self._remember(config)
        return config

    async def save(
        self,
        actor_id: str | int,
        new_config: AppConfig | Mapping[str, Any],
        reason: str = REASON_UPDATE,
    ) -> SaveOutcome:
        """Snapshot the current config, write ``new_config`` and audit the change.

        Args:
            actor_id: User performing the change.
            new_config: Replacement config; normalized before writing.
            reason: Audit action name.

        Returns:
            The normalized config now current, or ``storage_unavailable`` if
            the snapshot or the new current value could not be written.
        """
        try:
            saved = await self._write(actor_id, new_config, reason)
        except StorageError as exc:
            log_warning(
                self._logger,
                "config.save_failed",
                actor_id=str(actor_id),
                reason=reason,
                error=str(exc),
            )
            return SaveOutcome(ok=False, error=ERROR_STORAGE_UNAVAILABLE)
        return SaveOutcome(ok=True, config=saved)

    async def _write(
        self,
        actor_id: str | int,
        new_config: AppConfig | Mapping[str, Any],
        reason: str,
    ) -> AppConfig:
        previous = await self.get_current()
        before = previous.to_payload()

        version_key = config_version_key(self._now_ms(), self._suffix_fn())
        snapshot = ConfigSnapshot(
            version_key=version_key,
            captured_at_ms=self._now_ms(),
            payload=before,
        )
        await self._store.put_json(version_key, snapshot.to_record())

        normalized = normalize_config(new_config)
        after = normalized.to_payload()
        await self._store.put_json(config_key(), after)
        self._remember(normalized)

        await self._append_audit(
            AuditEntry(
                timestamp_ms=self._now_ms(),
                actor_id=str(actor_id),
                action=reason,
                before_hash=config_hash(before),
                after_hash=config_hash(after),
                metadata={"versionKey": version_key},
            )
        )
        log_info(
            self._logger,
            "config.saved",
            actor_id=str(actor_id),
            reason=reason,
            version_key=version_key,
        )

        try:
            await self.prune_history()
        except StorageError as exc:
            log_warning(self._logger, "config.prune_failed", error=str(exc))
        return normalized

    async def _append_audit(self, entry: AuditEntry) -> None:
        key = audit_key(entry.timestamp_ms, self._suffix_fn())
        try:
            await self._store.put_json(key, entry.to_record())
        except StorageError as exc:
            log_error(
                self._logger,
                "config.audit_write_failed",
                action=entry.action,
                error=str(exc),
            )

    async def get_version(self, version_key: str) -> ConfigSnapshot | None:
        if not version_key.startswith(config_version_prefix()):
            return None
        record = await self._store.get_json(version_key)
        return ConfigSnapshot.from_record(version_key, record)

    async def rollback(self, actor_id: str | int, version_key: str) -> RollbackOutcome:
        """Restore the snapshot at ``version_key`` as the current config."""
        if self.role_of(actor_id) is Role.USER:
            return RollbackOutcome(ok=False, error=ERROR_ADMIN_ONLY)
        try:
            snapshot = await self.get_version(version_key)
            if snapshot is None:
                return RollbackOutcome(ok=False, error=ERROR_VERSION_NOT_FOUND)
            restored = await self._write(actor_id, snapshot.payload, REASON_ROLLBACK)
        except StorageError as exc:
            log_warning(
                self._logger,
                "config.rollback_failed",
                version_key=version_key,
                error=str(exc),
            )
            return RollbackOutcome(ok=False, error=ERROR_STORAGE_UNAVAILABLE)
        return RollbackOutcome(ok=True, config=restored)

    async def _all_keys(self, prefix: str) -> list[str]:
        keys: list[str] = []
        cursor: str | None = None
        while True:
            page = await self._store.list_prefix(prefix, limit=_LIST_PAGE_SIZE, cursor=cursor)
            keys.extend(page.keys)
            if not page.cursor:
                return keys
            cursor = page.cursor

    async def list_versions(self, limit: int = 20) -> list[ConfigSnapshot]:
        """Return up to ``limit`` snapshots, newest first."""
        keys = sorted(await self._all_keys(config_version_prefix()), reverse=True)
        snapshots: list[ConfigSnapshot] = []
        for key in keys[: max(limit, 0)]:
            snapshot = ConfigSnapshot.from_record(key, await self._store.get_json(key))
            if snapshot is not None:
                snapshots.append(snapshot)
        return snapshots

    async def list_audit(self, limit: int = 20) -> list[AuditEntry]:
        """Return up to ``limit`` audit entries, newest first."""
        keys = sorted(await self._all_keys(audit_prefix()), reverse=True)
        entries: list[AuditEntry] = []
        for key in keys[: max(limit, 0)]:
            entry = AuditEntry.from_record(await self._store.get_json(key))
            if entry is not None:
                entries.append(entry)
        return entries

    async def prune_history(self, keep: int | None = None) -> int:
        """Delete all but the newest ``keep`` snapshots and audit entries.

        Returns:
            Number of deleted records.
        """
        limit = self._history_limit if keep is None else max(keep, 0)
        deleted = 0
        for prefix in (config_version_prefix(), audit_prefix()):
            keys = sorted(await self._all_keys(prefix))
            stale = keys[: max(len(keys) - limit, 0)]
            for key in stale:
                await self._store.delete(key)
            deleted += len(stale)
        if deleted:
            log_info(self._logger, "config.history_pruned", deleted=deleted, keep=limit)
        return deleted
