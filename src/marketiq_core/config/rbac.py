"""Role gating for configuration patches."""

from __future__ import annotations

from collections.abc import Collection, Mapping
from enum import StrEnum
from typing import Any

from marketiq_core.config.model import AppConfig, normalize_config


class Role(StrEnum):
    OWNER = "owner"
    ADMIN = "admin"
    USER = "user"


OWNER_ONLY_FIELDS = frozenset(
    {"wallet_public", "points", "commission", "prompts", "styles", "news"}
)

# Nested mappings merged one level deeper than their section.
_NESTED_MERGE = {"news": "forex_calendar", "prompts": "per_style"}


def role_of(
    user_id: str | int,
    owner_ids: Collection[str],
    admin_ids: Collection[str],
) -> Role:
    """Resolve a user's role; owners outrank admins."""
    normalized = str(user_id).strip()
    if normalized in owner_ids:
        return Role.OWNER
    if normalized in admin_ids:
        return Role.ADMIN
    return Role.USER


def coerce_role(role: Role | str) -> Role:
    """Map a role name to ``Role``, case-insensitively; anything else is ``user``."""
    if isinstance(role, Role):
        return role
    try:
        return Role(str(role).strip().lower())
    except ValueError:
        return Role.USER


def _field_names() -> dict[str, str]:
    names: dict[str, str] = {}
    for name, info in AppConfig.model_fields.items():
        if name == "version":
            continue
        names[name] = name
        if info.alias:
            names[info.alias] = name
    return names


_PATCH_FIELDS = _field_names()


def _alias(model_field: str) -> str:
    return AppConfig.model_fields[model_field].alias or model_field


def _merge_nested(section: str, base: dict[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    merged = {**base, **patch}
    inner = _NESTED_MERGE.get(section)
    if inner is None:
        return merged
    section_model = AppConfig.model_fields[section].annotation
    inner_alias = section_model.model_fields[inner].alias or inner  # type: ignore[union-attr]
    inner_patch = patch.get(inner, patch.get(inner_alias))
    if isinstance(inner_patch, Mapping):
        inner_base = base.get(inner_alias)
        merged.pop(inner, None)
        merged[inner_alias] = {
            **(inner_base if isinstance(inner_base, Mapping) else {}),
            **inner_patch,
        }
    return merged


def propose_patch(
    role: Role | str,
    config: AppConfig,
    patch: Mapping[str, Any] | None,
) -> AppConfig:
    """Apply the fields of ``patch`` that ``role`` may change.

    Pure function. Owner-only fields are dropped for every role but owner,
    the ``user`` role may change nothing, and unknown keys are ignored.
    Keys may be snake_case or the stored camelCase form. Unrecognized roles
    are treated as ``user``.
    """
    current = normalize_config(config)
    resolved = coerce_role(role)
    if resolved is Role.USER or not isinstance(patch, Mapping):
        return current

    payload = current.to_payload()
    for key, value in patch.items():
        field = _PATCH_FIELDS.get(key)
        if field is None:
            continue
        if field in OWNER_ONLY_FIELDS and resolved is not Role.OWNER:
            continue
        alias = _alias(field)
        if field == "wallet_public":
            payload[alias] = "" if value is None else str(value).strip()
        elif isinstance(value, Mapping):
            payload[alias] = _merge_nested(field, payload[alias], value)
    return normalize_config(payload)
