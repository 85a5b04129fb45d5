from __future__ import annotations

from typing import Literal

from pydantic import ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

AIProviderName = Literal["openai", "gemini", "compat", "platform"]

_DEFAULT_AI_ORDER: tuple[AIProviderName, ...] = ("openai", "gemini", "compat", "platform")


def parse_csv(value: str | None) -> tuple[str, ...]:
    """Split a comma/whitespace separated list, dropping blanks and duplicates."""
    if not value:
        return ()
    out: list[str] = []
    for part in value.replace("\n", ",").replace(" ", ",").split(","):
        item = part.strip()
        if item and item not in out:
            out.append(item)
    return tuple(out)


class CoreSettings(BaseSettings):
    """Process-level settings for the resilience layer.

    Values come from ``MARKETIQ_*`` environment variables. Runtime-tunable
    thresholds (TTLs, per-minute limits, feature toggles) live in the
    versioned ``AppConfig`` instead.
    """

    model_config = SettingsConfigDict(env_prefix="MARKETIQ_", case_sensitive=False)

    log_level: str = "INFO"

    kv_account_id: str = ""
    kv_namespace_id: str = ""
    kv_api_token: str = ""
    kv_base_url: str = "https://api.cloudflare.com/client/v4"
    kv_request_timeout_seconds: float = 8.0
    kv_retry_attempts: int = 3

    cache_sql_url: str | None = None

    owner_ids: str = ""
    admin_ids: str = ""

    breaker_failure_threshold: int = 3
    breaker_cooldown_seconds: float = 300.0
    breaker_state_ttl_seconds: int = 3600

    config_history_limit: int = 200
    config_cache_seconds: float = 25.0

    ai_provider_order: str = ",".join(_DEFAULT_AI_ORDER)
    openai_api_key: str = ""
    openai_api_keys: str = ""
    openai_model: str = "gpt-4o-mini"
    gemini_api_key: str = ""
    gemini_api_keys: str = ""
    gemini_model: str = "gemini-1.5-flash"
    compat_base_url: str = ""
    compat_api_key: str = ""
    compat_api_keys: str = ""
    compat_model: str = ""

    twelvedata_api_key: str = ""
    finnhub_api_key: str = ""
    alphavantage_api_key: str = ""
    polygon_api_key: str = ""

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator(
        "openai_model",
        "gemini_model",
        "compat_model",
        "compat_base_url",
        "kv_account_id",
        "kv_namespace_id",
        mode="before",
    )
    @classmethod
    def _strip_string(cls, value: object, info: ValidationInfo) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip()
        if info.field_name == "compat_base_url":
            normalized = normalized.rstrip("/")
        return normalized

    @model_validator(mode="after")
    def _validate_core_settings(self) -> CoreSettings:
        if self.breaker_failure_threshold < 1:
            raise ValueError("breaker_failure_threshold must be >= 1")
        if self.breaker_cooldown_seconds < 0:
            raise ValueError("breaker_cooldown_seconds must be >= 0")
        if self.kv_retry_attempts < 1:
            raise ValueError("kv_retry_attempts must be >= 1")
        if self.kv_request_timeout_seconds <= 0:
            raise ValueError("kv_request_timeout_seconds must be > 0")
        if self.config_history_limit < 1:
            raise ValueError("config_history_limit must be >= 1")

        unknown = [
            name for name in parse_csv(self.ai_provider_order)
            if name not in _DEFAULT_AI_ORDER
        ]
        if unknown:
            raise ValueError(f"ai_provider_order has unknown providers: {','.join(unknown)}")

        compat_keys = self.compat_keys()
        if compat_keys and not (self.compat_base_url and self.compat_model):
            raise ValueError(
                "compat_base_url and compat_model are required when compat keys are set"
            )
        return self

    def owner_id_set(self) -> frozenset[str]:
        """Return owner user ids."""
        return frozenset(parse_csv(self.owner_ids))

    def admin_id_set(self) -> frozenset[str]:
        """Return admin user ids (owners are implicitly admins)."""
        return frozenset(parse_csv(self.admin_ids)) | self.owner_id_set()

    def ai_order(self) -> tuple[AIProviderName, ...]:
        """Return the configured AI provider order."""
        order = parse_csv(self.ai_provider_order)
        return tuple(name for name in order if name in _DEFAULT_AI_ORDER)  # type: ignore[misc]

    def openai_keys(self) -> tuple[str, ...]:
        return collect_keys(self.openai_api_key, self.openai_api_keys)

    def gemini_keys(self) -> tuple[str, ...]:
        return collect_keys(self.gemini_api_key, self.gemini_api_keys)

    def compat_keys(self) -> tuple[str, ...]:
        return collect_keys(self.compat_api_key, self.compat_api_keys)

    def kv_configured(self) -> bool:
        """Return whether the remote key-value store is configured."""
        return bool(self.kv_account_id and self.kv_namespace_id and self.kv_api_token)


def collect_keys(primary: str, fallback_csv: str) -> tuple[str, ...]:
    """Return the primary key followed by fallback keys, de-duplicated in order."""
    keys: list[str] = []
    for key in (primary.strip(), *parse_csv(fallback_csv)):
        if key and key not in keys:
            keys.append(key)
    return tuple(keys)
