"""Cached AI analysis with a validated zones annex."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from marketiq_core.cache import TieredCache, content_hash
from marketiq_core.config import AppConfig, ConfigStore
from marketiq_core.logging import AnyLogger, get_logger, log_info
from marketiq_core.providers.ai import AIClient, ChatMessage
from marketiq_core.providers.chain import ChainFailure
from marketiq_core.structured import StructuredOutputExtractor, ZonesSchema, make_ai_repair

ANALYSIS_PURPOSE = "analysis"
ANALYSIS_TIMEOUT_SECONDS = 20.0


@dataclass(frozen=True)
class AnalysisOutcome:
    ok: bool
    text: str = ""
    zones: list[dict[str, Any]] = field(default_factory=list)
    cached: bool = False
    error: str = ""


def _zones_of(payload: object) -> list[dict[str, Any]]:
    if not isinstance(payload, dict):
        return []
    zones = payload.get("zones")
    return [zone for zone in zones if isinstance(zone, dict)] if isinstance(zones, list) else []


class AnalysisService:
    """Prompt in, prose plus zones out, cached by prompt content.

    A cached entry is only served while it is younger than the config's
    ``cache.analysis_ttl_ms``. An unusable zones annex never fails the call;
    the prose is returned with an empty zone list.
    """

    def __init__(
        self,
        *,
        ai: AIClient,
        cache: TieredCache,
        config: ConfigStore,
        extractor: StructuredOutputExtractor | None = None,
        logger: AnyLogger | None = None,
    ) -> None:
        self._ai = ai
        self._cache = cache
        self._config = config
        self._extractor = (
            StructuredOutputExtractor(make_ai_repair(ai)) if extractor is None else extractor
        )
        self._schema = ZonesSchema()
        self._logger = get_logger(__name__) if logger is None else logger

    async def analyze(self, prompt: str) -> AnalysisOutcome:
        config: AppConfig = await self._config.get_current()
        ttl_seconds = config.cache.analysis_ttl_seconds
        key = content_hash(prompt)

        cached = await self._cache.get(key, ttl_seconds)
        if cached is not None and isinstance(cached.get("text"), str) and cached["text"]:
            log_info(self._logger, "analysis.cache_hit", hash=key)
            return AnalysisOutcome(
                ok=True,
                text=cached["text"],
                zones=_zones_of(cached),
                cached=True,
            )

        outcome = await self._ai.complete(
            ANALYSIS_PURPOSE,
            [ChatMessage(role="user", content=prompt)],
            timeout=ANALYSIS_TIMEOUT_SECONDS,
        )
        if isinstance(outcome, ChainFailure):
            return AnalysisOutcome(ok=False, error=outcome.reason)

        extraction = await self._extractor.extract(outcome.result, self._schema)
        zones = _zones_of(extraction.structured)
        await self._cache.put(key, {"text": extraction.cleaned_text, "zones": zones}, ttl_seconds)
        log_info(
            self._logger,
            "analysis.completed",
            hash=key,
            provider=outcome.provider_name,
            zones=len(zones),
            zones_valid=extraction.valid,
        )
        return AnalysisOutcome(ok=True, text=extraction.cleaned_text, zones=zones)
