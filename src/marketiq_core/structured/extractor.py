"""Recover a validated JSON annex from free-form model output."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from marketiq_core.errors import StructuredOutputError
from marketiq_core.logging import AnyLogger, get_logger, log_info, log_warning


class OutputSchema(Protocol):
    """Fixed JSON shape an extractor validates against."""

    name: str
    hint: str
    repair_purpose: str

    def validate(self, obj: object) -> dict[str, object]:
        """Return the normalized payload or raise ``StructuredOutputError``."""

    def empty(self) -> dict[str, object]:
        """Return the payload used when nothing valid was found."""


RepairFn = Callable[[str, OutputSchema], Awaitable[str | None]]


@dataclass(frozen=True)
class Extraction:
    """Prose with the JSON annex removed, plus the validated annex.

    Attributes:
        cleaned_text: Input text without the located JSON object.
        structured: Normalized payload, or the schema's empty payload.
        valid: Whether ``structured`` passed validation.
        repaired: Whether the payload came from the repair call.
    """

    cleaned_text: str
    structured: dict[str, object] = field(default_factory=dict)
    valid: bool = False
    repaired: bool = False


@dataclass(frozen=True)
class LocatedObject:
    value: dict[str, object]
    start: int


def locate_json_object(text: str) -> LocatedObject | None:
    """Find the JSON object a model appended to ``text``.

    The whole text is tried first. Otherwise each opening brace is tried from
    the last one backwards, bounded by the last closing brace, so a nested
    object is found by walking out to its outermost brace.
    """
    stripped = text.strip()
    if stripped:
        try:
            whole = json.loads(stripped)
        except ValueError:
            whole = None
        if isinstance(whole, dict):
            return LocatedObject(value=whole, start=0)

    end = text.rfind("}")
    if end < 0:
        return None
    start = text.rfind("{", 0, end)
    while start >= 0:
        try:
            candidate = json.loads(text[start : end + 1])
        except ValueError:
            candidate = None
        if isinstance(candidate, dict):
            return LocatedObject(value=candidate, start=start)
        start = text.rfind("{", 0, start)
    return None


class StructuredOutputExtractor:
    """Parse, validate and at most once repair a structured annex."""

    def __init__(
        self,
        repair: RepairFn | None = None,
        *,
        logger: AnyLogger | None = None,
    ) -> None:
        self._repair = repair
        self._logger = get_logger(__name__) if logger is None else logger

    async def extract(self, text: str, schema: OutputSchema) -> Extraction:
        """Return the cleaned prose and the validated payload. Never raises."""
        source = text or ""
        located = locate_json_object(source)
        cleaned = source[: located.start].strip() if located is not None else source.strip()

        if located is not None:
            payload = self._validate(located.value, schema)
            if payload is not None:
                return Extraction(cleaned_text=cleaned, structured=payload, valid=True)

        repaired = await self._repair_once(source, schema)
        if repaired is not None:
            log_info(self._logger, "structured_output.repaired", schema=schema.name)
            return Extraction(
                cleaned_text=cleaned,
                structured=repaired,
                valid=True,
                repaired=True,
            )

        log_warning(self._logger, "structured_output.invalid", schema=schema.name)
        return Extraction(cleaned_text=cleaned, structured=schema.empty(), valid=False)

    def _validate(self, obj: object, schema: OutputSchema) -> dict[str, object] | None:
        try:
            return schema.validate(obj)
        except StructuredOutputError as exc:
            log_info(
                self._logger,
                "structured_output.validation_failed",
                schema=schema.name,
                error=str(exc),
            )
            return None

    async def _repair_once(
        self, text: str, schema: OutputSchema
    ) -> dict[str, object] | None:
        if self._repair is None:
            return None
        try:
            reply = await self._repair(text, schema)
        except Exception as exc:
            log_warning(
                self._logger,
                "structured_output.repair_failed",
                schema=schema.name,
                error=str(exc) or exc.__class__.__name__,
            )
            return None
        if not reply:
            return None
        located = locate_json_object(reply)
        if located is None:
            return None
        return self._validate(located.value, schema)
