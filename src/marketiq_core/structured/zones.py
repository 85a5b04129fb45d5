"""``zones_v1``: demand and supply price zones attached to an analysis."""

from __future__ import annotations

import math
from typing import Literal

from pydantic import BaseModel, ConfigDict

from marketiq_core.errors import StructuredOutputError
from marketiq_core.providers.ai import AIClient, ChatMessage
from marketiq_core.providers.chain import ChainFailure
from marketiq_core.structured.extractor import OutputSchema, RepairFn

SCHEMA_NAME = "zones_v1"
MAX_ZONES = 8
NOTE_MAX_CHARS = 120
REPAIR_TIMEOUT_SECONDS = 12.0
REPAIR_INPUT_MAX_CHARS = 7000

ZONES_HINT = (
    "\n\nEnd the answer with exactly one valid JSON object (JSON only, no extra text). "
    'Schema: {"schema":"zones_v1","zones":[{"kind":"demand|supply",'
    '"price_from":number,"price_to":number,"note":string}]} '
    "At most 8 zones. If there are no zones, return an empty zones list.\n"
)


class Zone(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["demand", "supply"]
    price_from: float
    price_to: float
    note: str = ""


def _number(value: object) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _zone(raw: object) -> Zone | None:
    if not isinstance(raw, dict):
        return None
    kind = str(raw.get("kind") or "").strip().lower()
    if kind not in ("demand", "supply"):
        return None
    price_from = _number(raw.get("price_from"))
    price_to = _number(raw.get("price_to"))
    if price_from is None or price_to is None:
        return None
    low, high = sorted((abs(price_from), abs(price_to)))
    note = raw.get("note")
    return Zone(
        kind=kind,  # type: ignore[arg-type]
        price_from=low,
        price_to=high,
        note=("" if note is None else str(note))[:NOTE_MAX_CHARS],
    )


class ZonesSchema:
    """Validator for the ``zones_v1`` annex.

    Only the first eight entries are considered; entries with an unknown kind
    or non-numeric prices are dropped without failing the payload.
    """

    name = SCHEMA_NAME
    hint = ZONES_HINT
    repair_purpose = "repair_zones"

    def validate(self, obj: object) -> dict[str, object]:
        if not isinstance(obj, dict):
            raise StructuredOutputError("zones payload must be an object")
        if obj.get("schema") != SCHEMA_NAME:
            raise StructuredOutputError("zones payload has wrong schema tag")
        raw_zones = obj.get("zones")
        entries = raw_zones[:MAX_ZONES] if isinstance(raw_zones, list) else []
        zones = [zone for zone in map(_zone, entries) if zone is not None]
        return {"schema": SCHEMA_NAME, "zones": [zone.model_dump() for zone in zones]}

    def empty(self) -> dict[str, object]:
        return {"schema": SCHEMA_NAME, "zones": []}


def build_repair_prompt(text: str, schema: OutputSchema) -> str:
    """Ask a model to turn broken output into one valid JSON object."""
    return (
        "You repair JSON. Return exactly one valid JSON object and nothing else.\n"
        "The input below may be broken JSON or JSON mixed with prose. "
        "Return only the final JSON."
        f"{schema.hint}"
        "\n---INPUT---\n"
        f"{(text or '')[:REPAIR_INPUT_MAX_CHARS]}"
    )


def make_ai_repair(ai_client: AIClient) -> RepairFn:
    """Return a repair callable backed by the AI provider chain."""

    async def _repair(text: str, schema: OutputSchema) -> str | None:
        outcome = await ai_client.complete(
            schema.repair_purpose,
            [ChatMessage(role="user", content=build_repair_prompt(text, schema))],
            timeout=REPAIR_TIMEOUT_SECONDS,
        )
        if isinstance(outcome, ChainFailure):
            return None
        return outcome.result

    return _repair
