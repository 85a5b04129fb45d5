"""Structured annex extraction from model output."""

from marketiq_core.structured.extractor import (
    Extraction,
    OutputSchema,
    StructuredOutputExtractor,
    locate_json_object,
)
from marketiq_core.structured.zones import (
    Zone,
    ZonesSchema,
    build_repair_prompt,
    make_ai_repair,
)

__all__ = [
    "Extraction",
    "OutputSchema",
    "StructuredOutputExtractor",
    "Zone",
    "ZonesSchema",
    "build_repair_prompt",
    "locate_json_object",
    "make_ai_repair",
]
