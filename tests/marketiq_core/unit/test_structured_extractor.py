import json

import pytest

from marketiq_core.structured import (
    StructuredOutputExtractor,
    ZonesSchema,
    locate_json_object,
)
from marketiq_core.structured.extractor import OutputSchema
from tests.marketiq_core.support.fakes import FakeLogger

pytestmark = pytest.mark.asyncio

VALID_ANNEX = {
    "schema": "zones_v1",
    "zones": [{"kind": "demand", "price_from": 100, "price_to": 98, "note": "base"}],
}


class _Repair:
    def __init__(self, reply: str | None = None, exc: Exception | None = None) -> None:
        self.reply = reply
        self.exc = exc
        self.calls: list[str] = []

    async def __call__(self, text: str, schema: OutputSchema) -> str | None:
        self.calls.append(text)
        if self.exc is not None:
            raise self.exc
        return self.reply


async def test_locates_trailing_object_with_nested_values() -> None:
    text = 'Bias is bullish {not json}.\n{"schema": "zones_v1", "zones": [{"kind": "supply"}]}'

    located = locate_json_object(text)

    assert located is not None
    assert located.value["zones"] == [{"kind": "supply"}]
    assert text[: located.start].strip() == "Bias is bullish {not json}."


async def test_locate_returns_none_without_object() -> None:
    assert locate_json_object("no braces here") is None
    assert locate_json_object("} reversed {") is None
    assert locate_json_object("[1, 2, 3]") is None


async def test_valid_annex_is_stripped_from_prose(fake_logger: FakeLogger) -> None:
    repair = _Repair()
    extractor = StructuredOutputExtractor(repair, logger=fake_logger)
    text = f"Price is ranging.\n\n{json.dumps(VALID_ANNEX)}\n"

    extraction = await extractor.extract(text, ZonesSchema())

    assert extraction.valid is True
    assert extraction.repaired is False
    assert extraction.cleaned_text == "Price is ranging."
    assert extraction.structured["zones"] == [
        {"kind": "demand", "price_from": 98.0, "price_to": 100.0, "note": "base"}
    ]
    assert repair.calls == []


async def test_whole_text_object_leaves_empty_prose() -> None:
    extraction = await StructuredOutputExtractor().extract(json.dumps(VALID_ANNEX), ZonesSchema())

    assert extraction.valid is True
    assert extraction.cleaned_text == ""


async def test_invalid_annex_is_repaired_exactly_once(fake_logger: FakeLogger) -> None:
    repair = _Repair(reply=f"Here you go: {json.dumps(VALID_ANNEX)}")
    extractor = StructuredOutputExtractor(repair, logger=fake_logger)

    extraction = await extractor.extract('Analysis. {"schema": "zones_v2"}', ZonesSchema())

    assert extraction.valid is True
    assert extraction.repaired is True
    assert extraction.cleaned_text == "Analysis."
    assert len(repair.calls) == 1
    assert "structured_output.repaired" in fake_logger.events


async def test_failed_repair_yields_empty_payload(fake_logger: FakeLogger) -> None:
    repair = _Repair(reply="still { broken")
    extractor = StructuredOutputExtractor(repair, logger=fake_logger)

    extraction = await extractor.extract("Plain prose only.", ZonesSchema())

    assert extraction.valid is False
    assert extraction.structured == {"schema": "zones_v1", "zones": []}
    assert extraction.cleaned_text == "Plain prose only."
    assert len(repair.calls) == 1
    assert fake_logger.levels_for("structured_output.invalid") == ["warning"]


async def test_repair_errors_are_tolerated(fake_logger: FakeLogger) -> None:
    repair = _Repair(exc=RuntimeError("provider down"))
    extractor = StructuredOutputExtractor(repair, logger=fake_logger)

    extraction = await extractor.extract("text {bad", ZonesSchema())

    assert extraction.valid is False
    assert "structured_output.repair_failed" in fake_logger.events


async def test_without_repair_function_invalid_is_final() -> None:
    extraction = await StructuredOutputExtractor().extract(None, ZonesSchema())  # type: ignore[arg-type]

    assert extraction.valid is False
    assert extraction.cleaned_text == ""
