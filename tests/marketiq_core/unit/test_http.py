import httpx
import pytest
from pytest_httpx import HTTPXMock

from marketiq_core.errors import FailureKind
from marketiq_core.http import (
    HttpPermanentError,
    HttpTransientError,
    classify_status,
    parse_json_object,
    send,
)

pytestmark = pytest.mark.asyncio

URL = "https://vendor.test/quote"


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (200, None),
        (304, None),
        (400, FailureKind.PERMANENT),
        (404, FailureKind.PERMANENT),
        (408, FailureKind.TRANSIENT),
        (429, FailureKind.TRANSIENT),
        (501, FailureKind.TRANSIENT),
    ],
)
async def test_classify_status(status: int, expected: FailureKind | None) -> None:
    assert classify_status(status) is expected


async def test_throttling_is_transient_with_body(httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(url=URL, status_code=429, text="slow down")

    async with httpx.AsyncClient() as client:
        with pytest.raises(HttpTransientError) as excinfo:
            await send(client, client.build_request("GET", URL), label="vendor")

    assert str(excinfo.value) == "vendor_http_429"
    assert excinfo.value.http_status == 429
    assert excinfo.value.response_body == "slow down"


async def test_client_error_uses_provider_message(httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(
        url=URL, status_code=401, json={"error": {"message": "invalid api key"}}
    )

    async with httpx.AsyncClient() as client:
        with pytest.raises(HttpPermanentError, match="invalid api key"):
            await send(client, client.build_request("GET", URL), label="vendor")


async def test_transport_errors_are_transient(httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_exception(httpx.ReadTimeout("read timed out"), url=URL)
    httpx_mock.add_exception(httpx.ConnectError("refused"), url=URL)

    async with httpx.AsyncClient() as client:
        with pytest.raises(HttpTransientError, match="vendor_timeout"):
            await send(client, client.build_request("GET", URL), label="vendor")
        with pytest.raises(HttpTransientError, match="vendor_transport"):
            await send(client, client.build_request("GET", URL), label="vendor")


async def test_parse_json_object_rejects_other_shapes() -> None:
    request = httpx.Request("GET", URL)

    assert parse_json_object(httpx.Response(200, json={"a": 1}, request=request), label="v") == {"a": 1}
    with pytest.raises(HttpPermanentError, match="v_parse"):
        parse_json_object(httpx.Response(200, json=[1], request=request), label="v")
    with pytest.raises(HttpPermanentError, match="v_parse"):
        parse_json_object(httpx.Response(200, text="<html>", request=request), label="v")
