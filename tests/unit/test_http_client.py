import httpx
import pytest

from shipflow.core.exceptions import CarrierError
from shipflow.core.http_client import CarrierHTTPClient


def make_client(handler) -> CarrierHTTPClient:
    return CarrierHTTPClient(
        "https://carrier.test",
        carrier_code="DELHIVERY",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_returns_decoded_json():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"waybill": "DL1"})

    async with make_client(handler) as http:
        body = await http.get("/api/p/packages/json/", params={"waybill": "DL1"}, headers={"Authorization": "Token t"})

    assert body == {"waybill": "DL1"}
    assert seen["url"] == "https://carrier.test/api/p/packages/json/?waybill=DL1"
    assert seen["auth"] == "Token t"


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code,retryable", [(400, False), (404, False), (500, True), (503, True)])
async def test_http_errors_classified(status_code, retryable):
    def handler(request):
        return httpx.Response(status_code, text="nope")

    http = make_client(handler)
    with pytest.raises(CarrierError) as exc_info:
        await http.post("/api/p/label", json={})
    await http.close()

    assert exc_info.value.status_code == status_code
    assert exc_info.value.retryable is retryable
    assert exc_info.value.details["body"] == "nope"


@pytest.mark.asyncio
async def test_timeout_is_retryable_carrier_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    http = make_client(handler)
    with pytest.raises(CarrierError) as exc_info:
        await http.get("/slow")
    await http.close()

    assert exc_info.value.status_code is None
    assert exc_info.value.retryable is True
    assert "Timeout" in exc_info.value.message


@pytest.mark.asyncio
async def test_malformed_json_raises():
    def handler(request):
        return httpx.Response(200, content=b"<html>maintenance</html>")

    http = make_client(handler)
    with pytest.raises(CarrierError) as exc_info:
        await http.get("/api")
    await http.close()

    assert "Malformed" in exc_info.value.message


@pytest.mark.asyncio
async def test_empty_body_is_empty_dict():
    def handler(request):
        return httpx.Response(200)

    http = make_client(handler)
    assert await http.post("/api/p/edit", json={}) == {}
    await http.close()


@pytest.mark.asyncio
async def test_error_field_under_200_raises():
    def handler(request):
        return httpx.Response(200, json={"error": "Invalid pincode"})

    http = make_client(handler)
    with pytest.raises(CarrierError) as exc_info:
        await http.post("/api/p/label", json={})
    await http.close()

    assert "Invalid pincode" in exc_info.value.message
