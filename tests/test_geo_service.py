import httpx

from app.schemas import LOCAL_LOCATION, UNKNOWN_LOCATION
from app.services.geo_service import GeoLocator

IPAPI_BODY = {
    "ip": "8.8.8.8",
    "country_name": "United States",
    "city": "Mountain View",
    "region": "California",
    "org": "GOOGLE",
}


def _locator(handler, calls: list, **kwargs) -> GeoLocator:
    def _record(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return handler(request)

    return GeoLocator(
        url_template="https://geo.test/{ip}/json/",
        timeout_seconds=1.0,
        transport=httpx.MockTransport(_record),
        **kwargs,
    )


async def test_loopback_is_local_without_network_call():
    calls = []
    locator = _locator(lambda r: httpx.Response(200, json=IPAPI_BODY), calls)

    location = await locator.locate("127.0.0.1")

    assert location == LOCAL_LOCATION
    assert (location.country, location.city, location.region, location.isp) == (
        "Local", "Local", "Local", "Local Network",
    )
    assert calls == []


async def test_private_and_mapped_addresses_are_local():
    calls = []
    locator = _locator(lambda r: httpx.Response(200, json=IPAPI_BODY), calls)

    for ip in ("10.1.2.3", "172.20.0.5", "192.168.1.10", "::1", "::ffff:192.168.0.7"):
        assert await locator.locate(ip) == LOCAL_LOCATION
    assert calls == []


async def test_unparseable_address_is_unknown_without_network_call():
    calls = []
    locator = _locator(lambda r: httpx.Response(200, json=IPAPI_BODY), calls)

    assert await locator.locate("unknown") == UNKNOWN_LOCATION
    assert await locator.locate(None) == UNKNOWN_LOCATION
    assert calls == []


async def test_public_address_uses_provider():
    calls = []
    locator = _locator(lambda r: httpx.Response(200, json=IPAPI_BODY), calls)

    location = await locator.locate("::ffff:8.8.8.8")

    assert len(calls) == 1
    assert calls[0].url.path == "/8.8.8.8/json/"
    assert location.country == "United States"
    assert location.city == "Mountain View"
    assert location.region == "California"
    assert location.isp == "GOOGLE"


async def test_missing_fields_become_unknown():
    calls = []
    locator = _locator(lambda r: httpx.Response(200, json={"country_name": "Kenya"}), calls)

    location = await locator.locate("8.8.8.8")

    assert location.country == "Kenya"
    assert location.city == "Unknown"
    assert location.isp == "Unknown"


async def test_provider_error_body_is_unknown():
    calls = []
    locator = _locator(
        lambda r: httpx.Response(200, json={"error": True, "reason": "Reserved IP Address"}), calls,
    )
    assert await locator.locate("8.8.8.8") == UNKNOWN_LOCATION


async def test_server_error_is_unknown():
    calls = []
    locator = _locator(lambda r: httpx.Response(500, text="boom"), calls)
    assert await locator.locate("8.8.8.8") == UNKNOWN_LOCATION


async def test_non_json_body_is_unknown():
    calls = []
    locator = _locator(lambda r: httpx.Response(200, text="<html>nope</html>"), calls)
    assert await locator.locate("8.8.8.8") == UNKNOWN_LOCATION


async def test_timeout_is_unknown():
    def _timeout(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    calls = []
    locator = _locator(_timeout, calls)
    assert await locator.locate("8.8.8.8") == UNKNOWN_LOCATION
    assert len(calls) == 1


async def test_rate_limit_starts_backoff():
    calls = []
    locator = _locator(lambda r: httpx.Response(429), calls, backoff_seconds=300.0)

    assert await locator.locate("8.8.8.8") == UNKNOWN_LOCATION
    assert locator.backing_off()

    assert await locator.locate("1.1.1.1") == UNKNOWN_LOCATION
    assert len(calls) == 1


async def test_backoff_is_per_instance():
    limited_calls, other_calls = [], []
    limited = _locator(lambda r: httpx.Response(429), limited_calls, backoff_seconds=300.0)
    other = _locator(lambda r: httpx.Response(200, json=IPAPI_BODY), other_calls)

    await limited.locate("8.8.8.8")
    location = await other.locate("8.8.8.8")

    assert location.country == "United States"
    assert len(other_calls) == 1
