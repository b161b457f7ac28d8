import logging

import httpx
import pytest

from traveltales.errors import UpstreamUnavailable
from traveltales.modules.countries import MOCK_COUNTRIES, CountryProvider, process_country

FRANCE = {
    "name": {"common": "France", "official": "French Republic"},
    "capital": ["Paris"],
    "currencies": {"EUR": {"name": "Euro", "symbol": "€"}},
    "languages": {"fra": "French"},
    "flags": {"png": "https://flagcdn.com/w320/fr.png"},
}

ANTARCTICA = {
    "name": {"common": "Antarctica"},
    "capital": [],
    "currencies": {},
    "languages": {},
    "flags": {"png": "https://flagcdn.com/w320/aq.png"},
}


def make_provider(handler, **kwargs) -> CountryProvider:
    return CountryProvider(
        base_url="https://countries.test/v3.1",
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_process_country():
    assert process_country(FRANCE) == {
        "name": "France",
        "capital": "Paris",
        "currency": {"code": "EUR", "name": "Euro", "symbol": "€"},
        "languages": ["French"],
        "flag": "https://flagcdn.com/w320/fr.png",
    }


def test_process_country_without_capital_or_currency():
    country = process_country(ANTARCTICA)

    assert country["capital"] == "N/A"
    assert country["currency"] is None
    assert country["languages"] == []


def test_process_country_malformed():
    assert process_country({"capital": ["Nowhere"]}) is None
    assert process_country({"name": "flat string", "flags": {}}) is None


@pytest.mark.asyncio
async def test_mock_mode_never_calls_upstream():
    def handler(request):
        raise AssertionError("upstream called in mock mode")

    provider = make_provider(handler, use_mock=True)

    assert await provider.all_countries() == MOCK_COUNTRIES
    results = await provider.search("kingdom")
    assert [c["name"] for c in results] == ["United Kingdom"]


@pytest.mark.asyncio
async def test_all_countries_skips_malformed_records():
    def handler(request):
        assert request.url.path == "/v3.1/all"
        return httpx.Response(200, json=[FRANCE, {"broken": True}, ANTARCTICA])

    countries = await make_provider(handler).all_countries()

    assert [c["name"] for c in countries] == ["France", "Antarctica"]


@pytest.mark.asyncio
async def test_all_countries_retries_then_succeeds():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503)
        return httpx.Response(200, json=[FRANCE])

    countries = await make_provider(handler).all_countries()

    assert len(calls) == 3
    assert countries[0]["name"] == "France"


@pytest.mark.asyncio
async def test_all_countries_exhausted_retries(caplog):
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with caplog.at_level(logging.WARNING, logger="traveltales.modules.countries.provider"):
        with pytest.raises(UpstreamUnavailable) as exc_info:
            await make_provider(handler, retries=3).all_countries()

    assert len(calls) == 3
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
    retried = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
    assert retried == [
        "Country fetch attempt 1 failed: connection refused",
        "Country fetch attempt 2 failed: connection refused",
    ]


@pytest.mark.asyncio
async def test_undecodable_body_is_retried():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(200, content=b"<html>maintenance</html>")
        return httpx.Response(200, json=[FRANCE])

    countries = await make_provider(handler).all_countries()

    assert len(calls) == 2
    assert countries[0]["name"] == "France"


@pytest.mark.asyncio
async def test_empty_listing_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=[{"broken": True}])

    with pytest.raises(UpstreamUnavailable):
        await make_provider(handler).all_countries()
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_search_not_found_is_empty():
    def handler(request):
        assert request.url.path == "/v3.1/name/atlantis"
        return httpx.Response(404, json={"status": 404, "message": "Not Found"})

    assert await make_provider(handler).search("atlantis") == []


@pytest.mark.asyncio
async def test_search_upstream_failure():
    def handler(request):
        return httpx.Response(500)

    with pytest.raises(UpstreamUnavailable) as exc_info:
        await make_provider(handler).search("france")
    assert exc_info.value.status_code == 502
