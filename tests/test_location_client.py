import json
from datetime import date, datetime, timezone

import httpx
import pytest

from tracking_fakes import ROOT_DIR  # noqa: F401

from location_client import BackendFetchFailed, BackendReportFailed, LocationClient


def _client(handler) -> LocationClient:
    return LocationClient(
        "https://api.example.org/v1/",
        token="secret",
        transport=httpx.MockTransport(handler),
    )


async def test_get_agents_parses_roster():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/researchers"
        assert request.headers["Authorization"] == "Bearer secret"
        return httpx.Response(
            200,
            json=[
                {"id": "a1", "name": "Ana", "photoUrl": "https://img/a1.png", "isActive": True},
                {"id": "b2", "name": "Bruno", "isActive": False},
                {"name": "no id"},
            ],
        )

    client = _client(handler)
    agents = await client.get_agents()
    await client.aclose()
    assert [(a.id, a.active) for a in agents] == [("a1", True), ("b2", False)]
    assert agents[0].image_url == "https://img/a1.png"


async def test_get_locations_for_day_skips_malformed_samples(capsys):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["date"] == "2024-05-01"
        return httpx.Response(
            200,
            json=[
                {"researcherId": "a1", "latitude": -23.5, "longitude": -46.6, "timestamp": "2024-05-01T10:00:00Z"},
                {"researcherId": "a1", "latitude": 123.0, "longitude": 0.0, "timestamp": "2024-05-01T10:01:00Z"},
                {"researcherId": "a1", "latitude": 1.0, "longitude": 1.0, "timestamp": "yesterday"},
                {"researcherId": "b2", "latitude": 1.0, "longitude": 2.0, "timestamp": 1714557600000},
            ],
        )

    client = _client(handler)
    samples = await client.get_locations_for_day(date(2024, 5, 1))
    await client.aclose()
    assert [s.agent_id for s in samples] == ["a1", "b2"]
    assert samples[0].timestamp == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert samples[1].timestamp == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert "skipped 2 malformed samples" in capsys.readouterr().out


async def test_fetch_errors_become_backend_fetch_failed():
    client = _client(lambda request: httpx.Response(500, json={"error": "boom"}))
    with pytest.raises(BackendFetchFailed):
        await client.get_locations_for_day(date(2024, 5, 1))

    def broken(request):
        raise httpx.ConnectError("refused", request=request)

    client = _client(broken)
    with pytest.raises(BackendFetchFailed):
        await client.get_agents()
    await client.aclose()


async def test_report_location_posts_payload():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(201, json={"ok": True})

    client = _client(handler)
    await client.report_location("a1", 1.5, 2.5, datetime(2024, 5, 1, 10, 0, 30, tzinfo=timezone.utc))
    await client.aclose()
    assert seen == [
        (
            "POST",
            "/v1/locations",
            {"researcherId": "a1", "latitude": 1.5, "longitude": 2.5, "timestamp": "2024-05-01T10:00:30Z"},
        )
    ]


async def test_report_failure_becomes_backend_report_failed():
    client = _client(lambda request: httpx.Response(403))
    with pytest.raises(BackendReportFailed):
        await client.report_location("a1", 1.0, 1.0, datetime(2024, 5, 1, tzinfo=timezone.utc))
    await client.aclose()


def test_from_env_requires_base_url(monkeypatch):
    monkeypatch.delenv("TRACKING_API_BASE", raising=False)
    with pytest.raises(RuntimeError):
        LocationClient.from_env()
    monkeypatch.setenv("TRACKING_API_BASE", "https://api.example.org")
    assert isinstance(LocationClient.from_env(), LocationClient)
