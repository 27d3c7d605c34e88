"""Async client for the researcher roster and location history backend."""
from __future__ import annotations

import os
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import httpx

from location_models import Agent, LocationSample, isoformat_utc


class BackendFetchFailed(RuntimeError):
    """Fetching roster or location data from the backend failed."""


class BackendReportFailed(RuntimeError):
    """Sending a location report to the backend failed."""


class LocationClient:
    """Minimal client for the tracking REST API.

    Endpoints used:
    * ``GET {base}/researchers``
    * ``GET {base}/locations?date=YYYY-MM-DD``
    * ``POST {base}/locations``
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_env(cls) -> "LocationClient":
        """Build a ``LocationClient`` using environment configuration.

        * ``TRACKING_API_BASE`` - required, e.g. ``https://api.example.org/v1``
        * ``TRACKING_API_TOKEN`` - optional bearer token.
        * ``TRACKING_API_TIMEOUT_S`` - optional request timeout (default 10).
        """

        base_url = (os.getenv("TRACKING_API_BASE") or "").strip()
        if not base_url:
            raise RuntimeError("Missing required environment variable: TRACKING_API_BASE")
        token = (os.getenv("TRACKING_API_TOKEN") or "").strip()
        timeout = float(os.getenv("TRACKING_API_TIMEOUT_S", "10"))
        return cls(base_url=base_url, token=token or None, timeout=timeout)

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=5.0),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _get_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        client = await self._ensure_client()
        url = f"{self._base_url}{path}"
        try:
            response = await client.get(url, params=params, headers=self._headers())
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise BackendFetchFailed(
                f"GET {path} returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise BackendFetchFailed(f"GET {path} failed: {exc}") from exc
        except ValueError as exc:
            raise BackendFetchFailed(f"GET {path} returned invalid JSON") from exc

    async def get_agents(self) -> List[Agent]:
        data = await self._get_json("/researchers")
        if not isinstance(data, list):
            raise BackendFetchFailed("researchers payload is not a list")
        agents: List[Agent] = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            agent = Agent.from_payload(entry)
            if agent is not None:
                agents.append(agent)
        return agents

    async def get_locations_for_day(self, day: date) -> List[LocationSample]:
        data = await self._get_json("/locations", params={"date": day.isoformat()})
        if not isinstance(data, list):
            raise BackendFetchFailed("locations payload is not a list")
        samples: List[LocationSample] = []
        skipped = 0
        for entry in data:
            if not isinstance(entry, dict):
                skipped += 1
                continue
            try:
                samples.append(LocationSample.from_payload(entry))
            except (KeyError, TypeError, ValueError):
                skipped += 1
        if skipped:
            print(f"[location_client] skipped {skipped} malformed samples for {day.isoformat()}")
        return samples

    async def report_location(
        self,
        agent_id: str,
        latitude: float,
        longitude: float,
        timestamp: datetime,
    ) -> None:
        client = await self._ensure_client()
        payload = {
            "researcherId": agent_id,
            "latitude": latitude,
            "longitude": longitude,
            "timestamp": isoformat_utc(timestamp),
        }
        try:
            response = await client.post(
                f"{self._base_url}/locations", json=payload, headers=self._headers()
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise BackendReportFailed(
                f"POST /locations returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise BackendReportFailed(f"POST /locations failed: {exc}") from exc
