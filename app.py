"""
Researcher Tracking Service: operator API (FastAPI)

Purpose
=======
Poll the location backend for the displayed day, derive each researcher's
latest position and online/offline status, and keep a map surface (markers +
selected route) in sync for the operator dashboard.

Run
---
$ uvicorn app:app --reload --port 8080

Environment
-----------
- PYTHON >= 3.10
- pip install fastapi uvicorn httpx
- TRACKING_API_BASE (required), TRACKING_API_TOKEN, TRACKING_TZ,
  LOCATION_REFRESH_S, STATUS_TICK_S, ONLINE_THRESHOLD_S
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from fastapi import Body, FastAPI, HTTPException
from fastapi.responses import JSONResponse

from location_client import LocationClient
from map_sync import GeoJSONMapSurface
from tracking_config import (
    LOCATION_REFRESH_S,
    ONLINE_THRESHOLD,
    STATUS_TICK_S,
    TRACKING_TZ,
)
from tracking_session import TrackingSession

# ---------------------------
# App & state
# ---------------------------
app = FastAPI(title="Researcher Tracking")


def build_session(client: LocationClient) -> TrackingSession:
    return TrackingSession(
        client,
        surface=GeoJSONMapSurface(),
        tz=TRACKING_TZ,
        threshold=ONLINE_THRESHOLD,
        refresh_period_s=LOCATION_REFRESH_S,
        tick_period_s=STATUS_TICK_S,
    )


@app.on_event("startup")
async def init_tracking_session() -> None:
    client = getattr(app.state, "location_client", None)
    if client is None:
        try:
            client = LocationClient.from_env()
        except RuntimeError as exc:
            print(f"[tracking] client not configured: {exc}")
            app.state.location_client = None
            app.state.tracking_session = None
            return
        app.state.location_client = client
    session = build_session(client)
    app.state.tracking_session = session
    await session.start()
    print(f"[tracking] session started for {session.day.isoformat()}")


@app.on_event("shutdown")
async def shutdown_tracking_session() -> None:
    session = getattr(app.state, "tracking_session", None)
    if session is not None:
        await session.stop()
        app.state.tracking_session = None
    client = getattr(app.state, "location_client", None)
    if client is not None:
        await client.aclose()
        app.state.location_client = None


def _get_session() -> TrackingSession:
    session = getattr(app.state, "tracking_session", None)
    if session is None:
        raise HTTPException(status_code=503, detail="tracking backend not configured")
    return session


def _parse_day(value: Any) -> date:
    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail="day must be YYYY-MM-DD")
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="day must be YYYY-MM-DD") from exc


# ---------------------------
# Routes
# ---------------------------
@app.get("/v1/health")
async def health():
    session = getattr(app.state, "tracking_session", None)
    return {
        "ok": True,
        "configured": session is not None,
        "polling": bool(session and session.scheduler and session.scheduler.running),
    }


@app.get("/api/tracking")
async def tracking_summary():
    return JSONResponse(_get_session().summary())


@app.get("/api/tracking/map")
async def tracking_map():
    session = _get_session()
    surface = session.map.surface
    if not isinstance(surface, GeoJSONMapSurface):
        raise HTTPException(status_code=503, detail="map surface not ready")
    return JSONResponse(surface.to_geojson())


@app.get("/api/tracking/route/{agent_id}")
async def tracking_route(agent_id: str):
    session = _get_session()
    if agent_id not in {a.id for a in session.roster}:
        raise HTTPException(status_code=404, detail="unknown researcher")
    route = session.route_for(agent_id)
    return {
        "agent_id": agent_id,
        "day": session.day.isoformat(),
        "points": [s.to_dict() for s in route],
    }


@app.put("/api/tracking/selection")
async def select_agent(payload: Any = Body(...)):
    session = _get_session()
    agent_id: Optional[str] = payload.get("agent_id") if isinstance(payload, dict) else None
    if not agent_id:
        raise HTTPException(status_code=400, detail="agent_id is required")
    try:
        session.select(str(agent_id))
    except KeyError:
        raise HTTPException(status_code=404, detail="unknown researcher")
    return {"ok": True, "selected_id": session.selected_id}


@app.delete("/api/tracking/selection")
async def clear_selection():
    session = _get_session()
    session.clear_selection()
    return {"ok": True, "selected_id": None}


@app.put("/api/tracking/day")
async def set_tracking_day(payload: Any = Body(...)):
    session = _get_session()
    day = _parse_day(payload.get("day") if isinstance(payload, dict) else None)
    await session.set_day(day)
    return {"ok": True, "day": session.day.isoformat(), "live": session.live}
