"""Operator view session: wires store, derived views, scheduler and map."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Dict, List, Optional, Tuple

from location_client import BackendFetchFailed, LocationClient
from location_models import Agent, LocationSample
from location_store import LocationStore
from location_views import (
    ONLINE_THRESHOLD,
    AgentStatus,
    ViewMemo,
    agent_statuses,
    build_route,
    latest_positions,
    online_count,
)
from map_sync import MapSurface, MapSyncController
from polling_scheduler import (
    DEFAULT_REFRESH_PERIOD_S,
    DEFAULT_TICK_PERIOD_S,
    PollingScheduler,
    SleepFn,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrackingSession:
    """State of one operator view: displayed day, selection and map handle.

    ``start()`` loads the roster and starts polling; ``stop()`` cancels both
    timers, releases the map surface and turns any in-flight backend response
    into a no-op. A stopped session can be started again and redraws on the
    surface it last held. Lifecycle calls and day changes run one at a time.
    """

    def __init__(
        self,
        client: LocationClient,
        surface: Optional[MapSurface] = None,
        day: Optional[date] = None,
        tz: tzinfo = timezone.utc,
        threshold: timedelta = ONLINE_THRESHOLD,
        refresh_period_s: float = DEFAULT_REFRESH_PERIOD_S,
        tick_period_s: float = DEFAULT_TICK_PERIOD_S,
        now_fn: Callable[[], datetime] = _utcnow,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.tz = tz
        self.threshold = threshold
        self.refresh_period_s = refresh_period_s
        self.tick_period_s = tick_period_s
        self._now_fn = now_fn
        self._sleep = sleep
        self.now = now_fn()
        self.store = LocationStore(client, day or self.today())
        self.map = MapSyncController(surface, tz=tz)
        self.roster: Tuple[Agent, ...] = ()
        self._roster_loaded = False
        self._selected_id: Optional[str] = None
        self._surface = surface
        self._scheduler: Optional[PollingScheduler] = None
        self._lifecycle_lock = asyncio.Lock()
        self._active = False
        self._latest_view = ViewMemo(latest_positions)
        self._status_view = ViewMemo(agent_statuses)
        self._route_view = ViewMemo(build_route)

    # ---------------------------
    # Lifecycle
    # ---------------------------
    @property
    def active(self) -> bool:
        return self._active

    @property
    def scheduler(self) -> Optional[PollingScheduler]:
        return self._scheduler

    async def start(self) -> None:
        async with self._lifecycle_lock:
            if self._active:
                return
            self._active = True
            if self.map.surface is None and self._surface is not None:
                self.map.attach(self._surface)
            await self._load_roster()
            self._start_scheduler()

    async def stop(self) -> None:
        async with self._lifecycle_lock:
            self._active = False
            await self._stop_scheduler()
            self.store.invalidate()
            self._surface = self.map.detach() or self._surface
            print("[session] stopped")

    async def __aenter__(self) -> "TrackingSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def attach_surface(self, surface: MapSurface) -> None:
        self._surface = surface
        self.map.attach(surface)
        self._sync_map()

    def today(self) -> date:
        return self._now_fn().astimezone(self.tz).date()

    @property
    def day(self) -> date:
        return self.store.day

    @property
    def live(self) -> bool:
        """True when the displayed day is today and gets polled."""
        return self.day == self.today()

    async def set_day(self, day: date) -> None:
        async with self._lifecycle_lock:
            if day == self.store.day:
                return
            await self._stop_scheduler()
            self._selected_id = None
            self.store.set_day(day)
            self._sync_map()
            print(f"[session] displayed day is now {day.isoformat()}")
            if self._active:
                self._start_scheduler()

    def _start_scheduler(self) -> None:
        if self._scheduler is not None:
            self._scheduler.stop()
        self._scheduler = PollingScheduler(
            refresh=self.refresh,
            tick=self.tick,
            refresh_period_s=self.refresh_period_s,
            tick_period_s=self.tick_period_s,
            poll_refresh=self.live,
            sleep=self._sleep,
        )
        self._scheduler.start()

    async def _stop_scheduler(self) -> None:
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None:
            await scheduler.aclose()

    # ---------------------------
    # Data
    # ---------------------------
    async def _load_roster(self) -> None:
        try:
            self.roster = tuple(await self.store.roster())
            self._roster_loaded = True
        except BackendFetchFailed as exc:
            print(f"[session] roster fetch failed: {exc}")

    async def refresh(self) -> bool:
        """Reload the displayed day; returns True when new data was applied."""
        if not self._active:
            return False
        if not self._roster_loaded:
            await self._load_roster()
        try:
            applied = await self.store.load(self.store.day)
        except BackendFetchFailed:
            return False
        if applied is None or not self._active:
            return False
        self._sync_map()
        return True

    def tick(self, now: Optional[datetime] = None) -> None:
        self.now = now or self._now_fn()
        self._sync_map()

    # ---------------------------
    # Selection
    # ---------------------------
    @property
    def selected_id(self) -> Optional[str]:
        return self._selected_id

    def select(self, agent_id: str) -> None:
        if agent_id not in {a.id for a in self.roster}:
            raise KeyError(agent_id)
        self._selected_id = agent_id
        self._sync_map()

    def clear_selection(self) -> None:
        self._selected_id = None
        self._sync_map()

    # ---------------------------
    # Derived views
    # ---------------------------
    @property
    def latest(self) -> Dict[str, LocationSample]:
        return self._latest_view(self.store.samples)

    @property
    def statuses(self) -> List[AgentStatus]:
        return self._status_view(self.roster, self.latest, self.now, self.threshold)

    @property
    def online_count(self) -> int:
        return online_count(self.statuses)

    @property
    def route(self) -> List[LocationSample]:
        if self._selected_id is None:
            return []
        return self._route_view(self.store.samples, self._selected_id)

    def route_for(self, agent_id: str) -> List[LocationSample]:
        return build_route(self.store.samples, agent_id)

    def _sync_map(self) -> None:
        statuses = self.statuses
        self.map.sync_markers(statuses, self._selected_id)
        self.map.sync_route(self.route, self._selected_id)

    def summary(self) -> Dict[str, Any]:
        statuses = self.statuses
        return {
            "day": self.day.isoformat(),
            "live": self.live,
            "loading": self.store.loading and not self.store.samples,
            "error": self.store.last_error if self.store.loading else None,
            "now": self.now.isoformat(),
            "selected_id": self._selected_id,
            "online_count": online_count(statuses),
            "seen_count": len(self.latest),
            "agents": [row.to_dict(self.tz) for row in statuses],
        }
