from __future__ import annotations

import asyncio
import time
from datetime import date
from typing import List, Optional, Tuple

from location_client import BackendFetchFailed, LocationClient
from location_models import Agent, LocationSample


class LocationStore:
    """Holds the sample set for one displayed day plus the session roster.

    ``load`` replaces the sample set wholesale. A response is applied only if,
    when it arrives, the store still shows the day it was requested for and no
    newer request for that day has been applied already.
    """

    def __init__(self, client: LocationClient, day: Optional[date] = None):
        self._client = client
        self._day = day
        self._samples: Tuple[LocationSample, ...] = ()
        self._generation = 0
        self._dispatched = 0
        self._applied = 0
        self.version = 0
        self.loading = True
        self.last_error: Optional[str] = None
        self.last_loaded_ts: float = 0.0
        self._roster: Optional[List[Agent]] = None
        self._roster_lock = asyncio.Lock()

    @property
    def day(self) -> Optional[date]:
        return self._day

    @property
    def samples(self) -> Tuple[LocationSample, ...]:
        return self._samples

    def set_day(self, day: date) -> None:
        if day == self._day:
            return
        self._day = day
        self._generation += 1
        self._samples = ()
        self.loading = True
        self.last_error = None
        self.version += 1

    def invalidate(self) -> None:
        """Make every in-flight ``load`` a no-op on arrival."""
        self._generation += 1

    async def load(self, day: date) -> Optional[Tuple[LocationSample, ...]]:
        generation = self._generation
        self._dispatched += 1
        seq = self._dispatched
        try:
            fetched = await self._client.get_locations_for_day(day)
        except BackendFetchFailed as exc:
            if generation == self._generation and day == self._day:
                self.last_error = str(exc)
            print(f"[store] load {day.isoformat()} failed: {exc}")
            raise

        if generation != self._generation or day != self._day:
            print(f"[store] discarding stale response for {day.isoformat()}")
            return None
        if seq < self._applied:
            print(f"[store] discarding superseded response for {day.isoformat()}")
            return None

        self._samples = tuple(fetched)
        self._applied = seq
        self.version += 1
        self.loading = False
        self.last_error = None
        self.last_loaded_ts = time.time()
        return self._samples

    async def roster(self) -> List[Agent]:
        async with self._roster_lock:
            if self._roster is None:
                agents = await self._client.get_agents()
                self._roster = [a for a in agents if a.active]
                print(f"[store] roster loaded: {len(self._roster)} active of {len(agents)}")
            return list(self._roster)
