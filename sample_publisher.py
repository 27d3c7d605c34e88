"""Throttled position reporting from a tracked researcher's device."""

from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Set, Union

from location_client import BackendReportFailed, LocationClient
from location_models import parse_iso8601_utc


PERMISSION_DENIED = "permission_denied"
TIMEOUT = "timeout"
POSITION_UNAVAILABLE = "position_unavailable"

DEFAULT_REPORT_INTERVAL_S = 30.0


class SensorError(Exception):
    """Error delivered by a sensor feed.

    ``permission_denied`` is fatal: the feed can never deliver positions
    again. ``timeout`` and ``position_unavailable`` are transient.
    """

    def __init__(self, kind: str, message: str = ""):
        super().__init__(f"{kind}: {message}" if message else kind)
        self.kind = kind
        self.message = message

    @property
    def fatal(self) -> bool:
        return self.kind == PERMISSION_DENIED


@dataclass(frozen=True)
class PositionEvent:
    latitude: float
    longitude: float
    accuracy: Optional[float]  # metres
    timestamp: datetime


PositionCallback = Callable[[PositionEvent], None]
ErrorCallback = Callable[[SensorError], None]


class SensorSubscription(ABC):
    @abstractmethod
    def close(self) -> None:
        """Stop delivering events. Safe to call more than once."""


class SensorFeed(ABC):
    @abstractmethod
    def subscribe(self, on_position: PositionCallback, on_error: ErrorCallback) -> SensorSubscription:
        """Start delivering position events and sensor errors to the callbacks."""


class SamplePublisher:
    """Forward at most one position per ``interval_s`` to the backend.

    The first event arriving more than ``interval_s`` after the last queued
    report is sent; every other event is dropped, including one arriving at
    exactly ``interval_s``. A permission error from the sensor disables the
    publisher for good.

    Usage:
        async with SamplePublisher(feed, client, agent_id="r-17"):
            await stop_event.wait()
    """

    def __init__(
        self,
        feed: SensorFeed,
        client: LocationClient,
        agent_id: str,
        interval_s: float = DEFAULT_REPORT_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.feed = feed
        self.agent_id = agent_id
        self.interval_s = interval_s
        self.disabled = False
        self.sent = 0
        self.failed = 0
        self.discarded = 0
        self._client = client
        self._clock = clock
        self._subscription: Optional[SensorSubscription] = None
        self._last_queued: Optional[float] = None
        self._sends: Set[asyncio.Task] = set()

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None

    def start(self) -> bool:
        if self.disabled:
            print(f"[publisher] {self.agent_id}: tracking disabled, not subscribing")
            return False
        if self._subscription is None:
            self._subscription = self.feed.subscribe(self._on_position, self._on_error)
            print(f"[publisher] {self.agent_id}: subscribed to sensor feed")
        return True

    def stop(self) -> None:
        self._release()
        for task in list(self._sends):
            task.cancel()
        self._last_queued = None

    async def aclose(self) -> None:
        pending = list(self._sends)
        self.stop()
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def __aenter__(self) -> "SamplePublisher":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _release(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.close()
            print(f"[publisher] {self.agent_id}: sensor subscription released")

    def _on_position(self, event: PositionEvent) -> None:
        if self.disabled or self._subscription is None:
            return
        now = self._clock()
        if self._last_queued is not None and now - self._last_queued <= self.interval_s:
            self.discarded += 1
            return
        self._last_queued = now
        task = asyncio.get_running_loop().create_task(self._send(event))
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)

    async def _send(self, event: PositionEvent) -> None:
        try:
            await self._client.report_location(
                self.agent_id, event.latitude, event.longitude, event.timestamp
            )
        except BackendReportFailed as exc:
            self.failed += 1
            print(f"[publisher] {self.agent_id}: report dropped: {exc}")
            return
        self.sent += 1

    def _on_error(self, error: SensorError) -> None:
        if error.fatal:
            print(f"[publisher] {self.agent_id}: sensor permission denied, stopping for good")
            self.disabled = True
            self.stop()
            return
        print(f"[publisher] {self.agent_id}: sensor error ignored: {error}")


# ---------------------------
# gpsd feed
# ---------------------------
GPSD_WATCH_COMMAND = b'?WATCH={"enable":true,"json":true};\n'

OpenConnection = Callable[..., Awaitable[tuple]]


def parse_gpsd_message(line: Union[bytes, str]) -> Optional[Union[PositionEvent, SensorError]]:
    """Translate one gpsd JSON report into a position or a sensor error.

    Reports other than TPV and ERROR (VERSION, DEVICES, SKY, ...) yield None.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    try:
        msg = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(msg, dict):
        return None

    cls = msg.get("class")
    if cls == "ERROR":
        return SensorError(POSITION_UNAVAILABLE, str(msg.get("message") or "gpsd error"))
    if cls != "TPV":
        return None

    lat = msg.get("lat")
    lon = msg.get("lon")
    if (msg.get("mode") or 0) < 2 or lat is None or lon is None:
        return SensorError(POSITION_UNAVAILABLE, "no fix")

    timestamp = datetime.now(timezone.utc)
    if isinstance(msg.get("time"), str):
        try:
            timestamp = parse_iso8601_utc(msg["time"])
        except ValueError:
            pass

    accuracy = msg.get("eph")
    if accuracy is None:
        horizontal = [v for v in (msg.get("epx"), msg.get("epy")) if v is not None]
        accuracy = max(horizontal) if horizontal else None

    return PositionEvent(
        latitude=float(lat),
        longitude=float(lon),
        accuracy=float(accuracy) if accuracy is not None else None,
        timestamp=timestamp,
    )


class _TaskSubscription(SensorSubscription):
    def __init__(self, task: asyncio.Task):
        self._task = task

    @property
    def closed(self) -> bool:
        return self._task.done() or self._task.cancelled()

    def close(self) -> None:
        if not self._task.done():
            self._task.cancel()


class GpsdSensorFeed(SensorFeed):
    """Position feed backed by a gpsd daemon's JSON watch stream."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 2947,
        read_timeout_s: float = 10.0,
        reconnect_delay_s: float = 5.0,
        open_connection: OpenConnection = asyncio.open_connection,
    ):
        self.host = host
        self.port = port
        self.read_timeout_s = read_timeout_s
        self.reconnect_delay_s = reconnect_delay_s
        self._open_connection = open_connection

    def subscribe(self, on_position: PositionCallback, on_error: ErrorCallback) -> SensorSubscription:
        task = asyncio.get_running_loop().create_task(
            self._watch(on_position, on_error), name="gpsd-watch"
        )
        return _TaskSubscription(task)

    async def _watch(self, on_position: PositionCallback, on_error: ErrorCallback) -> None:
        while True:
            try:
                reader, writer = await self._open_connection(self.host, self.port)
            except PermissionError as exc:
                on_error(SensorError(PERMISSION_DENIED, str(exc)))
                return
            except OSError as exc:
                on_error(SensorError(POSITION_UNAVAILABLE, f"gpsd unreachable: {exc}"))
                await asyncio.sleep(self.reconnect_delay_s)
                continue

            try:
                writer.write(GPSD_WATCH_COMMAND)
                await writer.drain()
                print(f"[gpsd] watching {self.host}:{self.port}")
                while True:
                    try:
                        line = await asyncio.wait_for(reader.readline(), self.read_timeout_s)
                    except asyncio.TimeoutError:
                        on_error(SensorError(TIMEOUT, f"no report within {self.read_timeout_s:.0f}s"))
                        continue
                    if not line:
                        break
                    result = parse_gpsd_message(line)
                    if isinstance(result, PositionEvent):
                        on_position(result)
                    elif isinstance(result, SensorError):
                        on_error(result)
            except OSError as exc:
                on_error(SensorError(POSITION_UNAVAILABLE, f"gpsd connection lost: {exc}"))
            finally:
                writer.close()
                try:
                    await writer.wait_closed()
                except OSError:
                    pass

            print(f"[gpsd] stream ended, reconnecting in {self.reconnect_delay_s:.0f}s")
            await asyncio.sleep(self.reconnect_delay_s)
