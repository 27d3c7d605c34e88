from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def _to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_utc(dt: datetime) -> str:
    return _to_utc(dt).isoformat().replace("+00:00", "Z")


def parse_iso8601_utc(value: str) -> datetime:
    text = value.strip()
    if text.lower().endswith("z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return dt


@dataclass(frozen=True)
class Agent:
    """A tracked researcher from the roster service."""
    id: str
    name: str
    image_url: Optional[str] = None
    active: bool = True

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> Optional["Agent"]:
        agent_id = payload.get("id")
        if agent_id is None or agent_id == "":
            return None
        return cls(
            id=str(agent_id),
            name=str(payload.get("name") or agent_id),
            image_url=payload.get("photoUrl") or payload.get("image_url"),
            active=bool(payload.get("isActive", payload.get("active", True))),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "image_url": self.image_url,
            "active": self.active,
        }


@dataclass(frozen=True)
class LocationSample:
    agent_id: str
    latitude: float
    longitude: float
    timestamp: datetime

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")
        if self.timestamp.tzinfo is None:
            object.__setattr__(self, "timestamp", _to_utc(self.timestamp))

    @property
    def coords(self) -> tuple:
        return (self.latitude, self.longitude)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "LocationSample":
        agent_id = payload.get("researcherId", payload.get("agent_id"))
        if agent_id is None or agent_id == "":
            raise ValueError("missing researcherId")
        ts = payload.get("timestamp")
        if isinstance(ts, (int, float)):
            # epoch milliseconds
            timestamp = datetime.fromtimestamp(ts / 1000.0, tz=timezone.utc)
        elif isinstance(ts, str):
            timestamp = parse_iso8601_utc(ts)
        else:
            raise ValueError(f"invalid timestamp {ts!r}")
        return cls(
            agent_id=str(agent_id),
            latitude=float(payload["latitude"]),
            longitude=float(payload["longitude"]),
            timestamp=timestamp,
        )

    def to_dict(self) -> dict:
        return {
            "agent_id": self.agent_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timestamp": isoformat_utc(self.timestamp),
        }
