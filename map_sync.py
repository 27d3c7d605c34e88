"""
Map synchronization

Pushes the derived tracking views (latest positions, statuses, the selected
route) onto a map surface. The surface is an explicit handle owned by the
operator session; any renderer implementing ``MapSurface`` can be plugged in.

``GeoJSONMapSurface`` is the renderer used by the HTTP service: it keeps the
layers in memory and exports them as a GeoJSON FeatureCollection that the
browser map draws as-is.
"""

from __future__ import annotations

import html
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import tzinfo
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from location_models import LocationSample
from location_views import AgentStatus


MARKERS_LAYER = "markers"
ROUTE_LAYER = "route"

# Initial view centred on Brazil
DEFAULT_CENTER: Tuple[float, float] = (-14.235, -51.925)
DEFAULT_ZOOM = 4
DEFAULT_PADDING: Tuple[int, int] = (50, 50)

ONLINE_COLOR = "green"
OFFLINE_COLOR = "gray"
ROUTE_COLOR = "blue"

Coord = Tuple[float, float]


@dataclass(frozen=True)
class Marker:
    agent_id: str
    latitude: float
    longitude: float
    online: bool
    popup_html: str

    @property
    def coords(self) -> Coord:
        return (self.latitude, self.longitude)

    @property
    def color(self) -> str:
        return ONLINE_COLOR if self.online else OFFLINE_COLOR


@dataclass(frozen=True)
class Polyline:
    agent_id: str
    coords: Tuple[Coord, ...]
    color: str = ROUTE_COLOR


class MapSurface(ABC):
    """Drawing primitives the controller needs from a map renderer."""

    @abstractmethod
    def clear_layer(self, layer: str) -> None:
        """Remove every feature from ``layer``."""

    @abstractmethod
    def add_marker(self, marker: Marker) -> None:
        """Place ``marker`` on the markers layer."""

    @abstractmethod
    def add_polyline(self, polyline: Polyline) -> None:
        """Draw ``polyline`` on the route layer."""

    @abstractmethod
    def fit_bounds(self, coords: Sequence[Coord], padding: Tuple[int, int] = DEFAULT_PADDING) -> None:
        """Move the viewport so every coordinate in ``coords`` is visible."""


def popup_html(name: str, sample: LocationSample, tz: Optional[tzinfo] = None) -> str:
    ts = sample.timestamp.astimezone(tz) if tz is not None else sample.timestamp
    return f"<b>{html.escape(name)}</b><br>Last update: {ts.strftime('%H:%M:%S')}"


class MapSyncController:
    """Keeps a ``MapSurface`` in step with the derived views.

    Every ``sync_*`` call is idempotent: with unchanged input it leaves the
    surface untouched. Without an attached surface the calls do nothing and
    return ``False``.
    """

    def __init__(
        self,
        surface: Optional[MapSurface] = None,
        tz: Optional[tzinfo] = None,
        padding: Tuple[int, int] = DEFAULT_PADDING,
    ):
        self.tz = tz
        self.padding = padding
        self._surface: Optional[MapSurface] = None
        self.attach(surface)

    @property
    def surface(self) -> Optional[MapSurface]:
        return self._surface

    def attach(self, surface: Optional[MapSurface]) -> None:
        self._surface = surface
        self._drawn_markers: Optional[Tuple[Marker, ...]] = None
        self._fitted_positions: Optional[FrozenSet[Tuple[str, float, float]]] = None
        self._marker_selection: Optional[str] = None
        self._drawn_route: Optional[Tuple[Optional[str], Tuple[Coord, ...]]] = None

    def detach(self) -> Optional[MapSurface]:
        surface = self._surface
        self.attach(None)
        return surface

    def build_markers(self, statuses: Sequence[AgentStatus]) -> List[Marker]:
        markers: List[Marker] = []
        for row in statuses:
            if row.latest is None:
                continue
            markers.append(
                Marker(
                    agent_id=row.agent.id,
                    latitude=row.latest.latitude,
                    longitude=row.latest.longitude,
                    online=row.status.is_online,
                    popup_html=popup_html(row.agent.name, row.latest, self.tz),
                )
            )
        return markers

    def sync_markers(self, statuses: Sequence[AgentStatus], selected_id: Optional[str]) -> bool:
        surface = self._surface
        if surface is None:
            return False

        markers = tuple(self.build_markers(statuses))
        if markers != self._drawn_markers:
            surface.clear_layer(MARKERS_LAYER)
            for marker in markers:
                surface.add_marker(marker)
            self._drawn_markers = markers

        # Fit only when the marker set moved, or when the operator returns to
        # the all-agents view; status-only redraws keep the user's pan/zoom.
        positions = frozenset((m.agent_id, m.latitude, m.longitude) for m in markers)
        selection_cleared = self._marker_selection is not None and selected_id is None
        self._marker_selection = selected_id
        if markers and selected_id is None and (
            positions != self._fitted_positions or selection_cleared
        ):
            surface.fit_bounds([m.coords for m in markers], self.padding)
            self._fitted_positions = positions
        return True

    def sync_route(self, route: Sequence[LocationSample], selected_id: Optional[str]) -> bool:
        surface = self._surface
        if surface is None:
            return False

        coords: Tuple[Coord, ...] = ()
        if selected_id is not None:
            coords = tuple(s.coords for s in route)
        key = (selected_id, coords)
        if key == self._drawn_route:
            return True

        surface.clear_layer(ROUTE_LAYER)
        if selected_id is not None and coords:
            surface.add_polyline(Polyline(agent_id=selected_id, coords=coords))
            surface.fit_bounds(list(coords), self.padding)
        self._drawn_route = key
        return True


class GeoJSONMapSurface(MapSurface):
    """In-memory map surface exported as GeoJSON for a browser renderer."""

    def __init__(self, center: Coord = DEFAULT_CENTER, zoom: int = DEFAULT_ZOOM):
        self.center = center
        self.zoom = zoom
        self.markers: List[Marker] = []
        self.polylines: List[Polyline] = []
        self.bounds: Optional[Tuple[float, float, float, float]] = None
        self.padding: Tuple[int, int] = DEFAULT_PADDING
        self.revision = 0

    def clear_layer(self, layer: str) -> None:
        if layer == MARKERS_LAYER:
            self.markers = []
        elif layer == ROUTE_LAYER:
            self.polylines = []
        else:
            raise ValueError(f"unknown layer {layer!r}")
        self.revision += 1

    def add_marker(self, marker: Marker) -> None:
        self.markers.append(marker)
        self.revision += 1

    def add_polyline(self, polyline: Polyline) -> None:
        self.polylines.append(polyline)
        self.revision += 1

    def fit_bounds(self, coords: Sequence[Coord], padding: Tuple[int, int] = DEFAULT_PADDING) -> None:
        if not coords:
            return
        lats = [c[0] for c in coords]
        lons = [c[1] for c in coords]
        # (west, south, east, north)
        self.bounds = (min(lons), min(lats), max(lons), max(lats))
        self.padding = padding
        self.revision += 1

    def to_geojson(self) -> Dict[str, Any]:
        features: List[Dict[str, Any]] = []
        for marker in self.markers:
            features.append(
                {
                    "type": "Feature",
                    "properties": {
                        "layer": MARKERS_LAYER,
                        "agent_id": marker.agent_id,
                        "online": marker.online,
                        "color": marker.color,
                        "popup": marker.popup_html,
                    },
                    "geometry": {
                        "type": "Point",
                        "coordinates": [marker.longitude, marker.latitude],
                    },
                }
            )
        for line in self.polylines:
            features.append(
                {
                    "type": "Feature",
                    "properties": {
                        "layer": ROUTE_LAYER,
                        "agent_id": line.agent_id,
                        "color": line.color,
                    },
                    "geometry": {
                        "type": "LineString",
                        "coordinates": [[lon, lat] for lat, lon in line.coords],
                    },
                }
            )
        collection: Dict[str, Any] = {
            "type": "FeatureCollection",
            "features": features,
            "view": {
                "center": list(self.center),
                "zoom": self.zoom,
                "padding": list(self.padding),
                "revision": self.revision,
            },
        }
        if self.bounds is not None:
            collection["bbox"] = list(self.bounds)
        return collection
