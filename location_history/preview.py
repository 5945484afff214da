"""Interactive HTML preview of resolved period geometry."""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional, Sequence, Union

import folium  # Using folium to build an interactive Leaflet map.

from .models import LatLon

PathLike = Union[str, Path]

EMPTY_CENTER: LatLon = (20.0, 0.0)
EMPTY_ZOOM = 2

_START_COLOR = "green"
_END_COLOR = "red"

_HEX_COLOR = re.compile(r"^#?[0-9a-f]{6}$")

# Leaflet takes CSS colours; named KML colours map onto these.
_CSS_COLORS = {
    "red": "#ff0000",
    "blue": "#0000ff",
    "green": "#00ff00",
}


def css_color(color: Optional[str]) -> str:
    if not color:
        return _CSS_COLORS["blue"]
    key = color.strip().lower()
    if key in _CSS_COLORS:
        return _CSS_COLORS[key]
    if _HEX_COLOR.match(key):
        return key if key.startswith("#") else f"#{key}"
    return _CSS_COLORS["blue"]


def _bounds(tracks: Sequence[Sequence[LatLon]]) -> List[List[float]]:
    lats = [lat for track in tracks for lat, _ in track]
    lons = [lon for track in tracks for _, lon in track]
    return [[min(lats), min(lons)], [max(lats), max(lons)]]


def build_preview_map(
    tracks: Sequence[Sequence[LatLon]],
    *,
    color: Optional[str] = None,
    title: Optional[str] = None,
    output_html_path: Optional[PathLike] = None,
) -> folium.Map:
    """Create an interactive map drawing one polyline per track.

    Args:
        tracks: ``(lat, lon)`` geometry per segment, matched or raw.
        color: Named colour or ``#RRGGBB`` for the polylines.
        title: Tooltip used on every polyline.
        output_html_path: Optional path to persist the map as an HTML file.

    Returns:
        A :class:`folium.Map`. With no drawable track the map shows a world
        view.
    """

    drawable = [list(track) for track in tracks if len(track) >= 2]
    line_color = css_color(color)

    if not drawable:
        folium_map = folium.Map(
            location=list(EMPTY_CENTER), zoom_start=EMPTY_ZOOM, control_scale=True
        )
    else:
        folium_map = folium.Map(
            location=list(drawable[0][0]), zoom_start=13, control_scale=True
        )
        for track in drawable:
            folium.PolyLine(
                track,
                color=line_color,
                weight=4,
                opacity=0.8,
                tooltip=title or "Track",
            ).add_to(folium_map)
        folium.Marker(
            location=list(drawable[0][0]),
            tooltip="Start",
            icon=folium.Icon(color=_START_COLOR),
        ).add_to(folium_map)
        folium.Marker(
            location=list(drawable[-1][-1]),
            tooltip="End",
            icon=folium.Icon(color=_END_COLOR),
        ).add_to(folium_map)
        folium_map.fit_bounds(_bounds(drawable))

    if output_html_path is not None:
        output_path = Path(output_html_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        folium_map.save(str(output_path))

    return folium_map


__all__ = ["build_preview_map", "css_color"]
