"""KML 2.2 document rendering for segmented location history.

Rendering is pure: identical inputs always produce identical bytes, and export
always uses the raw segment geometry rather than map-matched output.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence

from .models import CanonicalPoint, Segment, StyleOptions
from .utils import format_iso_utc, format_local

LOGGER = logging.getLogger(__name__)

KML_NAMESPACE = "http://www.opengis.net/kml/2.2"
DOCUMENT_DESCRIPTION = "Generated from Google Location History"

TRACK_STYLE_ID = "trackLineStyle"
POINT_STYLE_ID = "pointStyle"

# AABBGGRR, fully opaque.
NAMED_COLORS = {
    "red": "ff0000ff",
    "blue": "ffff0000",
    "green": "ff00ff00",
}
FALLBACK_COLOR = NAMED_COLORS["blue"]

RANGE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
RANGE_TIME_FORMAT = "%H:%M:%S"
POINT_LABEL_FORMAT = "%Y-%m-%d %H:%M:%S"

_HEX_COLOR = re.compile(r"^#?([0-9a-fA-F]{6})$")


def kml_color(color: str | None) -> str:
    """Return the KML ``AABBGGRR`` form of a named or ``#RRGGBB`` colour.

    Unknown values fall back to blue.
    """

    if not color:
        return FALLBACK_COLOR
    key = color.strip().lower()
    if key in NAMED_COLORS:
        return NAMED_COLORS[key]
    match = _HEX_COLOR.match(key)
    if not match:
        LOGGER.debug("Unknown line colour %r; using blue", color)
        return FALLBACK_COLOR
    rgb = match.group(1)
    return f"ff{rgb[4:6]}{rgb[2:4]}{rgb[0:2]}"


def _escape_xml(text: str) -> str:
    """Escape special XML characters."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def _coordinate(point: CanonicalPoint) -> str:
    return f"{point.longitude:.6f},{point.latitude:.6f},0"


def segment_label(segment: Sequence[CanonicalPoint], tz_name: str | None) -> str:
    """Return the ``start - end`` local time range naming a track."""

    start = format_local(segment[0].timestamp_ms, tz_name, RANGE_DATE_FORMAT)
    end = format_local(segment[-1].timestamp_ms, tz_name, RANGE_TIME_FORMAT)
    return f"{start} - {end}"


def _style_lines(style: StyleOptions) -> List[str]:
    label_scale = "1.0" if style.show_labels else "0.0"
    return [
        f'    <Style id="{TRACK_STYLE_ID}">',
        "      <LineStyle>",
        f"        <color>{kml_color(style.line_color)}</color>",
        f"        <width>{int(style.line_width)}</width>",
        "      </LineStyle>",
        "    </Style>",
        f'    <Style id="{POINT_STYLE_ID}">',
        "      <IconStyle>",
        "        <scale>0.8</scale>",
        "      </IconStyle>",
        "      <LabelStyle>",
        f"        <scale>{label_scale}</scale>",
        "      </LabelStyle>",
        "    </Style>",
    ]


def _track_lines(
    segments: Sequence[Segment], style: StyleOptions, scope: str
) -> List[str]:
    lines = [
        "    <Folder>",
        "      <name>Tracks</name>",
        f"      <description>Movement tracks for {_escape_xml(scope)}</description>",
        "      <open>1</open>",
    ]
    for index, segment in enumerate(segments, start=1):
        if not segment:
            continue
        lines.extend(
            [
                "      <Placemark>",
                f"        <name>{_escape_xml(segment_label(segment, style.timezone))}</name>",
                f"        <description>Track segment {index} with {len(segment)} points</description>",
                f"        <styleUrl>#{TRACK_STYLE_ID}</styleUrl>",
                "        <LineString>",
                "          <tessellate>1</tessellate>",
                "          <altitudeMode>clampToGround</altitudeMode>",
                "          <coordinates>",
            ]
        )
        lines.extend(f"            {_coordinate(p)}" for p in segment)
        lines.extend(
            [
                "          </coordinates>",
                "        </LineString>",
                "      </Placemark>",
            ]
        )
    lines.append("    </Folder>")
    return lines


def _point_lines(
    points: Sequence[CanonicalPoint], style: StyleOptions, scope: str
) -> List[str]:
    lines = [
        "    <Folder>",
        "      <name>Points</name>",
        f"      <description>Individual location points for {_escape_xml(scope)}</description>",
        "      <open>0</open>",
    ]
    for index, point in enumerate(points, start=1):
        name = f"Point {index}"
        if style.show_labels:
            name += " - " + format_local(
                point.timestamp_ms, style.timezone, POINT_LABEL_FORMAT
            )
        lines.extend(
            [
                "      <Placemark>",
                f"        <name>{_escape_xml(name)}</name>",
                "        <description>"
                f"Time: {format_iso_utc(point.timestamp_ms)}\n"
                f"Latitude: {point.latitude:.6f}\n"
                f"Longitude: {point.longitude:.6f}"
                "</description>",
                f"        <styleUrl>#{POINT_STYLE_ID}</styleUrl>",
                "        <Point>",
                f"          <coordinates>{_coordinate(point)}</coordinates>",
                "        </Point>",
                "      </Placemark>",
            ]
        )
    lines.append("    </Folder>")
    return lines


def serialize(
    segments: Sequence[Segment],
    points: Sequence[CanonicalPoint] = (),
    style: Optional[StyleOptions] = None,
    *,
    period_id: Optional[int] = None,
    title: Optional[str] = None,
) -> bytes:
    """Render ``segments`` (and optionally ``points``) as a UTF-8 KML document.

    Args:
        segments: Track segments; each becomes one LineString placemark.
        points: Period points rendered in a "Points" folder when any of the
            label/tickmark/trackpoint options is enabled.
        style: Display options; defaults come from configuration.
        period_id: Used for the default document name.
        title: Overrides the document name.

    Returns:
        The encoded document. Empty input yields a valid document whose
        "Tracks" folder is empty.
    """

    style = style or StyleOptions()
    scope = f"period {period_id}" if period_id is not None else "export"
    if title is None:
        title = (
            f"Location History - Period {period_id}"
            if period_id is not None
            else "Location History"
        )

    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<kml xmlns="{KML_NAMESPACE}">',
        "  <Document>",
        f"    <name>{_escape_xml(title)}</name>",
        f"    <description>{DOCUMENT_DESCRIPTION}</description>",
    ]
    lines.extend(_style_lines(style))
    lines.extend(_track_lines(segments, style, scope))
    if style.shows_points and points:
        lines.extend(_point_lines(points, style, scope))
    lines.extend(["  </Document>", "</kml>", ""])

    LOGGER.debug(
        "Serialized %d segments and %d points (%s)",
        len(segments),
        len(points) if style.shows_points else 0,
        scope,
    )
    return "\n".join(lines).encode("utf-8")


__all__ = [
    "KML_NAMESPACE",
    "kml_color",
    "segment_label",
    "serialize",
]
