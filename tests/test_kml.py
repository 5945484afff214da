import logging

import defusedxml.ElementTree as ET
import pytest

from conftest import make_point, make_track, ts
from location_history.kml import KML_NAMESPACE, kml_color, segment_label, serialize
from location_history.models import StyleOptions

NS = {"k": KML_NAMESPACE}


def _parse(document):
    return ET.fromstring(document)


def _folder(root, name):
    for folder in root.iterfind("k:Document/k:Folder", NS):
        if folder.findtext("k:name", namespaces=NS) == name:
            return folder
    return None


def test_single_segment_coordinates():
    seg = [
        make_point(52.0, 13.0, ts(2024, 3, 1, 10)),
        make_point(52.1, 13.1, ts(2024, 3, 1, 10, 5)),
    ]
    root = _parse(serialize([seg], seg, StyleOptions(), period_id=1))

    lines = root.findall(".//k:LineString", NS)
    assert len(lines) == 1
    coords = lines[0].findtext("k:coordinates", namespaces=NS).split()
    assert coords == ["13.000000,52.000000,0", "13.100000,52.100000,0"]
    assert lines[0].findtext("k:tessellate", namespaces=NS) == "1"
    assert lines[0].findtext("k:altitudeMode", namespaces=NS) == "clampToGround"


def test_document_metadata_and_styles():
    seg = make_track(ts(2024, 3, 1, 10), 3)
    style = StyleOptions(line_color="red", show_labels=False)
    root = _parse(serialize([seg], seg, style, period_id=2))

    assert root.findtext("k:Document/k:name", namespaces=NS) == "Location History - Period 2"
    assert root.findtext("k:Document/k:description", namespaces=NS) == (
        "Generated from Google Location History"
    )
    line_style = root.find("k:Document/k:Style[@id='trackLineStyle']/k:LineStyle", NS)
    assert line_style.findtext("k:color", namespaces=NS) == "ff0000ff"
    assert line_style.findtext("k:width", namespaces=NS) == "6"
    label_scale = root.findtext(
        "k:Document/k:Style[@id='pointStyle']/k:LabelStyle/k:scale", namespaces=NS
    )
    assert label_scale == "0.0"


def test_track_placemark_naming():
    seg = make_track(ts(2024, 3, 1, 10), 3, step_s=300)
    root = _parse(serialize([seg], [], StyleOptions(timezone="UTC"), period_id=1))

    placemark = _folder(root, "Tracks").find("k:Placemark", NS)
    assert placemark.findtext("k:name", namespaces=NS) == "2024-03-01 10:00:00 - 10:10:00"
    assert placemark.findtext("k:description", namespaces=NS) == (
        "Track segment 1 with 3 points"
    )
    assert placemark.findtext("k:styleUrl", namespaces=NS) == "#trackLineStyle"


def test_label_uses_display_timezone():
    seg = make_track(ts(2024, 7, 1, 10), 2)
    assert segment_label(seg, "Europe/Berlin") == "2024-07-01 12:00:00 - 12:01:00"


def test_unknown_timezone_falls_back_to_utc(caplog):
    seg = make_track(ts(2024, 7, 1, 10), 2)

    with caplog.at_level(logging.WARNING, logger="location_history.utils"):
        document = serialize([seg], seg, StyleOptions(timezone="Not/AZone"), period_id=1)

    placemark = _folder(_parse(document), "Tracks").find("k:Placemark", NS)
    assert placemark.findtext("k:name", namespaces=NS) == "2024-07-01 10:00:00 - 10:01:00"
    assert "Unknown timezone 'Not/AZone'" in caplog.text
    assert segment_label(seg, "../etc/passwd") == "2024-07-01 10:00:00 - 10:01:00"


def test_points_folder_with_labels():
    points = make_track(ts(2024, 3, 1, 10), 3)
    root = _parse(serialize([points], points, StyleOptions(), period_id=1))

    folder = _folder(root, "Points")
    assert folder.findtext("k:open", namespaces=NS) == "0"
    placemarks = folder.findall("k:Placemark", NS)
    assert len(placemarks) == 3
    assert placemarks[0].findtext("k:name", namespaces=NS) == "Point 1 - 2024-03-01 10:00:00"
    assert "Time: 2024-03-01T10:00:00.000Z" in placemarks[0].findtext("k:description", namespaces=NS)
    assert placemarks[2].findtext("k:Point/k:coordinates", namespaces=NS) == (
        "13.002000,52.002000,0"
    )


def test_points_without_labels_are_numbered_only():
    points = make_track(ts(2024, 3, 1, 10), 2)
    style = StyleOptions(show_labels=False)
    root = _parse(serialize([points], points, style, period_id=1))
    names = [pm.findtext("k:name", namespaces=NS) for pm in _folder(root, "Points")]
    assert [n for n in names if n and n.startswith("Point")] == ["Point 1", "Point 2"]


def test_points_folder_omitted_when_all_point_options_off():
    points = make_track(ts(2024, 3, 1, 10), 2)
    style = StyleOptions(show_labels=False, show_tickmarks=False, show_trackpoints=False)
    root = _parse(serialize([points], points, style, period_id=1))
    assert _folder(root, "Points") is None
    assert _folder(root, "Tracks") is not None


def test_empty_period_is_well_formed():
    document = serialize([], [], StyleOptions(), period_id=3)
    root = _parse(document)

    tracks = _folder(root, "Tracks")
    assert tracks is not None
    assert tracks.findall("k:Placemark", NS) == []
    assert document.startswith(b'<?xml version="1.0" encoding="UTF-8"?>')


def test_serialization_is_deterministic():
    seg = make_track(ts(2024, 3, 1, 10), 5)
    style = StyleOptions(line_color="#336699")
    assert serialize([seg], seg, style, period_id=1) == serialize([seg], seg, style, period_id=1)


def test_title_is_escaped():
    root = _parse(serialize([], [], title="Trips <A & B>"))
    assert root.findtext("k:Document/k:name", namespaces=NS) == "Trips <A & B>"


@pytest.mark.parametrize(
    "color, expected",
    [
        ("red", "ff0000ff"),
        ("Blue", "ffff0000"),
        ("green", "ff00ff00"),
        ("#336699", "ff996633"),
        ("336699", "ff996633"),
        ("purple", "ffff0000"),
        (None, "ffff0000"),
    ],
)
def test_kml_color(color, expected):
    assert kml_color(color) == expected
