import json
import logging
import threading
from datetime import datetime, timezone

import defusedxml.ElementTree as ET
import pytest

from conftest import make_track, ts
from location_history.kml import KML_NAMESPACE
from location_history.models import StyleOptions
from location_history.pipeline import ConversionConfig, ConversionService

NS = {"k": KML_NAMESPACE}


class StubResolver:
    def __init__(self, results):
        self.results = list(results)
        self.calls = 0

    def resolve(self, points, *, cancel_event=None):
        self.calls += 1
        return self.results.pop(0)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def service(tmp_path):
    points = make_track(ts(2024, 3, 1, 8), 3) + make_track(
        ts(2024, 3, 1, 14), 4, lat=48.0, lon=11.0
    )
    return ConversionService(points, ConversionConfig(output_dir=tmp_path / "out"))


def test_timeline_document_to_kml(tmp_path, timeline_document):
    source = json.dumps(timeline_document).encode("utf-8")
    service = ConversionService.from_source(source, ConversionConfig(output_dir=tmp_path))
    period = service.periods.add()

    written = service.export_periods()

    assert written == {1: tmp_path / "period1_output.kml"}
    root = ET.parse(written[1]).getroot()
    (line,) = root.findall(".//k:LineString", NS)
    coords = line.findtext("k:coordinates", namespaces=NS).split()
    assert coords == [
        "13.000000,52.000000,0",
        "13.001000,52.001000,0",
        "13.002000,52.002000,0",
        "13.010000,52.010000,0",
    ]
    assert period.start_date == utc(2024, 3, 1, 10)
    assert period.end_date == utc(2024, 3, 1, 10, 15)


def test_export_periods_writes_one_file_per_period(service):
    service.periods.add(utc(2024, 3, 1, 7), utc(2024, 3, 1, 9))
    service.periods.add(utc(2024, 3, 1, 13), utc(2024, 3, 1, 15))
    service.periods.add(utc(2024, 3, 1, 10), utc(2024, 3, 1, 11))

    written = service.export_periods()

    assert sorted(written) == [1, 2, 3]
    counts = []
    for path in written.values():
        root = ET.parse(path).getroot()
        counts.append(len(root.findall(".//k:LineString", NS)))
    assert counts == [1, 1, 0]


def test_failed_period_is_logged_and_skipped(service, monkeypatch, caplog):
    first = service.periods.add(utc(2024, 3, 1, 7), utc(2024, 3, 1, 9))
    second = service.periods.add(utc(2024, 3, 1, 13), utc(2024, 3, 1, 15))
    original = service.export_period

    def flaky(period):
        if period.id == second.id:
            raise OSError("disk full")
        return original(period)

    monkeypatch.setattr(service, "export_period", flaky)
    with caplog.at_level(logging.ERROR):
        written = service.export_periods()

    assert list(written) == [first.id]
    assert "Period 2 export failed" in caplog.text


def test_render_respects_style(tmp_path):
    points = make_track(ts(2024, 3, 1, 8), 3)
    config = ConversionConfig(
        output_dir=tmp_path,
        style=StyleOptions(show_labels=False, show_tickmarks=False, show_trackpoints=False),
    )
    service = ConversionService(points, config)
    document = service.render_period(service.periods.add())
    assert b"<name>Points</name>" not in document


def test_resolve_period_substitutes_raw_geometry(service):
    matched = [(52.0, 13.0), (52.002, 13.002)]
    service.config.resolver = StubResolver([matched, None])
    period = service.periods.add()

    tracks = service.resolve_period(period)

    assert tracks[0] == matched
    assert tracks[1] == [p.latlon for p in service.points[3:]]


def test_resolve_period_without_resolver_uses_raw(service):
    tracks = service.resolve_period(service.periods.add())
    assert tracks == [[p.latlon for p in service.points[:3]], [p.latlon for p in service.points[3:]]]


def test_cancelled_preview_discards_everything(service):
    cancel = threading.Event()
    cancel.set()
    service.config.resolver = StubResolver([])
    assert service.resolve_period(service.periods.add(), cancel_event=cancel) == []
    assert service.config.resolver.calls == 0


def test_preview_period_writes_html(service, tmp_path):
    service.config.resolver = StubResolver([None, None])
    period = service.periods.add()

    service.preview_period(period)

    assert (tmp_path / "out" / "period1_preview.html").exists()


def test_write_summary(service, tmp_path):
    service.periods.add()
    path = service.write_summary(tmp_path / "summary.xlsx")
    assert path.exists()
    reports = service.reports()
    assert reports[0].records == 7
    assert len(reports[0].segments) == 2
