"""Per-period summaries and the Excel summary workbook."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from os import PathLike
from pathlib import Path
from typing import Any, Dict, List, Sequence

import pandas as pd
from openpyxl.styles import Border, Font, PatternFill, Side
from openpyxl.worksheet.worksheet import Worksheet
from pyproj import Geod

from .models import CanonicalPoint, Period, Segment
from .utils import ms_to_datetime, resolve_timezone

LOGGER = logging.getLogger(__name__)

PERIODS_SHEET = "Periods"
SEGMENTS_SHEET = "Segments"
EXCEL_DATETIME_FORMAT = "yyyy-mm-dd hh:mm:ss"

HEADER_FONT = Font(bold=True)
HEADER_FILL = PatternFill(patternType="solid", fgColor="FFDDEBF7")
HEADER_BORDER = Border(
    left=Side(style="thin", color="000000"),
    right=Side(style="thin", color="000000"),
    top=Side(style="thin", color="000000"),
    bottom=Side(style="thin", color="000000"),
)

PathInput = str | Path | PathLike[str]

_GEOD = Geod(ellps="WGS84")


def track_length_m(points: Sequence[CanonicalPoint]) -> float:
    """Geodesic length of the polyline through ``points`` in metres."""

    if len(points) < 2:
        return 0.0
    lons = [p.longitude for p in points]
    lats = [p.latitude for p in points]
    return float(_GEOD.line_length(lons, lats))


def _local_naive(timestamp_ms: int, tz_name: str | None) -> datetime:
    # Excel cells cannot hold tz-aware datetimes.
    return ms_to_datetime(timestamp_ms).astimezone(resolve_timezone(tz_name)).replace(
        tzinfo=None
    )


def _naive(value: datetime, tz_name: str | None) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(resolve_timezone(tz_name)).replace(tzinfo=None)


@dataclass(slots=True)
class PeriodReport:
    """Record and track statistics for one period."""

    period: Period
    records: int
    segments: List[Segment]

    @property
    def track_points(self) -> int:
        return sum(len(s) for s in self.segments)

    @property
    def track_length_km(self) -> float:
        return sum(track_length_m(s) for s in self.segments) / 1000.0

    def to_row(self, tz_name: str | None = None) -> Dict[str, Any]:
        return {
            "Period": self.period.id,
            "Start": _naive(self.period.start_date, tz_name),
            "End": _naive(self.period.end_date, tz_name),
            "Records": self.records,
            "Segments": len(self.segments),
            "Track Points": self.track_points,
            "Track Length (km)": round(self.track_length_km, 3),
        }

    def segment_rows(self, tz_name: str | None = None) -> List[Dict[str, Any]]:
        return [
            {
                "Period": self.period.id,
                "Segment": index,
                "Start": _local_naive(seg[0].timestamp_ms, tz_name),
                "End": _local_naive(seg[-1].timestamp_ms, tz_name),
                "Points": len(seg),
                "Length (km)": round(track_length_m(seg) / 1000.0, 3),
            }
            for index, seg in enumerate(self.segments, start=1)
        ]


def build_summary_frames(
    reports: Sequence[PeriodReport], tz_name: str | None = None
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Return the (periods, segments) DataFrames for ``reports``."""

    periods_df = pd.DataFrame(
        [r.to_row(tz_name) for r in reports],
        columns=[
            "Period",
            "Start",
            "End",
            "Records",
            "Segments",
            "Track Points",
            "Track Length (km)",
        ],
    )
    segments_df = pd.DataFrame(
        [row for r in reports for row in r.segment_rows(tz_name)],
        columns=["Period", "Segment", "Start", "End", "Points", "Length (km)"],
    )
    return periods_df, segments_df


def _autosize(ws: Worksheet) -> None:
    from .config import (
        EXCEL_AUTOSIZE_COLUMNS,
        EXCEL_AUTOSIZE_MAX_WIDTH,
        EXCEL_AUTOSIZE_MIN_WIDTH,
        EXCEL_AUTOSIZE_PADDING,
        EXCEL_AUTOSIZE_MAX_ROWS,
    )

    if not EXCEL_AUTOSIZE_COLUMNS:
        return
    if ws.max_row > EXCEL_AUTOSIZE_MAX_ROWS:
        return
    for col_cells in ws.columns:
        max_len = 0
        col_letter = getattr(col_cells[0], "column_letter", None)
        for cell in col_cells:
            if cell.value is None:
                continue
            max_len = max(max_len, len(str(cell.value)))
        width = min(
            EXCEL_AUTOSIZE_MAX_WIDTH,
            max(EXCEL_AUTOSIZE_MIN_WIDTH, max_len + EXCEL_AUTOSIZE_PADDING),
        )
        if col_letter:
            ws.column_dimensions[col_letter].width = width


def _style_header_row(ws: Worksheet, max_col: int) -> None:
    for col_idx in range(1, max_col + 1):
        cell = ws.cell(row=1, column=col_idx)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.border = HEADER_BORDER


def write_summary(
    filepath: PathInput,
    reports: Sequence[PeriodReport],
    tz_name: str | None = None,
) -> Path:
    """Write the period and segment summary sheets to an ``.xlsx`` workbook."""

    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)
    periods_df, segments_df = build_summary_frames(reports, tz_name)
    with pd.ExcelWriter(
        path, engine="openpyxl", datetime_format=EXCEL_DATETIME_FORMAT
    ) as writer:
        for sheet_name, df in ((PERIODS_SHEET, periods_df), (SEGMENTS_SHEET, segments_df)):
            df.to_excel(writer, sheet_name=sheet_name, index=False)
            ws = writer.sheets[sheet_name]
            _style_header_row(ws, len(df.columns))
            _autosize(ws)
    LOGGER.info(
        "Wrote summary workbook %s (periods=%d segments=%d)",
        path,
        len(periods_df),
        len(segments_df),
    )
    return path


__all__ = [
    "PeriodReport",
    "build_summary_frames",
    "track_length_m",
    "write_summary",
]
