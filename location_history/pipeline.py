"""Conversion service.

Runs normalize → select → segment per period and hands the result to the KML
serializer (export), the map-matching resolver (preview) or the summary
writer. Segmentation and serialization are pure, so periods are processed
concurrently; the only shared state is the resolver's quota store.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
import logging
from pathlib import Path
import threading
from typing import Dict, List, Optional, Sequence

import folium

from .config import MAX_WORKERS, OUTPUT_DIR
from .kml import serialize
from .models import CanonicalPoint, LatLon, Period, StyleOptions
from .normalizer import DocumentSource, load_document, normalize
from .periods import PeriodManager, select
from .preview import build_preview_map
from .resolver import MapMatchingResolver
from .segmentation import segment
from .summary import PeriodReport, write_summary

KML_FILENAME_TEMPLATE = "period{id}_output.kml"
PREVIEW_FILENAME_TEMPLATE = "period{id}_preview.html"


@dataclass(slots=True)
class ConversionConfig:
    output_dir: Path = field(default_factory=lambda: Path(OUTPUT_DIR))
    style: StyleOptions = field(default_factory=StyleOptions)
    max_workers: int = MAX_WORKERS
    resolver: MapMatchingResolver | None = None
    logger: logging.Logger | None = None


class ConversionService:
    """Export, preview and summarise periods of one normalized dataset."""

    def __init__(
        self,
        points: Sequence[CanonicalPoint],
        config: ConversionConfig | None = None,
    ):
        self.config = config or ConversionConfig()
        self._log = self.config.logger or logging.getLogger(self.__class__.__name__)
        self.points: List[CanonicalPoint] = list(points)
        self.periods = PeriodManager(self.points)

    @classmethod
    def from_source(
        cls, source: DocumentSource, config: ConversionConfig | None = None
    ) -> "ConversionService":
        """Load and normalize ``source`` (bytes, JSON text or a file path)."""

        return cls(normalize(load_document(source)), config)

    # -- per period ---------------------------------------------------------
    def report(self, period: Period) -> PeriodReport:
        selected = select(self.points, period)
        return PeriodReport(
            period=period, records=len(selected), segments=segment(selected)
        )

    def render_period(self, period: Period) -> bytes:
        """Return the KML document for ``period`` (raw segment geometry)."""

        selected = select(self.points, period)
        segments = segment(selected)
        self._log.info(
            "Period %d: %d locations -> %d track segments",
            period.id,
            len(selected),
            len(segments),
        )
        return serialize(segments, selected, self.config.style, period_id=period.id)

    def export_period(self, period: Period) -> Path:
        output_dir = Path(self.config.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / KML_FILENAME_TEMPLATE.format(id=period.id)
        path.write_bytes(self.render_period(period))
        self._log.info("Wrote %s", path)
        return path

    def resolve_period(
        self,
        period: Period,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[List[LatLon]]:
        """Return display geometry per segment, matched where possible.

        Segments the resolver cannot match keep their raw coordinates. When
        ``cancel_event`` is set the whole result is discarded and ``[]`` is
        returned.
        """

        resolver = self.config.resolver
        tracks: List[List[LatLon]] = []
        for seg in segment(select(self.points, period)):
            if cancel_event is not None and cancel_event.is_set():
                self._log.info("Preview of period %d cancelled", period.id)
                return []
            matched = (
                resolver.resolve(seg, cancel_event=cancel_event)
                if resolver is not None
                else None
            )
            tracks.append(matched if matched is not None else [p.latlon for p in seg])
        if cancel_event is not None and cancel_event.is_set():
            self._log.info("Preview of period %d cancelled", period.id)
            return []
        return tracks

    def preview_period(
        self,
        period: Period,
        *,
        output_html_path: Optional[Path] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> folium.Map:
        tracks = self.resolve_period(period, cancel_event=cancel_event)
        if output_html_path is None:
            output_html_path = Path(self.config.output_dir) / (
                PREVIEW_FILENAME_TEMPLATE.format(id=period.id)
            )
        preview = build_preview_map(
            tracks,
            color=self.config.style.line_color,
            title=f"Period {period.id}",
            output_html_path=output_html_path,
        )
        self._log.info("Wrote preview %s (%d tracks)", output_html_path, len(tracks))
        return preview

    # -- batch --------------------------------------------------------------
    def export_periods(
        self, periods: Sequence[Period] | None = None
    ) -> Dict[int, Path]:
        """Write one KML file per period; failed periods are logged and skipped."""

        targets = list(periods) if periods is not None else self.periods.periods
        if not targets:
            return {}
        written: Dict[int, Path] = {}
        workers = max(1, min(self.config.max_workers, len(targets)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_map = {
                executor.submit(self.export_period, period): period
                for period in targets
            }
            for future in as_completed(future_map):
                period = future_map[future]
                try:
                    written[period.id] = future.result()
                except (OSError, ValueError) as exc:
                    self._log.error(
                        "Period %d export failed: %s", period.id, exc, exc_info=True
                    )
        self._log.info("Exported %d/%d periods", len(written), len(targets))
        return dict(sorted(written.items()))

    def reports(self, periods: Sequence[Period] | None = None) -> List[PeriodReport]:
        targets = list(periods) if periods is not None else self.periods.periods
        return [self.report(period) for period in targets]

    def write_summary(
        self, path: Path, periods: Sequence[Period] | None = None
    ) -> Path:
        return write_summary(path, self.reports(periods), self.config.style.timezone)


__all__ = ["ConversionConfig", "ConversionService", "KML_FILENAME_TEMPLATE"]
