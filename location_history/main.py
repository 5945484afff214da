import argparse
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from .config import (
    DEFAULT_LINE_COLOR,
    DISPLAY_TIMEZONE,
    MAPBOX_ACCESS_TOKEN,
    OUTPUT_DIR,
    QUOTA_STATE_FILE,
)
from .errors import FormatError
from .models import Period, StyleOptions
from .pipeline import ConversionConfig, ConversionService
from .periods import parse_period_bound
from .providers import close_default_session
from .quota import QuotaStore
from .resolver import MapMatchingResolver

LOGGER = logging.getLogger(__name__)


def _setup_logging(level: str = "INFO") -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=getattr(logging, level),
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )
    else:
        logging.getLogger().setLevel(getattr(logging, level))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="location-history",
        description="Convert Google Location History JSON into per-period KML files",
    )
    parser.add_argument("input", help="Location history JSON file")
    parser.add_argument(
        "--period",
        nargs=2,
        action="append",
        metavar=("START", "END"),
        help="ISO date/time bounds of a period (repeatable; default: full range)",
    )
    parser.add_argument(
        "--output-dir",
        default=OUTPUT_DIR,
        help=f"Directory for KML and preview files (default: {OUTPUT_DIR})",
    )
    parser.add_argument(
        "--line-color",
        default=DEFAULT_LINE_COLOR,
        help="Track colour: red, blue, green or #RRGGBB",
    )
    parser.add_argument(
        "--no-labels", action="store_true", help="Hide point labels"
    )
    parser.add_argument(
        "--no-tickmarks", action="store_true", help="Disable tickmark points"
    )
    parser.add_argument(
        "--no-trackpoints", action="store_true", help="Disable track points"
    )
    parser.add_argument(
        "--timezone",
        default=DISPLAY_TIMEZONE,
        help="IANA zone for placemark labels (default: %(default)s)",
    )
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Also write a map-matched HTML preview per period",
    )
    parser.add_argument(
        "--summary",
        metavar="FILE",
        help="Write an .xlsx summary of all periods",
    )
    parser.add_argument(
        "--quota-file",
        default=QUOTA_STATE_FILE,
        help="Mapbox usage state file (default: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Python logging level",
    )
    return parser


def _style_from_args(args: argparse.Namespace) -> StyleOptions:
    return StyleOptions(
        line_color=args.line_color,
        show_labels=not args.no_labels,
        show_tickmarks=not args.no_tickmarks,
        show_trackpoints=not args.no_trackpoints,
        timezone=args.timezone,
    )


def _define_periods(
    service: ConversionService, bounds: Optional[Sequence[Sequence[str]]]
) -> List[Period]:
    if not bounds:
        return [service.periods.add()]
    return [
        service.periods.add(parse_period_bound(start), parse_period_bound(end))
        for start, end in bounds
    ]


def _write_previews(
    service: ConversionService, periods: Sequence[Period], quota_file: str
) -> None:
    quota = QuotaStore(MAPBOX_ACCESS_TOKEN, path=quota_file).load()
    if not quota.configured:
        LOGGER.info("No Mapbox token configured; previews use OSRM only")
    service.config.resolver = MapMatchingResolver(quota)
    try:
        for period in periods:
            service.preview_period(period)
    finally:
        quota.close()
        close_default_session()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.log_level)

    config = ConversionConfig(
        output_dir=Path(args.output_dir), style=_style_from_args(args)
    )
    try:
        service = ConversionService.from_source(Path(args.input), config)
    except FormatError as exc:
        LOGGER.error("Failed to load %s: %s", args.input, exc)
        return 1
    except OSError as exc:
        LOGGER.error("Cannot read %s: %s", args.input, exc)
        return 1

    if not service.points:
        LOGGER.warning("No location points found in %s", args.input)
        return 1

    try:
        periods = _define_periods(service, args.period)
    except ValueError as exc:
        LOGGER.error("Invalid period bounds: %s", exc)
        return 2

    for summary in service.periods.summaries():
        LOGGER.info(
            "Period %d: %s -> %s (%d records)",
            summary.period.id,
            summary.period.start_date,
            summary.period.end_date,
            summary.records,
        )

    written = service.export_periods(periods)
    if args.preview:
        _write_previews(service, periods, args.quota_file)
    if args.summary:
        service.write_summary(Path(args.summary), periods)

    LOGGER.info("Results saved to %s (%d KML files)", config.output_dir, len(written))
    return 0 if len(written) == len(periods) else 1
