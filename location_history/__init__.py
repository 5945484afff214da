"""Google Location History to KML converter."""

from .main import main
from .models import CanonicalPoint, Period, SourceTag, StyleOptions
from .errors import FormatError, PointRejected, ProviderError, QuotaExceeded
from .normalizer import load_document, normalize
from .periods import PeriodManager, select
from .segmentation import segment
from .resolver import MapMatchingResolver
from .kml import serialize

__all__ = [
    "main",
    "CanonicalPoint",
    "Period",
    "SourceTag",
    "StyleOptions",
    "FormatError",
    "PointRejected",
    "ProviderError",
    "QuotaExceeded",
    "load_document",
    "normalize",
    "PeriodManager",
    "select",
    "segment",
    "MapMatchingResolver",
    "serialize",
]
