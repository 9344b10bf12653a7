"""Walk-mode positioning."""

from gis_capture.positioning.sources import (
    PositionFix,
    PositionSource,
    StreamPositionSource,
    Subscription,
)
from gis_capture.positioning.tracker import (
    ACCURACY_BANDS,
    AccuracyBand,
    AccuracyLevel,
    PositioningTracker,
    average_accuracy,
    classify_accuracy,
)

__all__ = [
    "PositionFix",
    "PositionSource",
    "StreamPositionSource",
    "Subscription",
    "ACCURACY_BANDS",
    "AccuracyBand",
    "AccuracyLevel",
    "PositioningTracker",
    "average_accuracy",
    "classify_accuracy",
]
