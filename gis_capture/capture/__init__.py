"""
Capture state machine.

``controller.CaptureController`` drives the state defined here; it is
exported from the top-level ``gis_capture`` package.
"""

from gis_capture.capture.state import (
    CaptureMethod,
    CaptureState,
    Drawing,
    EditOutcome,
    Empty,
    OverlapStatus,
    Phase,
    PhaseState,
    Preview,
    Saved,
    Selecting,
    Viewing,
)

__all__ = [
    "CaptureMethod",
    "CaptureState",
    "Drawing",
    "EditOutcome",
    "Empty",
    "OverlapStatus",
    "Phase",
    "PhaseState",
    "Preview",
    "Saved",
    "Selecting",
    "Viewing",
]
