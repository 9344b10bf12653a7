"""
Capture state.

The phase is a tagged union: every phase is its own dataclass carrying only
the sub-state that is meaningful in it (the selected vertex exists only while
drawing or previewing, overlap status only in preview). The vertex ring and
everything derived from it live on ``CaptureState`` and are replaced as a
whole after each mutation.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union

from gis_capture.geometry.metrics import PolygonMetrics
from gis_capture.geometry.ring import Vertex
from gis_capture.overlap.models import OverlapRecord


class Phase(str, Enum):
    """Top-level capture phase."""

    EMPTY = "EMPTY"
    SELECT = "SELECT"
    DRAWING = "DRAWING"
    PREVIEW = "PREVIEW"
    SAVED = "SAVED"
    VIEW = "VIEW"


class CaptureMethod(str, Enum):
    """How vertices are appended."""

    DRAW = "DRAW"
    WALK = "WALK"


class EditOutcome(str, Enum):
    """Result of a capture operation."""

    APPLIED = "APPLIED"
    INVALID_PHASE = "INVALID_PHASE"
    VERTEX_LIMIT = "VERTEX_LIMIT"
    MIN_VERTICES = "MIN_VERTICES"
    INVALID_INDEX = "INVALID_INDEX"
    NOTHING_TO_UNDO = "NOTHING_TO_UNDO"
    OVERLAP_UNCONFIRMED = "OVERLAP_UNCONFIRMED"

    @property
    def applied(self) -> bool:
        return self is EditOutcome.APPLIED


@dataclass
class OverlapStatus:
    """Overlap findings for the boundary being previewed."""

    overlaps: List[OverlapRecord] = field(default_factory=list)
    checked: bool = False
    confirmed: bool = False
    pending: bool = False

    @property
    def unresolved(self) -> bool:
        return bool(self.overlaps) and not self.confirmed


@dataclass
class Empty:
    phase: ClassVar[Phase] = Phase.EMPTY


@dataclass
class Selecting:
    phase: ClassVar[Phase] = Phase.SELECT


@dataclass
class Drawing:
    mode: CaptureMethod
    selected_vertex_index: Optional[int] = None
    phase: ClassVar[Phase] = Phase.DRAWING


@dataclass
class Preview:
    mode: Optional[CaptureMethod] = None
    overlap: OverlapStatus = field(default_factory=OverlapStatus)
    selected_vertex_index: Optional[int] = None
    phase: ClassVar[Phase] = Phase.PREVIEW


@dataclass
class Saved:
    mode: Optional[CaptureMethod] = None
    overlap_confirmed: bool = False
    phase: ClassVar[Phase] = Phase.SAVED


@dataclass
class Viewing:
    phase: ClassVar[Phase] = Phase.VIEW


PhaseState = Union[Empty, Selecting, Drawing, Preview, Saved, Viewing]


@dataclass
class CaptureState:
    """
    The capture aggregate.

    Attributes:
        phase_state: Current phase and its sub-state
        vertices: Ring without the closing point
        metrics: Derived measurements, None below 3 vertices
        intersection_points: Crossings found by the last validator run
        initial_geometry: Polygon loaded at start, never replaced once set
        initial_area_hectares: Area of ``initial_geometry``
        current_position: Latest position fix
        gps_accuracy: Accuracy radius of the latest fix in meters
        accuracy_samples: Accuracy of the fix behind each marked corner
    """
    phase_state: PhaseState = field(default_factory=Empty)
    vertices: List[Vertex] = field(default_factory=list)
    metrics: Optional[PolygonMetrics] = None
    intersection_points: List[Vertex] = field(default_factory=list)
    initial_geometry: Optional[Dict[str, Any]] = None
    initial_area_hectares: Optional[float] = None
    current_position: Optional[Vertex] = None
    gps_accuracy: Optional[float] = None
    accuracy_samples: List[float] = field(default_factory=list)

    @property
    def phase(self) -> Phase:
        return self.phase_state.phase

    @property
    def mode(self) -> Optional[CaptureMethod]:
        return getattr(self.phase_state, "mode", None)

    @property
    def selected_vertex_index(self) -> Optional[int]:
        return getattr(self.phase_state, "selected_vertex_index", None)

    @property
    def overlap(self) -> Optional[OverlapStatus]:
        if isinstance(self.phase_state, Preview):
            return self.phase_state.overlap
        return None

    @property
    def overlaps(self) -> List[OverlapRecord]:
        status = self.overlap
        return list(status.overlaps) if status else []

    @property
    def overlap_checked(self) -> bool:
        status = self.overlap
        return status.checked if status else False

    @property
    def overlap_confirmed(self) -> bool:
        if isinstance(self.phase_state, Saved):
            return self.phase_state.overlap_confirmed
        status = self.overlap
        return status.confirmed if status else False

    @property
    def overlap_check_pending(self) -> bool:
        status = self.overlap
        return status.pending if status else False

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def has_polygon(self) -> bool:
        return len(self.vertices) >= 3

    @property
    def has_baseline(self) -> bool:
        return self.initial_geometry is not None

    def set_baseline(self, geometry: Dict[str, Any], area_hectares: Optional[float]) -> bool:
        """Record the loaded polygon; ignored when a baseline already exists."""
        if self.initial_geometry is not None:
            return False
        self.initial_geometry = geometry
        self.initial_area_hectares = area_hectares
        return True

    def clear_selection(self) -> None:
        if isinstance(self.phase_state, (Drawing, Preview)):
            self.phase_state.selected_vertex_index = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "phase": self.phase.value,
            "mode": self.mode.value if self.mode else None,
            "vertices": [v.to_dict() for v in self.vertices],
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "selectedVertexIndex": self.selected_vertex_index,
            "intersectionPoints": [p.to_dict() for p in self.intersection_points],
            "overlaps": [o.to_dict() for o in self.overlaps],
            "overlapChecked": self.overlap_checked,
            "overlapConfirmed": self.overlap_confirmed,
            "overlapCheckPending": self.overlap_check_pending,
        }
