"""
Host integration interfaces.

The capture component runs inside a hosting form page and draws on a map
surface it does not own. Both are reached only through the abstract classes
below; concrete implementations are supplied by the embedding application
(or by fakes in tests).

Also provides record id extraction from the page URL and the coarse device
heuristic used to pick an initial capture mode.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Tuple
from urllib.parse import parse_qs, urlparse

logger = logging.getLogger(__name__)

# west, south, east, north
Bounds = Tuple[float, float, float, float]
Remover = Callable[[], None]

UUID_PATTERN = re.compile(
    r"([a-fA-F0-9]{8}-[a-fA-F0-9]{4}-[a-fA-F0-9]{4}-[a-fA-F0-9]{4}-[a-fA-F0-9]{8,16})"
)
MOBILE_USER_AGENT = re.compile(
    r"Android|webOS|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini", re.IGNORECASE
)


class HostPage(ABC):
    """The hosting form page."""

    @abstractmethod
    def get_container(self, container_id: str) -> Optional[Any]:
        """Return the element hosting the component, or None if absent."""
        pass

    @abstractmethod
    def get_field_value(self, field_id: str) -> Optional[str]:
        """Current value of a form field, None if the field does not exist."""
        pass

    @abstractmethod
    def set_field_value(self, field_id: str, value: str) -> None:
        """Write a form field; missing fields are ignored."""
        pass

    @abstractmethod
    def add_field_listener(self, field_id: str, callback: Callable[[], None]) -> Remover:
        """
        Listen for changes of a form field.

        Returns:
            Callable removing the listener.
        """
        pass

    def page_url(self) -> str:
        return ""

    def user_agent(self) -> str:
        return ""


class MapView(ABC):
    """The map surface the boundary is drawn on."""

    @abstractmethod
    def set_view(self, lat: float, lng: float, zoom: int) -> None:
        pass

    @abstractmethod
    def get_bounds(self) -> Bounds:
        pass

    @abstractmethod
    def release(self) -> None:
        """Tear the map down; called last during destroy."""
        pass

    def add_move_listener(self, callback: Callable[[], None]) -> Remover:
        """Listen for the end of pan/zoom movements."""
        return lambda: None

    def render(self, state: Any) -> None:
        """Redraw the boundary, markers and highlights from the capture state."""

    def show_drag_position(self, index: int, lat: float, lng: float) -> None:
        """Cheap repositioning of one vertex marker while it is dragged."""

    def show_overlaps(self, overlaps: Any) -> None:
        """Highlight overlap areas; an empty list clears them."""

    def show_nearby_parcels(self, parcels: Any, truncated: bool = False) -> None:
        """Draw read-only nearby parcels; an empty list clears them."""


def extract_uuid(value: str) -> str:
    """First UUID found in ``value``, or ``value`` itself when none is found."""
    if not value:
        return ""
    match = UUID_PATTERN.search(value)
    return match.group(1) if match else value


def is_valid_record_id(value: Optional[str]) -> bool:
    # URL artifacts such as "_mode=edit" leak into badly split parameters
    return bool(value) and "_mode" not in value


def extract_record_id(url: str) -> str:
    """
    Record id from the ``id`` or ``recordId`` query parameter of a page URL.

    Returns:
        The id, or an empty string when the page is not editing a record.
    """
    if not url:
        return ""
    params = parse_qs(urlparse(url).query)
    for name in ("id", "recordId"):
        for raw in params.get(name, []):
            candidate = extract_uuid(raw.strip())
            if is_valid_record_id(candidate):
                logger.debug("Record id from URL parameter %r: %s", name, candidate)
                return candidate
    return ""


def is_mobile_device(user_agent: str) -> bool:
    return bool(user_agent) and MOBILE_USER_AGENT.search(user_agent) is not None
