#!/usr/bin/env python3
"""
View range resolution.

Turns the camera state of a view provider into the rectangle of world
space that bounds tile enumeration for a tick.

Two modes are used:
    - Far mode (camera above ground_level_height): the projected visible
      extent of the camera, padded by the largest tile size in use so
      tiles at the border appear before they scroll into view.
    - Near mode: a fixed square of ground_level_clip_range around the
      camera. No frustum culling is applied in this mode.
"""

import math
import logging
from typing import NamedTuple, Tuple

from tilestream.utils.constants import GROUND_LEVEL_HEIGHT, GROUND_LEVEL_CLIP_RANGE

log = logging.getLogger(__name__)


class Extent(NamedTuple):
    min_x: float
    min_y: float
    max_x: float
    max_y: float


class ViewRange(NamedTuple):
    """Visible area: bottom-left corner plus width (x) and height (y)."""
    min_x: float
    min_y: float
    width: float
    height: float

    @property
    def max_x(self):
        return self.min_x + self.width

    @property
    def max_y(self):
        return self.min_y + self.height


class CameraPosition(NamedTuple):
    """Camera position in scheduler coordinates, truncated to ints."""
    x: int
    y: int
    height: int


class ViewProvider(object):
    """
    Camera collaborator consumed by the scheduler.

    All values are in the scheduler's planar coordinate space with
    'height' being the camera's elevation above the ground plane.
    """

    def camera_position(self) -> Tuple[float, float, float]:
        raise NotImplementedError

    def visible_extent(self, padding: float = 0) -> Extent:
        raise NotImplementedError

    def tile_in_frustum(self, min_x: float, min_y: float, max_x: float, max_y: float) -> bool:
        raise NotImplementedError


class TopDownCamera(ViewProvider):
    """
    Simple camera looking straight down.

    The visible footprint is the square seen through a field of view of
    fov_deg from the camera height, capped at far_clip. Good enough for
    the simulator and tests; real hosts plug in their own provider.
    """

    def __init__(self, x=0.0, y=0.0, height=500.0, fov_deg=60.0, far_clip=5000.0):
        self.x = x
        self.y = y
        self.height = height
        self.fov_deg = fov_deg
        self.far_clip = far_clip

    def move_to(self, x, y, height=None):
        self.x = x
        self.y = y
        if height is not None:
            self.height = height

    def camera_position(self):
        return (self.x, self.y, self.height)

    def _half_footprint(self):
        half = max(0.0, self.height) * math.tan(math.radians(self.fov_deg / 2.0))
        return min(half, self.far_clip)

    def visible_extent(self, padding=0):
        half = self._half_footprint() + padding
        return Extent(self.x - half, self.y - half, self.x + half, self.y + half)

    def tile_in_frustum(self, min_x, min_y, max_x, max_y):
        half = self._half_footprint()
        return not (
            max_x < self.x - half or min_x > self.x + half or
            max_y < self.y - half or min_y > self.y + half
        )

    def __repr__(self):
        return f"TopDownCamera(x={self.x}, y={self.y}, h={self.height}, fov={self.fov_deg})"


def get_camera_position(view: ViewProvider) -> CameraPosition:
    x, y, height = view.camera_position()
    return CameraPosition(int(x), int(y), int(height))


def resolve_view_range(view: ViewProvider, max_tile_size: int,
                       ground_level_height: float = GROUND_LEVEL_HEIGHT,
                       ground_level_clip_range: float = GROUND_LEVEL_CLIP_RANGE):
    """
    Compute the view range for this tick.

    Returns:
        (ViewRange, radial) where radial is True in near/ground mode,
        meaning frustum culling must not be applied downstream.
    """
    x, y, height = view.camera_position()
    if height > ground_level_height:
        radial = False
        extent = view.visible_extent(padding=max_tile_size)
    else:
        radial = True
        extent = Extent(
            x - ground_level_clip_range,
            y - ground_level_clip_range,
            x + ground_level_clip_range,
            y + ground_level_clip_range,
        )

    view_range = ViewRange(
        extent.min_x,
        extent.min_y,
        extent.max_x - extent.min_x,
        extent.max_y - extent.min_y,
    )
    return view_range, radial
