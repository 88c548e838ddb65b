#!/usr/bin/env python3
"""
Tile grid enumeration.

For every distinct tile size in use, lists the grid-aligned tile keys
inside the view range, each tagged with a cheap squared distance to the
camera. The distance is the planar distance from the tile center plus
the squared camera height: an approximate 3D proxy that is cheap enough
to recompute every tick.
"""

import math
import logging
from typing import Dict, Iterable, List, NamedTuple

import numpy as np

from tilestream.viewrange import CameraPosition, ViewProvider, ViewRange

log = logging.getLogger(__name__)


class TileDistance(NamedTuple):
    """Bottom-left tile coordinate plus squared distance to the camera."""
    x: int
    y: int
    distance_squared: int

    @property
    def tile_key(self):
        return (self.x, self.y)


def tile_sizes_for(layers: Iterable) -> List[int]:
    """Distinct tile sizes of all enabled layers, ascending."""
    sizes = set()
    for layer in layers:
        if layer is None or not layer.is_enabled:
            continue
        sizes.add(int(layer.tile_size))
    return sorted(sizes)


def grid_bounds(tile_size: int, view_range: ViewRange):
    """
    Grid aligned bounds (start_x, start_y, end_x, end_y) covering view_range.

    Starts are floored and ends ceiled to tile size multiples. The end
    bounds are inclusive when enumerating.
    """
    start_x = int(math.floor(view_range.min_x / tile_size)) * tile_size
    start_y = int(math.floor(view_range.min_y / tile_size)) * tile_size
    end_x = int(math.ceil((view_range.min_x + view_range.width) / tile_size)) * tile_size
    end_y = int(math.ceil((view_range.min_y + view_range.height) / tile_size)) * tile_size
    return start_x, start_y, end_x, end_y


def tile_distance_squared(x, y, tile_size: int, camera: CameraPosition):
    """Squared distance of tile (x, y) to the camera. x and y may be ints or int arrays."""
    center_offset = tile_size // 2
    dx = x + center_offset - camera.x
    dy = y + center_offset - camera.y
    return dx * dx + dy * dy + camera.height * camera.height


def enumerate_tiles(tile_size: int, view_range: ViewRange, camera: CameraPosition,
                    view: ViewProvider = None, use_frustum: bool = False) -> List[TileDistance]:
    """
    List every tile of tile_size inside view_range, x major, y minor.

    When use_frustum is set the tile's bounds are tested against the
    view provider and tiles outside the frustum are dropped.
    """
    if tile_size <= 0:
        raise ValueError(f"Invalid tile size {tile_size}")

    start_x, start_y, end_x, end_y = grid_bounds(tile_size, view_range)
    xs = np.arange(start_x, end_x + 1, tile_size, dtype=np.int64)
    ys = np.arange(start_y, end_y + 1, tile_size, dtype=np.int64)
    if xs.size == 0 or ys.size == 0:
        return []

    gx, gy = np.meshgrid(xs, ys, indexing='ij')
    gx = gx.ravel()
    gy = gy.ravel()

    dist_sq = tile_distance_squared(gx, gy, tile_size, camera)

    if use_frustum and view is not None:
        keep = np.fromiter(
            (view.tile_in_frustum(int(x), int(y), int(x) + tile_size, int(y) + tile_size)
             for x, y in zip(gx, gy)),
            dtype=bool,
            count=gx.size,
        )
        gx, gy, dist_sq = gx[keep], gy[keep], dist_sq[keep]

    return [
        TileDistance(int(x), int(y), int(d))
        for x, y, d in zip(gx.tolist(), gy.tolist(), dist_sq.tolist())
    ]


def get_tile_distances_in_view(tile_sizes: Iterable[int], view_range: ViewRange,
                               camera: CameraPosition, view: ViewProvider = None,
                               use_frustum: bool = False) -> Dict[int, List[TileDistance]]:
    """
    Enumerate candidate tiles for every tile size.

    A failure for one tile size is logged and that size is left out of
    the result, so its layers keep their tiles untouched this tick. The
    remaining sizes are still enumerated.
    """
    tile_distances = {}
    for tile_size in tile_sizes:
        try:
            tile_distances[tile_size] = enumerate_tiles(
                tile_size, view_range, camera, view=view, use_frustum=use_frustum
            )
        except Exception as err:
            log.error(f"Tile enumeration failed for tile size {tile_size}: {err}")
    return tile_distances
