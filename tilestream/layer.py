#!/usr/bin/env python3
"""
Layer collaborator: owns the tiles of one content type.

The scheduler only talks to layers through handle_tile() and
interrupt_running_processes(), and reads their tile_size, priority,
datasets and tiles. This base class keeps the per-tile bookkeeping
(LOD, in-flight work, cancellation) so concrete layers only implement
how a tile's content is produced.
"""

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence, Tuple

from tilestream.changes import TileAction, TileChange
from tilestream.utils.lod import DataSet

log = logging.getLogger(__name__)

TileKey = Tuple[int, int]


@dataclass
class Tile:
    tile_key: TileKey
    lod: int = 0
    future: Optional[Future] = None
    cancel_event: threading.Event = field(default_factory=threading.Event)
    data: Optional[bytes] = None

    @property
    def busy(self):
        return self.future is not None and not self.future.done()


class Layer(object):
    """
    Base layer.

    Subclasses override start_tile_work() to fetch or build content and
    must invoke the completion callback exactly once per handled change,
    whether the work succeeded, failed or was interrupted.
    """

    def __init__(self, name: str, tile_size: int, datasets: Sequence[DataSet] = None,
                 layer_priority: int = 0, is_enabled: bool = True):
        if int(tile_size) <= 0:
            raise ValueError(f"Layer {name}: tile_size must be positive, got {tile_size}")
        self.name = name
        self.tile_size = int(tile_size)
        self.layer_priority = int(layer_priority)
        self.is_enabled = is_enabled
        self.datasets = list(datasets or [])
        self.tiles: Dict[TileKey, Tile] = {}
        self.pause_loading = False
        self.layer_id: Optional[int] = None

    @property
    def source_id(self) -> str:
        if self.datasets:
            return self.datasets[0].source_id
        return self.name

    def handle_tile(self, change: TileChange, callback: Callable[[TileChange], None] = None) -> None:
        tile_key = change.tile_key
        if change.action is TileAction.CREATE:
            tile = Tile(tile_key, lod=change.lod)
            self.tiles[tile_key] = tile
            self.start_tile_work(tile, change, callback)
        elif change.action in (TileAction.UPGRADE, TileAction.DOWNGRADE):
            tile = self.tiles.get(tile_key)
            if tile is None:
                log.debug(f"{self.name}: {change.action.value} for missing tile {tile_key}")
                self._complete(change, callback)
                return
            tile.lod = change.lod
            self.start_tile_work(tile, change, callback)
        elif change.action is TileAction.REMOVE:
            self.remove_tile(tile_key)
            self._complete(change, callback)

    def start_tile_work(self, tile: Tile, change: TileChange, callback) -> None:
        """Produce content for tile at tile.lod. Base layers hold no content."""
        self._complete(change, callback)

    def remove_tile(self, tile_key: TileKey) -> bool:
        """
        Drop a tile and abort its work. Removing an absent tile is a no-op.

        Returns:
            True if a tile was removed
        """
        tile = self.tiles.get(tile_key)
        if tile is None:
            return False
        self.interrupt_running_processes(tile_key)
        self.on_tile_removed(tile)
        del self.tiles[tile_key]
        return True

    def on_tile_removed(self, tile: Tile) -> None:
        tile.data = None

    def interrupt_running_processes(self, tile_key: TileKey) -> None:
        """
        Cancel ongoing work for tile_key.

        Safe to call for unknown tiles and for work that already finished.
        """
        tile = self.tiles.get(tile_key)
        if tile is None:
            return
        tile.cancel_event.set()
        if tile.future is not None:
            tile.future.cancel()
            tile.future = None

    def dataset_for(self, lod: int) -> Optional[DataSet]:
        if 0 <= lod < len(self.datasets):
            return self.datasets[lod]
        return None

    @staticmethod
    def _complete(change, callback):
        if callback is None:
            return
        try:
            callback(change)
        except Exception as err:
            log.error(f"Completion callback failed for {change}: {err}")

    def __repr__(self):
        return (f"{type(self).__name__}({self.name!r}, id={self.layer_id}, size={self.tile_size}, "
                f"tiles={len(self.tiles)})")
