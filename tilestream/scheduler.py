#!/usr/bin/env python3
"""
Tile streaming scheduler.

Decides, once per tick, which tiles each layer should have and at which
LOD, and dispatches the resulting changes to the layers under a
concurrency budget per data source.

A tick runs these steps in order:
    1. Apply completions delivered from other threads since last tick
    2. Resolve the view range and enumerate candidate tiles per tile size
    3. Rebuild the pending queues: Removes for tiles that left the view,
       then Create/Upgrade/Downgrade/Remove from the LOD diff
    4. Start every Remove right away, bypassing the concurrency cap, after
       aborting queued or running work for the same tile
    5. Per source, dispatch the best scored changes until the source's
       in-flight budget is used up

All bookkeeping is single threaded: only the thread calling tick() may
touch it. Layers doing work elsewhere call the completion callback from
any thread and the completion is applied on the next tick.
"""

import time
import itertools
import threading
import logging
from collections import Counter
from dataclasses import dataclass
from queue import Queue, Empty
from typing import Dict, List, Optional

from tilestream import tsconfig
from tilestream.tsstats import StatTracker, inc_stat
from tilestream.changes import (
    ChangeKey,
    PendingChanges,
    TileChange,
    make_remove,
    detect_out_of_view_removals,
    detect_tile_changes,
)
from tilestream.tilegrid import get_tile_distances_in_view, tile_sizes_for
from tilestream.viewrange import ViewProvider, get_camera_position, resolve_view_range
from tilestream.utils.lod import LodCalculationMethod
from tilestream.utils.constants import (
    DEFAULT_MAX_CONCURRENT_DOWNLOADS,
    GROUND_LEVEL_HEIGHT,
    GROUND_LEVEL_CLIP_RANGE,
    PRIORITY_DISTANCE,
)

log = logging.getLogger(__name__)


@dataclass
class SchedulerSettings:
    max_concurrent_downloads: int = DEFAULT_MAX_CONCURRENT_DOWNLOADS
    lod_method: LodCalculationMethod = LodCalculationMethod.AUTO
    max_distance_multiplier: float = 1.0
    filter_by_frustum: bool = True
    ground_level_height: float = GROUND_LEVEL_HEIGHT
    ground_level_clip_range: float = GROUND_LEVEL_CLIP_RANGE
    priority_distance: float = PRIORITY_DISTANCE

    def __post_init__(self):
        self.max_concurrent_downloads = max(1, int(self.max_concurrent_downloads))
        self.lod_method = LodCalculationMethod.parse(self.lod_method)
        self.max_distance_multiplier = float(self.max_distance_multiplier)
        self.ground_level_height = float(self.ground_level_height)
        self.ground_level_clip_range = float(self.ground_level_clip_range)
        self.priority_distance = float(self.priority_distance)

    @property
    def priority_k(self) -> float:
        return self.priority_distance * self.priority_distance

    @classmethod
    def from_config(cls, cfg=None) -> "SchedulerSettings":
        cfg = cfg or tsconfig.CFG
        sect = cfg.scheduler
        return cls(
            max_concurrent_downloads=int(sect.max_concurrent_downloads),
            lod_method=sect.lod_method,
            max_distance_multiplier=float(sect.max_distance_multiplier),
            filter_by_frustum=bool(sect.filter_by_frustum),
            ground_level_height=float(sect.ground_level_height),
            ground_level_clip_range=float(sect.ground_level_clip_range),
            priority_distance=float(sect.priority_distance),
        )


class TileScheduler(object):
    """
    Streams tiles of all registered layers around a view provider.

    The host drives it by calling tick() once per frame from a single
    thread.
    """

    def __init__(self, view: ViewProvider, layers=None, settings: SchedulerSettings = None):
        self.view = view
        self.settings = settings or SchedulerSettings.from_config()
        self.layers = []
        self._layers_by_id = {}
        self._layer_ids = itertools.count()
        self._paused = False

        self.pending = PendingChanges()
        self.active: Dict[ChangeKey, TileChange] = {}
        # Change actually handed to the layer per key. Differs from
        # self.active after a priority replacement.
        self._dispatched: Dict[ChangeKey, TileChange] = {}
        self._active_counts = Counter()
        self._completions = Queue()
        self._owner = threading.get_ident()

        self._tile_distances = {}
        self.view_range = None
        self.radial = False
        self.camera = None
        self.tick_stats = StatTracker(maxlen=100)
        # Published at the end of each tick for readers on other threads.
        self.last_snapshot = {}

        for layer in layers or []:
            self.add_layer(layer)

    # -- layers -------------------------------------------------------------

    def add_layer(self, layer) -> int:
        if layer in self.layers:
            return layer.layer_id
        layer.layer_id = next(self._layer_ids)
        layer.pause_loading = self._paused
        self.layers.append(layer)
        self._layers_by_id[layer.layer_id] = layer
        log.info(f"Added layer {layer}")
        return layer.layer_id

    def remove_layer(self, layer) -> None:
        """Remove a layer, evicting all of its tiles right away."""
        if layer not in self.layers:
            return
        for tile_key in list(layer.tiles.keys()):
            self.pending.add(make_remove(layer, tile_key), self.active)
        self._start_remove_changes()
        for key in [k for k in self.active if k.layer_id == layer.layer_id]:
            self._release(key)
        for change in self.pending.changes():
            if change.layer_id == layer.layer_id:
                self.pending.discard(change)
        self.layers.remove(layer)
        del self._layers_by_id[layer.layer_id]
        log.info(f"Removed layer {layer}")

    def get_layer(self, layer_id: int):
        return self._layers_by_id.get(layer_id)

    @property
    def pause_loading(self) -> bool:
        """While paused, layers get no new Create/Upgrade/Downgrade work."""
        return self._paused

    @pause_loading.setter
    def pause_loading(self, value: bool):
        self._paused = bool(value)
        for layer in self.layers:
            layer.pause_loading = self._paused

    def set_lod_mode(self, method=0) -> None:
        """Switch LOD calculation: 0/'auto', 1/'lod1', 2/'lod2'."""
        self.settings.lod_method = LodCalculationMethod.parse(method)
        log.info(f"LOD calculation method set to {self.settings.lod_method.name}")

    def set_max_distance_multiplier(self, multiplier: float) -> None:
        self.settings.max_distance_multiplier = float(multiplier)

    # -- tick ---------------------------------------------------------------

    def tick(self) -> None:
        """Run one scheduling pass. Never raises."""
        self._owner = threading.get_ident()
        start = time.monotonic()
        try:
            self._tick()
        except Exception:
            log.exception("Tile scheduler tick failed")
            inc_stat('tick_errors')
        finally:
            self.tick_stats.set('tick_ms', (time.monotonic() - start) * 1000.0)
            inc_stat('tick_count')
            self._publish()

    def _tick(self):
        self.process_completions()

        if not self.layers:
            log.debug("No layers, nothing to schedule")
            return
        tile_sizes = tile_sizes_for(self.layers)
        if not tile_sizes:
            log.debug("No enabled layers, nothing to schedule")
            return

        s = self.settings
        self.view_range, self.radial = resolve_view_range(
            self.view, max(tile_sizes), s.ground_level_height, s.ground_level_clip_range
        )
        self.camera = get_camera_position(self.view)
        self._tile_distances = get_tile_distances_in_view(
            tile_sizes, self.view_range, self.camera, view=self.view,
            use_frustum=s.filter_by_frustum and not self.radial,
        )

        self.pending.clear()
        detect_out_of_view_removals(self.layers, self._tile_distances, self.pending, self.active)
        detect_tile_changes(
            self.layers, self._tile_distances, self.pending, self.active,
            method=s.lod_method,
            max_distance_multiplier=s.max_distance_multiplier,
            k=s.priority_k,
        )
        if not len(self.pending):
            return

        self.dispatch_pending_changes()

    def dispatch_pending_changes(self) -> None:
        """Start all pending Removes, then fill each source's budget."""
        self._start_remove_changes()

        cap = self.settings.max_concurrent_downloads
        for source_id in self.pending.sources():
            while self._active_counts[source_id] < cap:
                change = self.pending.pop_highest(source_id)
                if change is None:
                    break
                key = change.change_key
                existing = self.active.get(key)
                if existing is not None:
                    # The running operation keeps its slot; only the record changes.
                    if change.priority_score > existing.priority_score:
                        self.active[key] = change
                        inc_stat('replacements')
                    continue
                layer = self._layers_by_id.get(change.layer_id)
                if layer is None:
                    continue
                self._activate(change)
                self._handle(layer, change, self.tile_handled)

    def _start_remove_changes(self):
        for change in self.pending.pop_removes():
            layer = self._layers_by_id.get(change.layer_id)
            if layer is None:
                continue
            self._abort_similar_changes(change, layer)
            self._handle(layer, change, None)
            inc_stat('removes')

    def _abort_similar_changes(self, remove: TileChange, layer):
        key = remove.change_key
        if key in self.active:
            self._release(key)
            inc_stat('interrupts')
        for change in self.pending.matching(key):
            self.pending.discard(change)
        layer.interrupt_running_processes(remove.tile_key)

    def _handle(self, layer, change, callback):
        inc_stat(f"dispatch:{change.action.value}")
        try:
            layer.handle_tile(change, callback)
        except Exception:
            log.exception(f"Layer {layer.name} failed handling {change}")
            inc_stat('dispatch_errors')
            if callback is not None:
                self._complete(change)

    # -- completion ---------------------------------------------------------

    def tile_handled(self, change: TileChange) -> None:
        """
        Completion callback handed to layers with every dispatched change.

        On the ticking thread the slot is freed at once; from any other
        thread the completion is queued for the next tick.
        """
        if threading.get_ident() == self._owner:
            self._complete(change)
        else:
            self._completions.put(change)

    def process_completions(self) -> int:
        count = 0
        while True:
            try:
                change = self._completions.get_nowait()
            except Empty:
                break
            self._complete(change)
            count += 1
        return count

    def _complete(self, change: TileChange):
        key = change.change_key
        if self._dispatched.get(key) is not change:
            # Work aborted by a Remove finishing late. Matched by identity since
            # a re-dispatched change can compare equal to the aborted one.
            log.debug(f"Ignoring stale completion {change}")
            return
        self._release(key)
        inc_stat('completions')

    def _activate(self, change: TileChange):
        key = change.change_key
        self.active[key] = change
        self._dispatched[key] = change
        self._active_counts[change.source_id] += 1

    def _release(self, key: ChangeKey):
        if self.active.pop(key, None) is None:
            return
        self._dispatched.pop(key, None)
        self._active_counts[key.source_id] -= 1
        if self._active_counts[key.source_id] <= 0:
            del self._active_counts[key.source_id]

    # -- introspection ------------------------------------------------------

    def active_count(self, source_id: str) -> int:
        return self._active_counts.get(source_id, 0)

    def active_changes(self, source_id: Optional[str] = None) -> List[TileChange]:
        return [c for k, c in self.active.items() if source_id is None or k.source_id == source_id]

    def pending_changes(self, source_id: Optional[str] = None) -> List[TileChange]:
        return self.pending.changes(source_id)

    def visible_tiles(self):
        """Candidate tiles of the last tick, per tile size."""
        return {size: list(tiles) for size, tiles in self._tile_distances.items()}

    def snapshot(self) -> dict:
        sources = set(self.pending.sources()) | set(self._active_counts)
        return {
            "layers": [
                {
                    "id": layer.layer_id,
                    "name": layer.name,
                    "tile_size": layer.tile_size,
                    "enabled": layer.is_enabled,
                    "tiles": len(layer.tiles),
                }
                for layer in self.layers
            ],
            "sources": {
                source_id: {
                    "pending": self.pending.count(source_id),
                    "active": self.active_count(source_id),
                }
                for source_id in sorted(sources)
            },
            "tiles_in_view": {str(size): len(tiles) for size, tiles in self._tile_distances.items()},
            "view_range": list(self.view_range) if self.view_range else None,
            "radial": self.radial,
            "paused": self._paused,
            "lod_method": self.settings.lod_method.name.lower(),
            "tick_ms_avg": self.tick_stats.averages.get('tick_ms', 0),
        }

    def _publish(self):
        try:
            self.last_snapshot = self.snapshot()
        except Exception:
            log.exception("Failed to build scheduler snapshot")

    def __repr__(self):
        return (f"TileScheduler(layers={len(self.layers)}, pending={len(self.pending)}, "
                f"active={len(self.active)})")
