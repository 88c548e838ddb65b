#!/usr/bin/env python3
"""
Tile change requests: data model, priority scoring and change detection.

A TileChange asks a layer to Create, Upgrade, Downgrade or Remove one
tile. Changes are detected every tick by diffing the desired LOD of
each visible tile against the layer's actual tile state, scored, and
queued per source until the scheduler dispatches them.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional

from tilestream.utils.constants import (
    ABSENT_LOD,
    PRIORITY_DISTANCE_K,
    REMOVE_PRIORITY,
    CREATE_LOD_WEIGHT,
    UPGRADE_LOD_WEIGHT,
    DOWNGRADE_LOD_WEIGHT,
)
from tilestream.utils.lod import LodCalculationMethod, calculate_lod

log = logging.getLogger(__name__)


class TileAction(Enum):
    CREATE = "create"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    REMOVE = "remove"


class ChangeKey(NamedTuple):
    """Identity of a change: at most one per key is queued or in flight."""
    source_id: str
    x: int
    y: int
    layer_id: int


@dataclass(frozen=True)
class TileChange:
    action: TileAction
    x: int
    y: int
    layer_id: int
    source_id: str
    priority_score: int
    lod: int = 0
    distance_squared: int = 0

    @property
    def tile_key(self):
        return (self.x, self.y)

    @property
    def change_key(self) -> ChangeKey:
        return ChangeKey(self.source_id, self.x, self.y, self.layer_id)

    @property
    def is_remove(self):
        return self.action is TileAction.REMOVE

    def __repr__(self):
        return (f"TileChange({self.action.value} ({self.x},{self.y}) layer={self.layer_id} "
                f"src={self.source_id!r} lod={self.lod} score={self.priority_score})")


def calculate_priority_score(layer_priority: int, lod: int, distance_squared: int,
                             action: TileAction, k: float = PRIORITY_DISTANCE_K) -> int:
    """
    Score a change. Higher scores are dispatched first.

    Nearby tiles score higher through the distance factor, and creating
    missing tiles outranks refining existing ones. Removes always win.
    """
    if action is TileAction.REMOVE:
        return REMOVE_PRIORITY

    distance_factor = k / max(distance_squared, 1)
    if action is TileAction.CREATE:
        weight = CREATE_LOD_WEIGHT
    elif action is TileAction.UPGRADE:
        weight = UPGRADE_LOD_WEIGHT
    else:
        weight = DOWNGRADE_LOD_WEIGHT
    return int((1 + weight * (lod + layer_priority)) * distance_factor)


def get_highest_priority_change(changes: Iterable[TileChange]) -> Optional[TileChange]:
    """
    Pick the best scored change, or None when there is nothing to pick.

    Only a strictly greater score replaces the current best, so ties go
    to the change that was queued first.
    """
    best = None
    for change in changes:
        if best is None or change.priority_score > best.priority_score:
            best = change
    return best


class PendingChanges(object):
    """
    Per-source queues of changes waiting for dispatch.

    Holds at most one change per ChangeKey. Rebuilt from scratch every
    tick, so nothing here survives across frames.
    """

    def __init__(self):
        self._queues: Dict[str, List[TileChange]] = OrderedDict()
        self._keys = set()

    def add(self, change: TileChange, active: Mapping[ChangeKey, TileChange] = None) -> bool:
        """
        Queue a change unless it would duplicate pending or active work.

        Non-remove changes for a key that is already in flight are
        skipped. Otherwise the first change queued for a key wins, except
        that a Remove displaces a pending non-remove for its key.

        Returns:
            True if the change was queued
        """
        key = change.change_key
        if active is not None and not change.is_remove and key in active:
            return False
        if key in self._keys:
            if not change.is_remove:
                return False
            existing = self.matching(key)
            if any(c.is_remove for c in existing):
                return False
            for c in existing:
                self.discard(c)
        self._queues.setdefault(change.source_id, []).append(change)
        self._keys.add(key)
        return True

    def discard(self, change: TileChange) -> None:
        changes = self._queues.get(change.source_id)
        if not changes:
            return
        try:
            changes.remove(change)
        except ValueError:
            return
        self._keys.discard(change.change_key)

    def pop_highest(self, source_id: str) -> Optional[TileChange]:
        change = get_highest_priority_change(self._queues.get(source_id, ()))
        if change is not None:
            self.discard(change)
        return change

    def pop_removes(self) -> List[TileChange]:
        """Take every Remove out of every queue, in queue order."""
        removes = []
        for source_id, changes in self._queues.items():
            keep = []
            for change in changes:
                if change.is_remove:
                    removes.append(change)
                    self._keys.discard(change.change_key)
                else:
                    keep.append(change)
            self._queues[source_id] = keep
        return removes

    def matching(self, key: ChangeKey) -> List[TileChange]:
        if key not in self._keys:
            return []
        return [c for c in self._queues.get(key.source_id, ()) if c.change_key == key]

    def contains(self, key: ChangeKey) -> bool:
        return key in self._keys

    def sources(self) -> List[str]:
        return list(self._queues.keys())

    def changes(self, source_id: Optional[str] = None) -> List[TileChange]:
        if source_id is not None:
            return list(self._queues.get(source_id, ()))
        return [c for changes in self._queues.values() for c in changes]

    def count(self, source_id: str) -> int:
        return len(self._queues.get(source_id, ()))

    def clear(self) -> None:
        self._queues.clear()
        self._keys.clear()

    def __len__(self):
        return len(self._keys)

    def __repr__(self):
        sizes = {s: len(c) for s, c in self._queues.items()}
        return f"PendingChanges({sizes})"


def make_remove(layer, tile_key, distance_squared: int = 0) -> TileChange:
    return TileChange(
        action=TileAction.REMOVE,
        x=tile_key[0],
        y=tile_key[1],
        layer_id=layer.layer_id,
        source_id=layer.source_id,
        priority_score=REMOVE_PRIORITY,
        lod=ABSENT_LOD,
        distance_squared=distance_squared,
    )


def diff_tile(layer, tile_distance, desired_lod: int, k: float = PRIORITY_DISTANCE_K) -> Optional[TileChange]:
    """
    Compare one tile's desired LOD against the layer's state.

    LOD changes move one step per tick, so a tile several levels away
    from its target converges over several ticks.

    Returns:
        The change needed, or None when the tile is already right
    """
    tile_key = (tile_distance.x, tile_distance.y)
    dist_sq = tile_distance.distance_squared
    tile = layer.tiles.get(tile_key)

    if tile is None:
        if desired_lod == ABSENT_LOD:
            return None
        action, lod = TileAction.CREATE, desired_lod
    else:
        current = tile.lod
        if desired_lod == ABSENT_LOD:
            return make_remove(layer, tile_key, dist_sq)
        if desired_lod > current:
            action, lod = TileAction.UPGRADE, current + 1
        elif desired_lod < current:
            action, lod = TileAction.DOWNGRADE, current - 1
        else:
            return None

    # Creates are scored as LOD 0 whatever LOD they build.
    score_lod = 0 if action is TileAction.CREATE else lod
    return TileChange(
        action=action,
        x=tile_distance.x,
        y=tile_distance.y,
        layer_id=layer.layer_id,
        source_id=layer.source_id,
        priority_score=calculate_priority_score(layer.layer_priority, score_lod, dist_sq, action, k),
        lod=lod,
        distance_squared=dist_sq,
    )


def detect_tile_changes(layers, tile_distances, pending: PendingChanges,
                        active: Mapping[ChangeKey, TileChange],
                        method: LodCalculationMethod = LodCalculationMethod.AUTO,
                        max_distance_multiplier: float = 1.0,
                        k: float = PRIORITY_DISTANCE_K) -> int:
    """
    Queue the changes needed for every visible tile of every enabled layer.

    Paused layers only get Removes. A layer whose detection fails is
    logged and skipped.

    Returns:
        Number of changes queued
    """
    queued = 0
    for layer in layers:
        if layer is None or not layer.is_enabled:
            continue
        candidates = tile_distances.get(layer.tile_size)
        if candidates is None:
            continue
        try:
            for tile_distance in candidates:
                desired = calculate_lod(
                    tile_distance.distance_squared, layer.datasets, method, max_distance_multiplier
                )
                change = diff_tile(layer, tile_distance, desired, k)
                if change is None:
                    continue
                if layer.pause_loading and not change.is_remove:
                    continue
                if pending.add(change, active):
                    queued += 1
        except Exception as err:
            log.error(f"Change detection failed for layer {layer}: {err}")
    return queued


def detect_out_of_view_removals(layers, tile_distances, pending: PendingChanges,
                                active: Mapping[ChangeKey, TileChange]) -> int:
    """
    Queue a Remove for every tracked tile that left the view.

    Returns:
        Number of removes queued
    """
    queued = 0
    for layer in layers:
        if layer is None or not layer.is_enabled:
            continue
        candidates = tile_distances.get(layer.tile_size)
        if candidates is None:
            continue
        needed = {td.tile_key for td in candidates}
        for tile_key in list(layer.tiles.keys()):
            if tile_key in needed:
                continue
            if pending.add(make_remove(layer, tile_key), active):
                queued += 1
    return queued
