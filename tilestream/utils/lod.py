#!/usr/bin/env python3
"""
Level of detail selection based on squared distance to the camera.

Each layer owns an ordered ladder of DataSets. A DataSet is usable for a
tile when it is enabled and its squared distance threshold (scaled by the
global max distance multiplier) exceeds the tile's squared distance.

The index of the selected DataSet is the tile's LOD. When no DataSet is
usable the tile should not exist, which is reported as ABSENT_LOD.

Configuration Integration:
    - Layer datasets are stored in CFG.layers.definitions as a list of dicts
    - Each dataset dict carries 'source' and either 'max_distance' (meters,
      squared on load) or 'max_distance_squared'
    - The SectionParser in tsconfig.py parses the list using ast.literal_eval

Usage:
    from tilestream.utils.lod import LodLadder, LodCalculationMethod

    ladder = LodLadder()
    ladder.load_from_config(layer_def["datasets"])
    lod = ladder.evaluate(distance_squared, LodCalculationMethod.AUTO)
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional, Sequence, Union
import logging

from tilestream.utils.constants import ABSENT_LOD

log = logging.getLogger(__name__)


class LodCalculationMethod(IntEnum):
    """
    How the desired LOD is chosen.

    AUTO uses the distance thresholds of every dataset. LOD1 and LOD2
    force a single tier system wide, which is useful when profiling.
    """

    AUTO = 0
    LOD1 = 1
    LOD2 = 2

    @classmethod
    def parse(cls, value: Union[str, int, "LodCalculationMethod", None]) -> "LodCalculationMethod":
        """Parse a config value ('auto', 'lod1', '2', ...) falling back to AUTO."""
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.AUTO
        s = str(value).strip().lower()
        if s.isdigit():
            try:
                return cls(int(s))
            except ValueError:
                pass
        names = {
            "auto": cls.AUTO,
            "lod1": cls.LOD1,
            "fixed1": cls.LOD1,
            "lod2": cls.LOD2,
            "fixed2": cls.LOD2,
        }
        if s in names:
            return names[s]
        log.warning(f"Unknown LOD calculation method {value!r}, using auto")
        return cls.AUTO


@dataclass
class DataSet:
    """
    A single rung of a layer's LOD ladder.

    Attributes:
        source_id: Identifier of the data origin. Tiles of layers sharing
                   a source share one concurrency budget.
        max_distance_squared: Tile is within range of this dataset while
                              its squared distance is below this value
        enabled: Disabled datasets never match
        name: Optional human readable label
    """

    source_id: str
    max_distance_squared: int
    enabled: bool = True
    name: str = ""

    def __post_init__(self):
        self.source_id = str(self.source_id)
        self.max_distance_squared = int(self.max_distance_squared)
        if isinstance(self.enabled, str):
            self.enabled = self.enabled.strip().lower() in ('true', '1', 'yes', 'on')
        else:
            self.enabled = bool(self.enabled)

    @classmethod
    def from_dict(cls, data: dict) -> "DataSet":
        """
        Create a DataSet from a config dictionary.

        Either 'max_distance' (which is squared here) or
        'max_distance_squared' must be present.

        Raises:
            KeyError: If the source or distance keys are missing
            ValueError: If the distance cannot be converted to a number
        """
        if "max_distance_squared" in data:
            dist_sq = int(data["max_distance_squared"])
        else:
            dist = float(data["max_distance"])
            dist_sq = int(dist * dist)
        return cls(
            source_id=data["source"],
            max_distance_squared=dist_sq,
            enabled=data.get("enabled", True),
            name=data.get("name", ""),
        )

    def __repr__(self) -> str:
        state = "" if self.enabled else ", disabled"
        return f"DataSet({self.source_id!r}, d2={self.max_distance_squared}{state})"


def calculate_lod(distance_squared: int, datasets: Sequence[DataSet],
                  method: LodCalculationMethod = LodCalculationMethod.AUTO,
                  max_distance_multiplier: float = 1.0) -> int:
    """
    Compute the desired LOD index for a tile.

    In AUTO mode every dataset is scanned and the LAST one in range wins,
    so the datasets of a layer must be ordered coarse to fine for nearer
    tiles to get finer data.

    The fixed modes return their constant tier as soon as any dataset is
    in range, and ABSENT_LOD when none is.

    Args:
        distance_squared: Squared distance from tile center to camera
        datasets: Ordered LOD ladder of the layer
        method: LOD calculation mode
        max_distance_multiplier: Global scale applied to every threshold

    Returns:
        Index into datasets, or ABSENT_LOD
    """
    lod = ABSENT_LOD
    for index, dataset in enumerate(datasets):
        if not dataset.enabled:
            continue
        if dataset.max_distance_squared * max_distance_multiplier <= distance_squared:
            continue
        if method == LodCalculationMethod.LOD1:
            return 1 if len(datasets) > 2 else 0
        if method == LodCalculationMethod.LOD2:
            return len(datasets) - 1
        lod = index
    return lod


class LodLadder:
    """
    Ordered list of DataSets for one layer.

    Loading from config skips invalid entries instead of raising, so a
    partially broken layer definition still streams what it can.

    Thread Safety:
        Not thread-safe. Ladders are built at startup and only read by
        the scheduler tick afterwards.
    """

    def __init__(self, datasets: Optional[Sequence[DataSet]] = None):
        self._datasets: List[DataSet] = list(datasets or [])

    def load_from_config(self, config_value: Union[list, None]) -> None:
        """
        Load datasets from a list of dicts.

        Order is preserved exactly since it defines the LOD index.
        """
        self._datasets = []
        if not config_value:
            return
        if not isinstance(config_value, list):
            log.warning("Layer datasets is not a list. Config may need re-saving.")
            return

        for i, item in enumerate(config_value):
            try:
                if not isinstance(item, dict):
                    log.warning(f"Skipping invalid dataset at index {i}: not a dict")
                    continue
                self._datasets.append(DataSet.from_dict(item))
            except (KeyError, ValueError, TypeError) as e:
                log.warning(f"Skipping invalid dataset at index {i}: {e}")
                continue

        log.debug(f"Loaded {len(self._datasets)} datasets")

    @property
    def datasets(self) -> List[DataSet]:
        return self._datasets

    def evaluate(self, distance_squared: int,
                 method: LodCalculationMethod = LodCalculationMethod.AUTO,
                 max_distance_multiplier: float = 1.0) -> int:
        return calculate_lod(distance_squared, self._datasets, method, max_distance_multiplier)

    def is_empty(self) -> bool:
        return len(self._datasets) == 0

    def get_summary(self) -> str:
        """
        Human-readable summary like "0:buildings@1000m, 1:buildings@300m"
        """
        if not self._datasets:
            return "No datasets configured"
        return ", ".join(
            f"{i}:{ds.source_id}@{int(ds.max_distance_squared ** 0.5)}m"
            + ("" if ds.enabled else "(off)")
            for i, ds in enumerate(self._datasets)
        )

    def validate(self) -> List[str]:
        """
        Validate the ladder.

        Returns:
            List of warning messages. Empty list means valid.
        """
        warnings = []
        if not self._datasets:
            warnings.append("No datasets configured")
            return warnings

        if not any(ds.enabled for ds in self._datasets):
            warnings.append("All datasets are disabled")

        # AUTO picks the last match, so finer (later) rungs should have
        # smaller ranges than coarser ones.
        for i in range(len(self._datasets) - 1):
            coarse = self._datasets[i]
            fine = self._datasets[i + 1]
            if fine.max_distance_squared > coarse.max_distance_squared:
                warnings.append(
                    f"Unusual: dataset {i + 1} ({fine.source_id}) reaches further "
                    f"than dataset {i} ({coarse.source_id}); it will shadow it"
                )
        return warnings

    def __repr__(self) -> str:
        return f"LodLadder(datasets={len(self._datasets)}, summary='{self.get_summary()}')"
