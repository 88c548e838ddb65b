"""module to hold constants used throughout the project"""
import sys

# LOD index meaning "tile should not exist"
ABSENT_LOD = -1

# Priority system constants
PRIORITY_DISTANCE = 5000
PRIORITY_DISTANCE_K = PRIORITY_DISTANCE * PRIORITY_DISTANCE
REMOVE_PRIORITY = sys.maxsize
CREATE_LOD_WEIGHT = 10.0
UPGRADE_LOD_WEIGHT = 1.0
DOWNGRADE_LOD_WEIGHT = 0.5

# View range defaults (scheduler planar units, e.g. meters)
GROUND_LEVEL_HEIGHT = 20
GROUND_LEVEL_CLIP_RANGE = 1000

DEFAULT_MAX_CONCURRENT_DOWNLOADS = 6
