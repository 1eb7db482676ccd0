"""
Parameter Selection

Maps a link quality score onto an encoding profile by indexing each
ordered level table independently.
"""

import math
from typing import Optional, Sequence, TypeVar

from ..profile import EncodingProfile, LevelTables

T = TypeVar("T")


def level_index(score: float, length: int) -> int:
    """
    Index into a table of the given length for a score in [0, 1]

    clamp(floor(score * length), 0, length - 1); monotonic in score.
    """
    if length <= 0:
        raise ValueError("Level table must not be empty")
    if math.isnan(score):
        score = 0.0
    return max(0, min(int(math.floor(score * length)), length - 1))


def select_level(score: float, levels: Sequence[T]) -> T:
    """Pick the level for a score from one ordered table"""
    return levels[level_index(score, len(levels))]


class ParameterSelector:
    """
    Chooses bitrate, framerate and resolution for a quality score

    The three tables are indexed independently, so indices differ when
    table lengths differ. Selected bitrate is clamped to the configured
    bounds when they are given.
    """

    def __init__(self, min_bitrate: Optional[int] = None, max_bitrate: Optional[int] = None):
        self.min_bitrate = min_bitrate
        self.max_bitrate = max_bitrate

    def select(self, score: float, tables: LevelTables) -> EncodingProfile:
        bitrate = select_level(score, tables.bitrate_levels)
        if self.min_bitrate is not None:
            bitrate = max(bitrate, self.min_bitrate)
        if self.max_bitrate is not None:
            bitrate = min(bitrate, self.max_bitrate)

        return EncodingProfile(
            bitrate_kbps=bitrate,
            fps=select_level(score, tables.fps_levels),
            resolution=select_level(score, tables.resolution_levels),
        )
