"""
Encoding profile and adaptation state types

The profile is the tuple of bitrate, framerate and resolution the encoder
runs with. Level tables hold the ordered choices the selector picks from.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Resolution:
    """Frame size in pixels"""
    width: int
    height: int

    def __str__(self):
        return f"{self.width}x{self.height}"

    @classmethod
    def from_dict(cls, value: Dict[str, int]) -> 'Resolution':
        return cls(width=int(value["width"]), height=int(value["height"]))

    def to_dict(self) -> Dict[str, int]:
        return {"width": self.width, "height": self.height}


@dataclass(frozen=True)
class EncodingProfile:
    """Bitrate (kbps), framerate and resolution used by the encoder"""
    bitrate_kbps: int
    fps: int
    resolution: Resolution

    @property
    def keyframe_interval(self) -> int:
        """GOP size: two seconds worth of frames"""
        return self.fps * 2

    @property
    def bitrate_arg(self) -> str:
        return f"{self.bitrate_kbps}k"

    def describe(self) -> str:
        return f"{self.bitrate_kbps}kbps @ {self.fps}fps {self.resolution}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bitrate": self.bitrate_kbps,
            "fps": self.fps,
            "resolution": self.resolution.to_dict(),
        }


@dataclass(frozen=True)
class LevelTables:
    """
    Ordered discrete choices for each profile dimension

    Each table is non-empty and ascending. Lengths may differ.
    """
    bitrate_levels: Tuple[int, ...]
    fps_levels: Tuple[int, ...]
    resolution_levels: Tuple[Resolution, ...]

    @classmethod
    def from_config(cls, config) -> 'LevelTables':
        """Build tables from an AdaptiveVideoConfig"""
        return cls(
            bitrate_levels=tuple(config.quality_levels),
            fps_levels=tuple(config.fps_levels),
            resolution_levels=tuple(Resolution.from_dict(r) for r in config.resolution_levels),
        )


@dataclass
class AdaptationState:
    """Mutable adaptation state owned by one controller"""
    current_profile: EncodingProfile
    network_quality: float = 1.0
    weak_network: bool = False
    last_adaptation_time: Optional[float] = None

    # Bookkeeping
    adaptations_applied: int = 0
    evaluations: int = 0
    history: List[Dict[str, Any]] = field(default_factory=list)
    max_history_length: int = 10

    def record_adaptation(self, previous: EncodingProfile, score: float):
        """Remember an applied profile change"""
        self.adaptations_applied += 1
        self.history.append({
            "timestamp": time.time(),
            "from": previous.to_dict(),
            "to": self.current_profile.to_dict(),
            "network_quality": score,
        })

        # Keep only recent history
        if len(self.history) > self.max_history_length:
            self.history.pop(0)
