"""
Adaptation Gate

Deadband between the running profile and a freshly selected one, so
noisy quality samples do not thrash the encoder with restarts.
"""

from ..profile import EncodingProfile


class AdaptationGate:
    """Hysteresis policy deciding whether a profile change is worth a restart"""

    def __init__(self, bitrate_threshold_kbps: int = 200, fps_threshold: int = 5,
                 resolution_threshold_px: int = 100):
        self.bitrate_threshold_kbps = bitrate_threshold_kbps
        self.fps_threshold = fps_threshold
        self.resolution_threshold_px = resolution_threshold_px

    @classmethod
    def from_config(cls, config) -> 'AdaptationGate':
        return cls(
            bitrate_threshold_kbps=config.bitrate_threshold_kbps,
            fps_threshold=config.fps_threshold,
            resolution_threshold_px=config.resolution_threshold_px,
        )

    def should_apply(self, current: EncodingProfile, target: EncodingProfile) -> bool:
        """
        True if any dimension moved past its threshold

        Args:
            current: Profile the encoder runs with
            target: Profile selected for the latest score

        Returns:
            bool: True if the target should be applied
        """
        bitrate_diff = abs(target.bitrate_kbps - current.bitrate_kbps)
        fps_diff = abs(target.fps - current.fps)
        # Only width is compared; height follows the same level table
        width_diff = abs(target.resolution.width - current.resolution.width)

        return (bitrate_diff > self.bitrate_threshold_kbps
                or fps_diff > self.fps_threshold
                or width_diff > self.resolution_threshold_px)
