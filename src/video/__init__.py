"""
Adaptive Video Streamer

Adaptive-bitrate control for a live camera encoder: link quality
estimation, profile selection with hysteresis, and supervision of the
encoding subprocess.
"""

from .video_exceptions import (
    VideoError,
    ConfigurationError,
    EncoderError,
    EncoderSpawnError,
    EncoderStateError,
    EncoderCrashedError,
    LinkProbeError
)
from .profile import Resolution, EncodingProfile, LevelTables, AdaptationState

__all__ = [
    'VideoError',
    'ConfigurationError',
    'EncoderError',
    'EncoderSpawnError',
    'EncoderStateError',
    'EncoderCrashedError',
    'LinkProbeError',
    'Resolution',
    'EncodingProfile',
    'LevelTables',
    'AdaptationState'
]

__version__ = "1.0.0"
