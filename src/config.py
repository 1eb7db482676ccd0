"""
Configuration management for the Adaptive Video Streamer
Handles environment variables for the web app and the adaptive encoder
"""

import os
from dataclasses import dataclass, field, fields, replace
from typing import Optional, Any, Dict, List

from loguru import logger

from src.video.video_exceptions import ConfigurationError


def get_bool(key: str, default: bool) -> bool:
    """Get boolean from environment variable"""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on')


def get_int(key: str, default: int) -> int:
    """Get integer from environment variable"""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def get_float(key: str, default: float) -> float:
    """Get float from environment variable"""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


def get_str(key: str, default: Optional[str] = None) -> str:
    """Get string from environment variable"""
    value = os.getenv(key, default)
    if value is None:
        raise ValueError(f"Required environment variable {key} not found")
    return value


def get_int_list(key: str, default: List[int]) -> List[int]:
    """Get comma-separated integer list from environment variable"""
    raw = os.getenv(key)
    if not raw:
        return list(default)
    try:
        return [int(item) for item in raw.split(',') if item.strip()]
    except ValueError:
        return list(default)


def parse_resolution(value: Any) -> Dict[str, int]:
    """
    Normalize a resolution given as "WxH", (w, h) or {"width", "height"}

    Returns:
        dict: {"width": int, "height": int}
    """
    if isinstance(value, str):
        width, _, height = value.lower().partition('x')
        return {"width": int(width), "height": int(height)}
    if isinstance(value, dict):
        return {"width": int(value["width"]), "height": int(value["height"])}
    width, height = value
    return {"width": int(width), "height": int(height)}


def get_resolution_list(key: str, default: List[Dict[str, int]]) -> List[Dict[str, int]]:
    """Get comma-separated WxH resolution list from environment variable"""
    raw = os.getenv(key)
    if not raw:
        return [dict(r) for r in default]
    try:
        return [parse_resolution(item.strip()) for item in raw.split(',') if item.strip()]
    except ValueError:
        return [dict(r) for r in default]


DEFAULT_QUALITY_LEVELS = [200, 500, 1000, 2000, 5000]
DEFAULT_FPS_LEVELS = [15, 20, 25, 30]
DEFAULT_RESOLUTION_LEVELS = [
    {"width": 320, "height": 240},
    {"width": 480, "height": 360},
    {"width": 640, "height": 480},
    {"width": 800, "height": 600},
    {"width": 1280, "height": 720},
]

# Option names accepted by update_config() in their wire (camelCase) form
CONFIG_ALIASES = {
    "minBitrate": "min_bitrate",
    "maxBitrate": "max_bitrate",
    "defaultBitrate": "default_bitrate",
    "qualityLevels": "quality_levels",
    "fpsLevels": "fps_levels",
    "resolutionLevels": "resolution_levels",
    "adaptationIntervalMs": "adaptation_interval_ms",
}


@dataclass
class AdaptiveVideoConfig:
    """Adaptive encoder configuration with environment variable support"""

    # Bitrate bounds (kbps)
    min_bitrate: int = 200
    max_bitrate: int = 5000
    default_bitrate: int = 1000

    # Initial profile
    default_fps: int = 30
    default_width: int = 640
    default_height: int = 480

    # Ordered level tables
    quality_levels: List[int] = field(default_factory=lambda: list(DEFAULT_QUALITY_LEVELS))
    fps_levels: List[int] = field(default_factory=lambda: list(DEFAULT_FPS_LEVELS))
    resolution_levels: List[Dict[str, int]] = field(
        default_factory=lambda: [dict(r) for r in DEFAULT_RESOLUTION_LEVELS]
    )

    # Adaptation loop
    adaptation_interval_ms: int = 5000

    # Deadband thresholds
    bitrate_threshold_kbps: int = 200
    fps_threshold: int = 5
    resolution_threshold_px: int = 100

    # Link quality
    weak_network_threshold: float = 0.3
    probe_failure_score: float = 0.5

    # Encoder process
    encoder_binary: str = "ffmpeg"
    input_format: str = "mjpeg"
    video_codec: str = "h264_omx"
    terminate_timeout_s: float = 3.0

    @classmethod
    def from_env(cls) -> 'AdaptiveVideoConfig':
        """Create adaptive encoder configuration from VIDEO_* environment variables"""
        defaults = cls()
        return cls(
            # Bitrate bounds
            min_bitrate=get_int('VIDEO_MIN_BITRATE', defaults.min_bitrate),
            max_bitrate=get_int('VIDEO_MAX_BITRATE', defaults.max_bitrate),
            default_bitrate=get_int('VIDEO_DEFAULT_BITRATE', defaults.default_bitrate),

            # Initial profile
            default_fps=get_int('VIDEO_DEFAULT_FPS', defaults.default_fps),
            default_width=get_int('VIDEO_DEFAULT_WIDTH', defaults.default_width),
            default_height=get_int('VIDEO_DEFAULT_HEIGHT', defaults.default_height),

            # Level tables
            quality_levels=get_int_list('VIDEO_QUALITY_LEVELS', defaults.quality_levels),
            fps_levels=get_int_list('VIDEO_FPS_LEVELS', defaults.fps_levels),
            resolution_levels=get_resolution_list('VIDEO_RESOLUTION_LEVELS', defaults.resolution_levels),

            adaptation_interval_ms=get_int('VIDEO_ADAPTATION_INTERVAL_MS', defaults.adaptation_interval_ms),

            # Deadband
            bitrate_threshold_kbps=get_int('VIDEO_BITRATE_THRESHOLD_KBPS', defaults.bitrate_threshold_kbps),
            fps_threshold=get_int('VIDEO_FPS_THRESHOLD', defaults.fps_threshold),
            resolution_threshold_px=get_int('VIDEO_RESOLUTION_THRESHOLD_PX', defaults.resolution_threshold_px),

            weak_network_threshold=get_float('VIDEO_WEAK_NETWORK_THRESHOLD', defaults.weak_network_threshold),
            probe_failure_score=get_float('VIDEO_PROBE_FAILURE_SCORE', defaults.probe_failure_score),

            # Encoder
            encoder_binary=get_str('VIDEO_ENCODER_BINARY', defaults.encoder_binary),
            input_format=get_str('VIDEO_INPUT_FORMAT', defaults.input_format),
            video_codec=get_str('VIDEO_CODEC', defaults.video_codec),
            terminate_timeout_s=get_float('VIDEO_TERMINATE_TIMEOUT_S', defaults.terminate_timeout_s),
        )

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors"""
        errors = []

        # Level tables must be non-empty, positive and ascending
        tables = {
            "quality_levels": list(self.quality_levels),
            "fps_levels": list(self.fps_levels),
        }
        try:
            tables["resolution_levels"] = [r["width"] for r in self.resolution_levels]
        except (KeyError, TypeError):
            errors.append("resolution_levels entries need width and height")
            tables["resolution_levels"] = []

        for name, values in tables.items():
            if not values:
                errors.append(f"{name} must not be empty")
                continue
            if any(v <= 0 for v in values):
                errors.append(f"{name} must contain positive values")
            if any(b < a for a, b in zip(values, values[1:])):
                errors.append(f"{name} must be in ascending order")

        if self.adaptation_interval_ms <= 0:
            errors.append("adaptation_interval_ms must be positive")

        # Bitrate bounds
        if self.min_bitrate <= 0:
            errors.append("min_bitrate must be positive")
        if self.min_bitrate > self.max_bitrate:
            errors.append("min_bitrate must not exceed max_bitrate")
        if not (self.min_bitrate <= self.default_bitrate <= self.max_bitrate):
            errors.append("default_bitrate must be between min_bitrate and max_bitrate")

        if self.default_fps <= 0:
            errors.append("default_fps must be positive")
        if self.default_width <= 0 or self.default_height <= 0:
            errors.append("default resolution must be positive")

        if min(self.bitrate_threshold_kbps, self.fps_threshold, self.resolution_threshold_px) < 0:
            errors.append("Adaptation thresholds must not be negative")

        if not (0.0 <= self.weak_network_threshold <= 1.0):
            errors.append("weak_network_threshold must be between 0 and 1")
        if not (0.0 <= self.probe_failure_score <= 1.0):
            errors.append("probe_failure_score must be between 0 and 1")

        if self.terminate_timeout_s <= 0:
            errors.append("terminate_timeout_s must be positive")

        return errors

    def ensure_valid(self) -> 'AdaptiveVideoConfig':
        """Raise ConfigurationError if the configuration is invalid"""
        errors = self.validate()
        if errors:
            raise ConfigurationError("Invalid adaptive video configuration", "; ".join(errors))
        return self

    def merged(self, partial: Dict[str, Any]) -> 'AdaptiveVideoConfig':
        """
        Merge a partial configuration into a new, validated instance

        Args:
            partial: Option names (snake_case or camelCase) mapped to new values

        Returns:
            AdaptiveVideoConfig: New configuration; self is left untouched

        Raises:
            ConfigurationError: On unknown options or an invalid result
        """
        known = {f.name for f in fields(self)}
        changes = {}
        for key, value in partial.items():
            name = CONFIG_ALIASES.get(key, key)
            if name not in known:
                raise ConfigurationError("Unknown configuration option", key)
            try:
                changes[name] = self._coerce_option(name, value)
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid {name}", str(e))

        return replace(self, **changes).ensure_valid()

    def _coerce_option(self, name: str, value: Any) -> Any:
        """Convert a raw option value to the type of the field it replaces"""
        if name == "resolution_levels":
            return [parse_resolution(r) for r in value]
        if name in ("quality_levels", "fps_levels"):
            if isinstance(value, (str, bytes)):
                raise TypeError(f"expected a list of integers, got {value!r}")
            return [int(v) for v in value]

        current = getattr(self, name)
        if isinstance(current, str):
            if not isinstance(value, str):
                raise TypeError(f"expected a string, got {value!r}")
            return value
        if value is None or isinstance(value, bool):
            raise TypeError(f"expected a number, got {value!r}")
        if isinstance(current, float):
            return float(value)
        return int(value)

    @property
    def adaptation_interval(self) -> float:
        """Adaptation period in seconds"""
        return self.adaptation_interval_ms / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view of the configuration"""
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class AppConfig:
    """Application configuration with environment variable support"""

    # Security
    api_key: str

    # Video source and sink
    input_device: str
    output_path: str
    autostart: bool

    # Server
    host: str
    port: int
    debug: bool

    # Adaptive encoder
    video: AdaptiveVideoConfig

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from environment variables with secure defaults"""
        return cls(
            # Security - require this to be set (no default)
            api_key=get_str('API_KEY'),

            # Video source and sink
            input_device=get_str('INPUT_DEVICE', '/dev/video0'),
            output_path=get_str('OUTPUT_PATH', '/tmp/video.h264'),
            autostart=get_bool('AUTOSTART', False),

            # Server configuration
            host=get_str('HOST', '127.0.0.1'),
            port=get_int('PORT', 8003),
            debug=get_bool('DEBUG', False),

            video=AdaptiveVideoConfig.from_env()
        )

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors"""
        errors = []

        # Validate security
        if not self.api_key or len(self.api_key) < 8:
            errors.append("API_KEY must be at least 8 characters long")

        if not self.input_device:
            errors.append("INPUT_DEVICE is required")
        if not self.output_path:
            errors.append("OUTPUT_PATH is required")

        # Validate server settings
        if not (1 <= self.port <= 65535):
            errors.append("Port must be between 1 and 65535")

        errors.extend(self.video.validate())
        return errors

    def print_summary(self):
        """Log configuration summary for debugging"""
        video = self.video
        logger.info("📋 Configuration Summary:")
        logger.info(f"   🔒 Security: API key set ({self.api_key[:4]}...)")
        logger.info(f"   📷 Input: {self.input_device} -> {self.output_path}, Autostart={self.autostart}")
        logger.info(f"   🎥 Bitrate: {video.min_bitrate}-{video.max_bitrate}kbps (default {video.default_bitrate})")
        logger.info(f"   🎚️ Levels: bitrate={video.quality_levels}, fps={video.fps_levels}")
        logger.info(f"   ⏱️ Adaptation interval: {video.adaptation_interval_ms}ms")
        logger.info(f"   🌐 Server: {self.host}:{self.port}, Debug={self.debug}")


def load_env_file(env_file: str = '.env'):
    """Load environment variables from .env file if present"""
    if not os.path.exists(env_file):
        return

    logger.info(f"📄 Loading configuration from {env_file}")
    with open(env_file, 'r') as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith('#') and '=' in line:
                key, value = line.split('=', 1)
                os.environ.setdefault(key.strip(), value.strip())


def load_config() -> AppConfig:
    """Load and validate configuration"""
    try:
        load_env_file()

        # Create configuration
        config = AppConfig.from_env()

        # Validate configuration
        errors = config.validate()
        if errors:
            logger.error("❌ Configuration errors:")
            for error in errors:
                logger.error(f"   - {error}")
            raise ConfigurationError("Invalid configuration", "; ".join(errors))

        logger.info("✅ Configuration loaded successfully")
        return config

    except Exception as e:
        logger.error(f"❌ Failed to load configuration: {e}")
        raise


# Global configuration instance
app_config: Optional[AppConfig] = None

def get_config() -> AppConfig:
    """Get global configuration instance"""
    global app_config
    if app_config is None:
        app_config = load_config()
    return app_config
