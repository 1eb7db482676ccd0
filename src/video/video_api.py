"""
Video API - Adaptive Video Control Endpoints

Endpoint handlers for starting, stopping, inspecting and reconfiguring
the adaptive encoder. Maps video errors onto HTTP status codes.
"""

from datetime import datetime
from typing import Dict, Any, Optional, Callable, BinaryIO

from fastapi import HTTPException
from loguru import logger

from src.config import AppConfig
from .adaptive_controller import AdaptiveVideoController
from .status_publisher import LatestValueSink
from .video_exceptions import (
    ConfigurationError,
    EncoderSpawnError,
    EncoderStateError
)


def open_output_sink(path: str) -> BinaryIO:
    """Open the file or FIFO receiving the raw stream"""
    return open(path, 'wb', buffering=0)


class VideoAPI:
    """
    Adaptive video API endpoints

    Provides:
    - Status and encoding parameter endpoints
    - Start/stop endpoints
    - Configuration update endpoint
    - Latest broadcast events endpoint
    """

    def __init__(self, config: AppConfig,
                 sink_opener: Callable[[str], BinaryIO] = open_output_sink):
        self.config = config
        self.sink_opener = sink_opener

        # Component references (set by main application)
        self.controller: Optional[AdaptiveVideoController] = None
        self.events: Optional[LatestValueSink] = None
        self.output_sink: Optional[BinaryIO] = None

        logger.info("🔗 VideoAPI initialized")

    def set_component_references(self, controller=None, events=None):
        """Set references to system components"""
        if controller:
            self.controller = controller
        if events:
            self.events = events

    def _require_controller(self) -> AdaptiveVideoController:
        if not self.controller:
            raise HTTPException(status_code=503, detail="Adaptive video controller not available")
        return self.controller

    def get_status(self) -> Dict[str, Any]:
        """Get adaptive video status"""
        controller = self._require_controller()
        status = controller.get_status()
        status["timestamp"] = datetime.now().isoformat()
        return status

    def get_encoding_params(self) -> Dict[str, Any]:
        """Get current encoding parameters"""
        return self._require_controller().get_encoding_params()

    def start(self, input_device: Optional[str] = None) -> Dict[str, Any]:
        """Start encoding and adaptation"""
        controller = self._require_controller()
        device = input_device or self.config.input_device

        # Opening the sink truncates it; never do that under a live encoder
        if controller.is_running:
            raise HTTPException(status_code=409, detail="Adaptive controller already running")

        try:
            sink = self.sink_opener(self.config.output_path)
        except OSError as e:
            raise HTTPException(status_code=500, detail=f"Cannot open output {self.config.output_path}: {e}")

        try:
            controller.start(device, sink)
        except EncoderStateError as e:
            sink.close()
            raise HTTPException(status_code=409, detail=str(e))
        except EncoderSpawnError as e:
            sink.close()
            raise HTTPException(status_code=500, detail=str(e))

        self._close_sink()
        self.output_sink = sink
        return {
            "success": True,
            "message": f"Encoding started on {device}",
            "status": controller.get_status()
        }

    def stop(self) -> Dict[str, Any]:
        """Stop encoding and adaptation"""
        controller = self._require_controller()
        controller.stop()
        self._close_sink()
        return {
            "success": True,
            "message": "Encoding stopped",
            "status": controller.get_status()
        }

    def update_config(self, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Merge configuration changes"""
        controller = self._require_controller()

        if not isinstance(partial, dict) or not partial:
            raise HTTPException(status_code=400, detail="Configuration update must be a non-empty object")

        try:
            new_config = controller.update_config(partial)
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e))

        return {
            "success": True,
            "config": new_config.to_dict(),
            "timestamp": datetime.now().isoformat()
        }

    def get_events(self, topic: Optional[str] = None) -> Dict[str, Any]:
        """Get latest broadcast payloads"""
        if not self.events:
            raise HTTPException(status_code=503, detail="Event store not available")
        return {
            "events": self.events.get_latest(topic),
            "timestamp": datetime.now().isoformat()
        }

    def _close_sink(self):
        if self.output_sink:
            try:
                self.output_sink.close()
            except OSError as e:
                logger.warning(f"⚠️  Failed to close output sink: {e}")
            self.output_sink = None
