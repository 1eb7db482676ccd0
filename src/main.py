"""
Adaptive Video Streamer Web Application
FastAPI-based control surface for the adaptive-bitrate camera encoder
"""

from datetime import datetime
from typing import Optional, Dict, Any

from fastapi import FastAPI, HTTPException, Depends, Body, Query
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from loguru import logger

from src.config import get_config
from src.video.adaptive_controller import AdaptiveVideoController
from src.video.adaptation import QualityEstimator
from src.video.status_publisher import StatusPublisher, LatestValueSink
from src.video.video_api import VideoAPI
from src.video.video_exceptions import VideoError

# Initialize configuration
config = get_config()
config.print_summary()

# Initialize FastAPI app
app = FastAPI(
    title="Adaptive Video Streamer",
    description="Adaptive-bitrate encoder control for a remotely operated camera",
    version="1.0.0"
)

# Security scheme
security = HTTPBearer()

# Initialize system components
controller: Optional[AdaptiveVideoController] = None
video_api: Optional[VideoAPI] = None


def verify_api_key(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Verify API key from Authorization header"""
    if credentials.credentials != config.api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return credentials.credentials


def get_video_api() -> VideoAPI:
    if not video_api:
        raise HTTPException(status_code=503, detail="Video API not available")
    return video_api


def log_video_error(error: VideoError):
    logger.error(f"📣 Video error event: {error}")


@app.on_event("startup")
async def startup_event():
    """Initialize adaptive video components"""
    global controller, video_api

    logger.info("🚀 Starting Adaptive Video Streamer...")

    events = LatestValueSink()
    controller = AdaptiveVideoController(
        config.video,
        estimator=QualityEstimator(failure_score=config.video.probe_failure_score),
        publisher=StatusPublisher(events),
        on_error=log_video_error
    )

    video_api = VideoAPI(config)
    video_api.set_component_references(controller=controller, events=events)

    if config.autostart:
        try:
            video_api.start()
        except HTTPException as e:
            logger.error(f"❌ Autostart failed: {e.detail}")

    logger.info("✅ Adaptive Video Streamer ready")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the encoder and release resources"""
    logger.info("🛑 Shutting down Adaptive Video Streamer...")

    if video_api and controller:
        video_api.stop()
    if controller:
        controller.publisher.close()

    logger.info("✅ Shutdown complete")


@app.get("/health")
async def health_check():
    """Basic liveness check"""
    return {
        "status": "healthy",
        "streaming": bool(controller and controller.is_running),
        "timestamp": datetime.now().isoformat()
    }


@app.get("/api/video/status")
async def video_status(api_key: str = Depends(verify_api_key)):
    """Get adaptive video status"""
    return get_video_api().get_status()


@app.get("/api/video/params")
async def video_params(api_key: str = Depends(verify_api_key)):
    """Get current encoding parameters"""
    return get_video_api().get_encoding_params()


@app.post("/api/video/start")
def video_start(input_device: Optional[str] = Query(None), api_key: str = Depends(verify_api_key)):
    """Start encoding with the default profile"""
    return get_video_api().start(input_device)


@app.post("/api/video/stop")
def video_stop(api_key: str = Depends(verify_api_key)):
    """Stop encoding"""
    return get_video_api().stop()


@app.patch("/api/video/config")
async def video_config(partial: Dict[str, Any] = Body(...), api_key: str = Depends(verify_api_key)):
    """Merge adaptive video configuration changes"""
    return get_video_api().update_config(partial)


@app.get("/api/video/events")
async def video_events(topic: Optional[str] = Query(None), api_key: str = Depends(verify_api_key)):
    """Get latest broadcast payloads"""
    return get_video_api().get_events(topic)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        reload=config.debug
    )
