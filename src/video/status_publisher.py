"""
Status Publisher

Best-effort broadcast of adaptation results and encoder errors. Messages
are queued and delivered by a background thread; a slow or failing
broadcast sink never blocks or fails the adaptation loop.
"""

import queue
import threading
import time
from typing import Optional, Dict, Any, Protocol, Callable

from loguru import logger

from .profile import EncodingProfile


ADAPTATION_TOPIC = "video-adaptation"
ERROR_TOPIC = "video-error"


class BroadcastSink(Protocol):
    """External collaborator receiving published messages"""

    def publish(self, topic: str, payload: Dict[str, Any]) -> None: ...


class NullBroadcastSink:
    """Discards everything"""

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        pass


class CallbackBroadcastSink:
    """Adapts a plain publish(topic, payload) callable"""

    def __init__(self, callback: Callable[[str, Dict[str, Any]], None]):
        self.callback = callback

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        self.callback(topic, payload)


class LatestValueSink:
    """Keeps the most recent payload per topic for polling readers"""

    def __init__(self):
        self._lock = threading.Lock()
        self._latest: Dict[str, Dict[str, Any]] = {}

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._latest[topic] = {"payload": payload, "received_at": time.time()}

    def get_latest(self, topic: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            if topic is not None:
                return dict(self._latest.get(topic, {}))
            return {name: dict(entry) for name, entry in self._latest.items()}


class StatusPublisher:
    """
    Fire-and-forget publisher owned by one controller

    Provides:
    - broadcast(): adaptation status on the video-adaptation topic
    - publish_error(): error events on the video-error topic
    - bounded queue; messages are dropped with a warning when it is full
    """

    def __init__(self, sink: Optional[BroadcastSink] = None, max_pending: int = 32):
        self.sink = sink if sink is not None else NullBroadcastSink()

        self._queue: queue.Queue = queue.Queue(maxsize=max_pending)
        self._worker: Optional[threading.Thread] = None
        self._worker_lock = threading.Lock()

        # Delivery statistics
        self.published = 0
        self.dropped = 0
        self.failures = 0

    def broadcast(self, profile: EncodingProfile, network_quality: float, weak_network: bool) -> bool:
        """
        Queue an adaptation status message

        Returns:
            bool: True if queued, False if dropped
        """
        payload = {
            "bitrate": profile.bitrate_kbps,
            "fps": profile.fps,
            "resolution": profile.resolution.to_dict(),
            "network_quality": network_quality,
            "is_weak_network": weak_network
        }
        return self._enqueue(ADAPTATION_TOPIC, payload)

    def publish_error(self, error: Exception, **extra) -> bool:
        """Queue an error event"""
        payload = {
            "error": type(error).__name__,
            "message": str(error),
            "timestamp": time.time()
        }
        payload.update(extra)
        return self._enqueue(ERROR_TOPIC, payload)

    def flush(self, timeout: float = 2.0) -> bool:
        """Wait until everything queued so far has been handed to the sink"""
        marker = threading.Event()
        self._ensure_worker()
        try:
            self._queue.put(marker, timeout=timeout)
        except queue.Full:
            return False
        return marker.wait(timeout)

    def close(self, timeout: float = 2.0):
        """Stop the delivery thread after pending messages"""
        with self._worker_lock:
            worker = self._worker
            self._worker = None
        if worker is None:
            return
        try:
            self._queue.put(None, timeout=timeout)
        except queue.Full:
            logger.warning("⚠️  Status publisher queue full at shutdown")
            return
        worker.join(timeout=timeout)

    def _enqueue(self, topic: str, payload: Dict[str, Any]) -> bool:
        if self._put((topic, payload)):
            return True
        self.dropped += 1
        logger.warning(f"⚠️  Status broadcast dropped ({topic}): queue full")
        return False

    def _put(self, item) -> bool:
        self._ensure_worker()
        try:
            self._queue.put_nowait(item)
            return True
        except queue.Full:
            return False

    def _ensure_worker(self):
        with self._worker_lock:
            if self._worker and self._worker.is_alive():
                return
            self._worker = threading.Thread(
                target=self._delivery_loop,
                daemon=True,
                name="StatusPublisher"
            )
            self._worker.start()

    def _delivery_loop(self):
        while True:
            item = self._queue.get()
            if item is None:
                break
            if isinstance(item, threading.Event):
                item.set()
                continue

            topic, payload = item
            try:
                self.sink.publish(topic, payload)
                self.published += 1
            except Exception as e:
                self.failures += 1
                logger.warning(f"⚠️  Status broadcast failed ({topic}): {e}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "published": self.published,
            "dropped": self.dropped,
            "failures": self.failures,
            "pending": self._queue.qsize()
        }
