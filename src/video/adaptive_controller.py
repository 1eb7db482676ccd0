"""
Adaptive Video Controller - Main Orchestrator

Runs the adaptation loop: every interval it estimates link quality,
selects a target encoding profile, and restarts the encoder when the
change clears the deadband. Owns the adaptation state and exposes the
start/stop/status/config operations used by the web layer.
"""

import threading
import time
from typing import Optional, Callable, Dict, Any, BinaryIO

from loguru import logger

from src.config import AdaptiveVideoConfig
from .profile import EncodingProfile, Resolution, LevelTables, AdaptationState
from .adaptation import QualityEstimator, ParameterSelector, AdaptationGate
from .encoder_supervisor import EncoderSupervisor
from .status_publisher import StatusPublisher
from .video_exceptions import (
    EncoderError,
    EncoderSpawnError,
    EncoderStateError,
    VideoError
)


class AdaptiveVideoController:
    """
    Adaptive bitrate control loop for one encoder

    Coordinates the quality estimator, parameter selector, adaptation
    gate, encoder supervisor and status publisher. Only one evaluation
    runs at a time; a tick arriving while another is in flight, or
    sooner than one interval after the last one, is skipped.
    """

    def __init__(self, config: Optional[AdaptiveVideoConfig] = None,
                 estimator: Optional[QualityEstimator] = None,
                 publisher: Optional[StatusPublisher] = None,
                 supervisor: Optional[EncoderSupervisor] = None,
                 clock: Callable[[], float] = time.monotonic,
                 on_error: Optional[Callable[[VideoError], None]] = None):
        self.config = (config or AdaptiveVideoConfig()).ensure_valid()
        self.clock = clock
        self.on_error = on_error

        # Components
        self.estimator = estimator or QualityEstimator(failure_score=self.config.probe_failure_score)
        self.publisher = publisher or StatusPublisher()
        self.supervisor = supervisor or EncoderSupervisor(self.config)
        self.supervisor.set_exit_callback(self._on_encoder_exit)
        self._apply_config(self.config)

        # Adaptation state
        self._state_lock = threading.Lock()
        self.state = AdaptationState(current_profile=self.default_profile())

        # Single-flight guard for evaluations
        self._evaluation_lock = threading.Lock()

        # Loop lifecycle
        self._lifecycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._loop_thread: Optional[threading.Thread] = None
        self.is_running = False
        self.last_error: Optional[VideoError] = None

    def _apply_config(self, config: AdaptiveVideoConfig):
        """Rebuild the config-derived components"""
        self.config = config
        self.tables = LevelTables.from_config(config)
        self.selector = ParameterSelector(config.min_bitrate, config.max_bitrate)
        self.gate = AdaptationGate.from_config(config)
        self.estimator.failure_score = config.probe_failure_score
        self.supervisor.config = config

    def default_profile(self) -> EncodingProfile:
        """Profile the encoder starts with"""
        return EncodingProfile(
            bitrate_kbps=self.config.default_bitrate,
            fps=self.config.default_fps,
            resolution=Resolution(self.config.default_width, self.config.default_height)
        )

    # Exposed operations

    def start(self, input_device: str, output_sink: BinaryIO):
        """
        Start encoding with the default profile and begin adapting

        Args:
            input_device: Capture device for the encoder
            output_sink: Writable byte stream receiving encoded video

        Raises:
            EncoderStateError: If the controller is already running
            EncoderSpawnError: If the encoder cannot be spawned
        """
        with self._lifecycle_lock:
            if self.is_running:
                raise EncoderStateError("Adaptive controller already running")

            with self._state_lock:
                self.state = AdaptationState(current_profile=self.default_profile())
                profile = self.state.current_profile

            try:
                self.supervisor.start(input_device, output_sink, profile)
            except EncoderSpawnError as e:
                self._report_error(e)
                raise

            self.last_error = None
            self._stop_event = threading.Event()
            self.is_running = True
            self._loop_thread = threading.Thread(
                target=self._adaptation_loop,
                args=(self._stop_event,),
                daemon=True,
                name="AdaptationLoop"
            )
            self._loop_thread.start()

            logger.info(f"🚀 Adaptive video started on {input_device}: {profile.describe()}")

    def stop(self):
        """Cancel the loop and any in-flight restart, then stop the encoder"""
        with self._lifecycle_lock:
            was_running = self.is_running
            self.is_running = False
            self._stop_event.set()
            thread = self._loop_thread
            self._loop_thread = None

            # Stopping the supervisor first makes an in-flight restart give up
            self.supervisor.stop()

            if thread and thread is not threading.current_thread():
                thread.join(timeout=self.config.terminate_timeout_s + 5.0)
                if thread.is_alive():
                    logger.warning("⚠️  Adaptation loop did not stop gracefully")

            with self._state_lock:
                self.state = AdaptationState(current_profile=self.default_profile())

            if was_running:
                logger.info("🔚 Adaptive video stopped")

    def get_status(self) -> Dict[str, Any]:
        """
        Get controller status

        Returns:
            dict: Current profile, link quality, weak-network flag and run state
        """
        with self._state_lock:
            state = self.state
            status = {
                "current_profile": state.current_profile.to_dict(),
                "network_quality": state.network_quality,
                "weak_network": state.weak_network,
                "is_running": self.is_running,
                "last_adaptation_time": state.last_adaptation_time,
                "adaptations_applied": state.adaptations_applied,
                "evaluations": state.evaluations,
                "recent_adaptations": list(state.history)
            }

        sample = self.estimator.last_sample
        status["link"] = sample.to_dict() if sample else None
        status["encoder"] = self.supervisor.get_status()
        status["publisher"] = self.publisher.get_stats()
        status["last_error"] = str(self.last_error) if self.last_error else None
        return status

    def get_encoding_params(self) -> Dict[str, Any]:
        """Current profile with derived encoder parameters"""
        with self._state_lock:
            profile = self.state.current_profile
            weak_network = self.state.weak_network

        params = profile.to_dict()
        params["keyframe_interval"] = profile.keyframe_interval
        params["is_weak_network"] = weak_network
        return params

    def update_config(self, partial: Dict[str, Any]) -> AdaptiveVideoConfig:
        """
        Merge configuration changes

        Changes are picked up by the next evaluation; no restart is forced.

        Raises:
            ConfigurationError: If the merged configuration is invalid
        """
        new_config = self.config.merged(partial)

        with self._state_lock:
            self._apply_config(new_config)

        logger.info(f"⚙️ Adaptive video configuration updated: {sorted(partial)}")
        return new_config

    # Adaptation loop

    def _adaptation_loop(self, stop_event: threading.Event):
        """Periodic driver; exits as soon as its stop event is set"""
        logger.info("🔍 Adaptation loop started")

        while not stop_event.wait(self.config.adaptation_interval):
            try:
                self.tick()
            except Exception as e:
                logger.error(f"❌ Adaptation evaluation failed: {e}")

        logger.info("🔚 Adaptation loop ended")

    def tick(self) -> bool:
        """
        Run one adaptation evaluation if allowed

        Returns:
            bool: True if an evaluation ran, False if it was skipped
        """
        if not self.is_running:
            return False

        if not self._evaluation_lock.acquire(blocking=False):
            logger.debug("Adaptation evaluation already in flight, skipping tick")
            return False

        try:
            now = self.clock()
            with self._state_lock:
                last = self.state.last_adaptation_time
                if last is not None and now - last < self.config.adaptation_interval:
                    return False
                self.state.last_adaptation_time = now

            self._evaluate()
            return True
        finally:
            self._evaluation_lock.release()

    def _evaluate(self):
        """Measure, select and apply if the change clears the deadband"""
        stop_event = self._stop_event
        selector, gate, tables = self.selector, self.gate, self.tables

        score = self.estimator.measure()
        target = selector.select(score, tables)

        with self._state_lock:
            # A stop() meanwhile has discarded the state this evaluation belongs to
            if stop_event.is_set():
                return
            self.state.network_quality = score
            self.state.evaluations += 1
            current = self.state.current_profile

        if not gate.should_apply(current, target):
            logger.debug(f"Profile change below threshold (quality {score:.2f}), keeping {current.describe()}")
            return

        if stop_event.is_set():
            return

        self._apply_adaptation(current, target, score, stop_event)

    def _apply_adaptation(self, current: EncodingProfile, target: EncodingProfile, score: float,
                          stop_event: threading.Event):
        logger.info(
            f"🎚️ Adapting: bitrate {current.bitrate_kbps}->{target.bitrate_kbps}kbps, "
            f"FPS {current.fps}->{target.fps}, "
            f"resolution {current.resolution}->{target.resolution} (quality {score:.2f})"
        )

        try:
            if not self.supervisor.restart(target):
                return
        except EncoderSpawnError as e:
            self._handle_failure(e)
            return
        except EncoderStateError as e:
            logger.warning(f"⚠️  Adaptation skipped, encoder not running: {e}")
            return

        weak_network = score < self.config.weak_network_threshold
        with self._state_lock:
            if stop_event.is_set():
                return
            self.state.current_profile = target
            self.state.weak_network = weak_network
            self.state.record_adaptation(current, score)

        if weak_network:
            logger.info(f"📉 Weak network mode (quality {score:.2f})")

        self.publisher.broadcast(target, score, weak_network)

    # Failure handling

    def _on_encoder_exit(self, error: EncoderError):
        """Supervisor callback for an unexpected encoder exit"""
        self._handle_failure(error)

    def _handle_failure(self, error: VideoError):
        """Force the controller to stopped and report; no retry"""
        self.is_running = False
        self._stop_event.set()
        self.supervisor.stop()
        logger.error(f"❌ Adaptive video stopped after failure: {error}")
        self._report_error(error)

    def _report_error(self, error: VideoError):
        self.last_error = error
        self.publisher.publish_error(error)

        if self.on_error:
            try:
                self.on_error(error)
            except Exception as e:
                logger.warning(f"⚠️  Error callback failed: {e}")
