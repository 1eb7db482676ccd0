"""
Encoder Supervisor - Encoding Subprocess Lifecycle

Owns the single live encoder process of a controller. Starts it with a
profile, pumps its output into the sink on a dedicated thread, restarts
it with a new profile and stops it. A restart reaps the old process and
drains its output before the next one is bound to the same sink, so the
sink never sees bytes from two encoder generations interleaved.
"""

import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Callable, List, Dict, Any, BinaryIO

from loguru import logger

from src.config import AdaptiveVideoConfig
from .profile import EncodingProfile
from .video_exceptions import (
    EncoderSpawnError,
    EncoderStateError,
    EncoderCrashedError
)


class SupervisorState(Enum):
    """Encoder lifecycle state"""
    STOPPED = "stopped"
    RUNNING = "running"
    RESTARTING = "restarting"


CommandBuilder = Callable[[EncodingProfile, str], List[str]]


def build_ffmpeg_command(profile: EncodingProfile, input_device: str,
                         encoder_binary: str = "ffmpeg",
                         input_format: str = "mjpeg",
                         video_codec: str = "h264_omx") -> List[str]:
    """
    Build the encoder command line for a profile

    Low-latency H.264: baseline profile, ultrafast preset, zerolatency tune,
    GOP of two seconds, scene-cut keyframes disabled, raw output on stdout.
    """
    size = str(profile.resolution)
    fps = str(profile.fps)
    return [
        encoder_binary,
        '-f', 'v4l2',
        '-input_format', input_format,
        '-s', size,
        '-r', fps,
        '-i', input_device,
        '-c:v', video_codec,
        '-b:v', profile.bitrate_arg,
        '-profile:v', 'baseline',
        '-preset', 'ultrafast',
        '-tune', 'zerolatency',
        '-g', str(profile.keyframe_interval),
        '-keyint_min', fps,
        '-sc_threshold', '0',
        '-f', 'rawvideo',
        '-s', size,
        '-r', fps,
        '-'
    ]


@dataclass
class EncoderHandle:
    """One spawned encoder process and its I/O threads"""
    process: subprocess.Popen
    profile: EncodingProfile
    output_sink: BinaryIO
    generation: int
    started_at: float
    terminating: threading.Event = field(default_factory=threading.Event)
    pump_thread: Optional[threading.Thread] = None
    stderr_thread: Optional[threading.Thread] = None
    bytes_pumped: int = 0
    stderr_tail: deque = field(default_factory=lambda: deque(maxlen=20))

    # Guards writes to the sink; once closed this generation writes nothing more
    sink_lock: threading.Lock = field(default_factory=threading.Lock)
    sink_closed: bool = False

    @property
    def pid(self) -> int:
        return self.process.pid


class EncoderSupervisor:
    """
    Lifecycle manager for exactly one encoder subprocess

    Provides:
    - start: spawn the encoder and begin pumping its output into the sink
    - restart: reap the current encoder, then spawn one with a new profile
    - stop: idempotent teardown
    - crash detection: an unexpected exit moves the supervisor to STOPPED
      and reports an EncoderCrashedError through the exit callback; there
      is no automatic retry
    """

    def __init__(self, config: Optional[AdaptiveVideoConfig] = None,
                 command_builder: Optional[CommandBuilder] = None,
                 chunk_size: int = 65536):
        self.config = config or AdaptiveVideoConfig()
        self.command_builder = command_builder or self._default_command
        self.chunk_size = chunk_size

        # Lifecycle state
        self._lock = threading.RLock()
        self._state = SupervisorState.STOPPED
        self._handle: Optional[EncoderHandle] = None
        self._generation = 0

        # Bound at start, reused by restart
        self._input_device: Optional[str] = None
        self._output_sink: Optional[BinaryIO] = None

        # Failure reporting
        self.exit_callback: Optional[Callable[[EncoderCrashedError], None]] = None
        self.last_error: Optional[Exception] = None
        self.restarts = 0

    def set_exit_callback(self, callback: Callable[[EncoderCrashedError], None]):
        """
        Set callback invoked when the encoder exits without being asked to

        Args:
            callback: Function called with the EncoderCrashedError
        """
        self.exit_callback = callback

    def _default_command(self, profile: EncodingProfile, input_device: str) -> List[str]:
        return build_ffmpeg_command(
            profile,
            input_device,
            encoder_binary=self.config.encoder_binary,
            input_format=self.config.input_format,
            video_codec=self.config.video_codec
        )

    # Public state

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SupervisorState.RUNNING

    @property
    def handle(self) -> Optional[EncoderHandle]:
        return self._handle

    @property
    def current_profile(self) -> Optional[EncodingProfile]:
        handle = self._handle
        return handle.profile if handle else None

    # Lifecycle operations

    def start(self, input_device: str, output_sink: BinaryIO, profile: EncodingProfile) -> EncoderHandle:
        """
        Spawn the encoder and start pumping its output into the sink

        Args:
            input_device: Capture device passed to the encoder command line
            output_sink: Writable byte stream receiving the encoded video
            profile: Encoding profile to start with

        Returns:
            EncoderHandle: Handle of the running encoder

        Raises:
            EncoderStateError: If an encoder is already running
            EncoderSpawnError: If the subprocess cannot be created
        """
        with self._lock:
            if self._state is not SupervisorState.STOPPED:
                raise EncoderStateError("Encoder already active", self._state.value)

            self._input_device = input_device
            self._output_sink = output_sink
            return self._spawn(profile)

    def restart(self, profile: EncodingProfile) -> bool:
        """
        Replace the running encoder with one using a new profile

        Blocks until the old process is reaped and its output drained.
        A stop() issued meanwhile wins: the restart is abandoned and no new
        process is spawned.

        Args:
            profile: Profile for the new encoder

        Returns:
            bool: True if a new encoder is running, False if stop() intervened

        Raises:
            EncoderStateError: If the supervisor is not RUNNING
            EncoderSpawnError: If the new subprocess cannot be created
        """
        with self._lock:
            if self._state is not SupervisorState.RUNNING:
                raise EncoderStateError("Restart requires a running encoder", self._state.value)

            old_handle = self._handle
            self._handle = None
            self._state = SupervisorState.RESTARTING
            old_handle.terminating.set()

        logger.info(f"🔄 Restarting encoder: {old_handle.profile.describe()} -> {profile.describe()}")
        self._terminate(old_handle)

        with self._lock:
            if self._state is not SupervisorState.RESTARTING:
                logger.info("🛑 Encoder restart abandoned: stop requested")
                return False

            self._state = SupervisorState.STOPPED
            self._spawn(profile)
            self.restarts += 1
            return True

    def stop(self):
        """Terminate any live encoder and release the handle; safe to call repeatedly"""
        with self._lock:
            handle = self._handle
            previous_state = self._state
            self._handle = None
            self._state = SupervisorState.STOPPED
            if handle:
                handle.terminating.set()

        if handle:
            self._terminate(handle)
            logger.info(f"🔚 Encoder stopped (pid {handle.pid}, {handle.bytes_pumped} bytes pumped)")
        elif previous_state is SupervisorState.RESTARTING:
            logger.info("🛑 Stop requested during encoder restart")

    # Internals

    def _spawn(self, profile: EncodingProfile) -> EncoderHandle:
        """Create the subprocess and its I/O threads; caller holds the lock"""
        command = self.command_builder(profile, self._input_device)

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0
            )
        except (OSError, ValueError) as e:
            self._state = SupervisorState.STOPPED
            error = EncoderSpawnError(f"Failed to start encoder {command[0]}", str(e))
            self.last_error = error
            logger.error(f"❌ {error}")
            raise error

        self._generation += 1
        handle = EncoderHandle(
            process=process,
            profile=profile,
            output_sink=self._output_sink,
            generation=self._generation,
            started_at=time.time()
        )
        self._handle = handle
        self._state = SupervisorState.RUNNING

        handle.pump_thread = threading.Thread(
            target=self._pump_output,
            args=(handle,),
            daemon=True,
            name=f"EncoderPump-{handle.generation}"
        )
        handle.stderr_thread = threading.Thread(
            target=self._drain_stderr,
            args=(handle,),
            daemon=True,
            name=f"EncoderStderr-{handle.generation}"
        )
        handle.pump_thread.start()
        handle.stderr_thread.start()

        logger.info(f"🎬 Encoder started (pid {handle.pid}, generation {handle.generation}): {profile.describe()}")
        return handle

    def _pump_output(self, handle: EncoderHandle):
        """Copy encoder stdout into the sink until EOF"""
        stdout = handle.process.stdout
        sink_error: Optional[Exception] = None

        try:
            while True:
                chunk = stdout.read(self.chunk_size)
                if not chunk:
                    break

                with handle.sink_lock:
                    if handle.sink_closed:
                        break
                    handle.output_sink.write(chunk)
                    flush = getattr(handle.output_sink, "flush", None)
                    if flush:
                        flush()
                handle.bytes_pumped += len(chunk)

        except (OSError, ValueError) as e:
            if not handle.terminating.is_set():
                sink_error = e
                logger.error(f"❌ Encoder output pump failed: {e}")
                handle.process.kill()

        returncode = handle.process.wait()
        self._on_process_exit(handle, returncode, sink_error)

    def _drain_stderr(self, handle: EncoderHandle):
        """Log encoder diagnostics line by line"""
        stderr = handle.process.stderr
        try:
            for raw in iter(stderr.readline, b''):
                line = raw.decode(errors='replace').rstrip()
                if line:
                    handle.stderr_tail.append(line)
                    logger.debug(f"FFmpeg: {line}")
        except (OSError, ValueError):
            pass

    def _on_process_exit(self, handle: EncoderHandle, returncode: int, sink_error: Optional[Exception]):
        """Classify an encoder exit as requested or unexpected"""
        if handle.terminating.is_set():
            logger.info(f"Encoder generation {handle.generation} exited with code {returncode}")
            return

        with self._lock:
            if self._handle is not handle:
                return
            self._handle = None
            self._state = SupervisorState.STOPPED

        with handle.sink_lock:
            handle.sink_closed = True
        handle.process.stdout.close()
        if handle.stderr_thread:
            handle.stderr_thread.join(timeout=1.0)
        if not handle.stderr_thread or not handle.stderr_thread.is_alive():
            handle.process.stderr.close()

        if sink_error is not None:
            details = f"output sink failed: {sink_error}"
        else:
            details = " | ".join(list(handle.stderr_tail)[-3:]) or None

        error = EncoderCrashedError(returncode, details)
        self.last_error = error
        logger.error(f"💥 {error}")

        if self.exit_callback:
            try:
                self.exit_callback(error)
            except Exception as e:
                logger.warning(f"⚠️  Encoder exit callback error: {e}")

    def _terminate(self, handle: EncoderHandle):
        """Signal, reap and drain one encoder generation"""
        process = handle.process

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=self.config.terminate_timeout_s)
            except subprocess.TimeoutExpired:
                logger.warning(f"⚠️  Encoder pid {handle.pid} ignored SIGTERM, killing")
                process.kill()
                process.wait()

        # Let the pump flush what the process wrote before exiting
        current = threading.current_thread()
        for thread in (handle.pump_thread, handle.stderr_thread):
            if thread and thread is not current:
                thread.join(timeout=self.config.terminate_timeout_s)

        # Nothing from this generation may reach the sink after this point
        with handle.sink_lock:
            handle.sink_closed = True

        for pipe in (process.stdout, process.stderr):
            if pipe:
                try:
                    pipe.close()
                except OSError:
                    pass

    def get_status(self) -> Dict[str, Any]:
        """
        Get supervisor status information

        Returns:
            dict: State, pid, profile and counters
        """
        handle = self._handle
        return {
            "state": self._state.value,
            "pid": handle.pid if handle else None,
            "generation": handle.generation if handle else None,
            "profile": handle.profile.to_dict() if handle else None,
            "uptime_seconds": time.time() - handle.started_at if handle else 0.0,
            "bytes_pumped": handle.bytes_pumped if handle else 0,
            "restarts": self.restarts,
            "last_error": str(self.last_error) if self.last_error else None
        }
