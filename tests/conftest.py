"""Shared fixtures: fake encoders, collecting sinks, loguru capture"""

import sys
import threading
import time

import pytest
from loguru import logger

from src.config import AdaptiveVideoConfig
from src.video.video_exceptions import EncoderStateError


# Writes its first argument to stdout until terminated
STREAMING_ENCODER = """
import sys, time
marker = sys.argv[1].encode()
while True:
    sys.stdout.buffer.write(marker * 16)
    sys.stdout.buffer.flush()
    time.sleep(0.01)
"""

# Emits a little output, complains on stderr, then exits with code 3
CRASHING_ENCODER = """
import sys, time
sys.stdout.buffer.write(b"partial")
sys.stdout.buffer.flush()
sys.stderr.write("encoder boom\\n")
sys.stderr.flush()
time.sleep(0.2)
sys.exit(3)
"""

# Streams, but takes half a second to exit after SIGTERM
SLOW_EXIT_ENCODER = """
import signal, sys, time
def on_term(signum, frame):
    time.sleep(0.5)
    sys.exit(0)
signal.signal(signal.SIGTERM, on_term)
while True:
    sys.stdout.buffer.write(b"s")
    sys.stdout.buffer.flush()
    time.sleep(0.01)
"""


def python_encoder(script):
    """Command builder running a Python script as the encoder"""
    def build(profile, input_device):
        return [sys.executable, "-c", script, f"<{profile.bitrate_kbps}>"]
    return build


def missing_encoder(profile, input_device):
    return ["/nonexistent/bin/encoder", input_device]


def wait_for(predicate, timeout=5.0, interval=0.02):
    """Poll until predicate() is truthy"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


class CollectingSink:
    """Thread-safe in-memory output sink"""

    def __init__(self):
        self._lock = threading.Lock()
        self._chunks = []
        self.closed = False

    def write(self, data):
        with self._lock:
            self._chunks.append(bytes(data))
        return len(data)

    def close(self):
        self.closed = True

    @property
    def data(self):
        with self._lock:
            return b"".join(self._chunks)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeEstimator:
    """Returns scripted scores; optionally blocks inside measure()"""

    def __init__(self, *scores, gate=None):
        self.scores = list(scores) or [0.5]
        self.calls = 0
        self.failure_score = 0.5
        self.last_sample = None
        self.gate = gate
        self.entered = threading.Event()

    def measure(self):
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5.0)
        score = self.scores[min(self.calls, len(self.scores) - 1)]
        self.calls += 1
        return score


class FakeSupervisor:
    """Records lifecycle calls without spawning anything"""

    def __init__(self, config=None):
        self.config = config
        self.running = False
        self.started = []
        self.restarted = []
        self.stops = 0
        self.restart_result = True
        self.exit_callback = None

    def set_exit_callback(self, callback):
        self.exit_callback = callback

    @property
    def is_running(self):
        return self.running

    def start(self, input_device, output_sink, profile):
        if self.running:
            raise EncoderStateError("Encoder already active")
        self.running = True
        self.started.append((input_device, profile))

    def restart(self, profile):
        if not self.running:
            raise EncoderStateError("Restart requires a running encoder")
        self.restarted.append(profile)
        return self.restart_result

    def stop(self):
        self.running = False
        self.stops += 1

    def get_status(self):
        return {"state": "running" if self.running else "stopped"}


@pytest.fixture
def sink():
    return CollectingSink()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_supervisor():
    return FakeSupervisor()


@pytest.fixture
def slow_config():
    """Config whose loop never fires on its own during a test"""
    return AdaptiveVideoConfig(adaptation_interval_ms=60_000, terminate_timeout_s=2.0)


@pytest.fixture
def log_messages():
    """Capture loguru output as 'LEVEL|message' strings"""
    messages = []
    handler_id = logger.add(lambda m: messages.append(m.rstrip("\n")), format="{level}|{message}", level="DEBUG")
    yield messages
    logger.remove(handler_id)


class CallbackSinkRecorder:
    """Broadcast sink remembering (topic, payload) pairs"""

    def __init__(self):
        self.messages = []

    def publish(self, topic, payload):
        self.messages.append((topic, payload))
