"""
Link Quality Estimation

Samples link latency and throughput through a pluggable probe and folds
them into a single normalized score used to pick the encoding profile.
"""

import socket
import time
from dataclasses import dataclass
from typing import Optional, Protocol, Dict, Any

from loguru import logger

from ..video_exceptions import LinkProbeError


# Latency at which the latency score reaches zero
LATENCY_CEILING_MS = 1000.0
# Throughput at which the bandwidth score saturates
BANDWIDTH_CEILING_KBPS = 5000.0


class LinkProbe(Protocol):
    """Anything able to report link latency and throughput"""

    def measure_latency_ms(self) -> float: ...

    def measure_bandwidth_kbps(self) -> float: ...


class StaticLinkProbe:
    """
    Stub probe reporting fixed link figures

    Optionally sleeps to emulate the round trip of a real probe.
    """

    def __init__(self, latency_ms: float = 100.0, bandwidth_kbps: float = 2000.0,
                 simulate_delay: bool = False):
        self.latency_ms = latency_ms
        self.bandwidth_kbps = bandwidth_kbps
        self.simulate_delay = simulate_delay

    def measure_latency_ms(self) -> float:
        if self.simulate_delay:
            time.sleep(self.latency_ms / 1000.0)
        return self.latency_ms

    def measure_bandwidth_kbps(self) -> float:
        return self.bandwidth_kbps


class TcpConnectProbe:
    """
    Latency probe based on TCP connect time to a remote endpoint

    Bandwidth is not measured on the wire; the nominal uplink figure is
    reported instead.
    """

    def __init__(self, host: str, port: int, timeout: float = 2.0,
                 nominal_bandwidth_kbps: float = 2000.0):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.nominal_bandwidth_kbps = nominal_bandwidth_kbps

    def measure_latency_ms(self) -> float:
        start = time.monotonic()
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout):
                pass
        except OSError as e:
            raise LinkProbeError(f"Cannot reach {self.host}:{self.port}", str(e))
        return (time.monotonic() - start) * 1000.0

    def measure_bandwidth_kbps(self) -> float:
        return self.nominal_bandwidth_kbps


@dataclass
class QualitySample:
    """Result of one estimator run"""
    score: float
    latency_ms: Optional[float] = None
    bandwidth_kbps: Optional[float] = None
    probe_failed: bool = False
    timestamp: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "latency_ms": self.latency_ms,
            "bandwidth_kbps": self.bandwidth_kbps,
            "probe_failed": self.probe_failed,
            "timestamp": self.timestamp,
        }


def latency_score(latency_ms: float) -> float:
    """1.0 for an instant link, falling linearly to 0.0 at one second"""
    return max(0.0, min(1.0, 1.0 - latency_ms / LATENCY_CEILING_MS))


def bandwidth_score(bandwidth_kbps: float) -> float:
    """Throughput relative to 5 Mbps, capped at 1.0"""
    return max(0.0, min(1.0, bandwidth_kbps / BANDWIDTH_CEILING_KBPS))


def combine_scores(latency_ms: float, bandwidth_kbps: float) -> float:
    """Arithmetic mean of latency and bandwidth scores"""
    return (latency_score(latency_ms) + bandwidth_score(bandwidth_kbps)) / 2


class QualityEstimator:
    """
    Normalized link quality estimator

    A failing probe never propagates: the estimator logs a warning and
    reports the neutral failure score instead.
    """

    def __init__(self, probe: Optional[LinkProbe] = None, failure_score: float = 0.5):
        self.probe = probe if probe is not None else StaticLinkProbe()
        self.failure_score = failure_score

        # Last sample for status reporting
        self.last_sample: Optional[QualitySample] = None
        self.probe_failures = 0

    def measure(self) -> float:
        """
        Sample the link and return a score in [0, 1]

        Returns:
            float: Link quality score, or the failure score if the probe failed
        """
        try:
            latency = float(self.probe.measure_latency_ms())
            bandwidth = float(self.probe.measure_bandwidth_kbps())
        except (LinkProbeError, OSError, TimeoutError, ValueError) as e:
            self.probe_failures += 1
            logger.warning(f"⚠️  Link probe failed, assuming neutral quality {self.failure_score}: {e}")
            self.last_sample = QualitySample(
                score=self.failure_score,
                probe_failed=True,
                timestamp=time.time()
            )
            return self.failure_score

        score = combine_scores(latency, bandwidth)
        self.last_sample = QualitySample(
            score=score,
            latency_ms=latency,
            bandwidth_kbps=bandwidth,
            timestamp=time.time()
        )
        logger.debug(f"📶 Link quality {score:.2f} (latency {latency:.0f}ms, bandwidth {bandwidth:.0f}kbps)")
        return score
