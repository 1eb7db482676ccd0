import socket

import pytest

from src.video.adaptation.quality_estimator import (
    QualityEstimator,
    StaticLinkProbe,
    TcpConnectProbe,
    combine_scores,
    latency_score,
)
from src.video.video_exceptions import LinkProbeError


class FailingProbe:
    def __init__(self, error):
        self.error = error

    def measure_latency_ms(self):
        raise self.error

    def measure_bandwidth_kbps(self):
        return 1000.0


def test_combined_score():
    assert combine_scores(0, 5000) == pytest.approx(1.0)
    assert combine_scores(100, 2000) == pytest.approx((0.9 + 0.4) / 2)
    assert combine_scores(2000, 0) == pytest.approx(0.0)
    assert combine_scores(500, 10000) == pytest.approx(0.75)


def test_negative_latency_scores_at_most_one():
    assert latency_score(-500) == 1.0
    assert QualityEstimator(StaticLinkProbe(latency_ms=-500, bandwidth_kbps=5000)).measure() == 1.0


def test_default_probe_is_static_stub():
    estimator = QualityEstimator()
    assert estimator.measure() == pytest.approx(0.65)
    assert estimator.last_sample.latency_ms == 100.0
    assert estimator.last_sample.probe_failed is False


@pytest.mark.parametrize("error", [
    TimeoutError("probe timed out"),
    OSError("network unreachable"),
    LinkProbeError("no route"),
])
def test_probe_failure_returns_neutral_score(error, log_messages):
    estimator = QualityEstimator(FailingProbe(error))
    assert estimator.measure() == 0.5
    assert estimator.last_sample.probe_failed is True
    assert estimator.probe_failures == 1
    assert any(m.startswith("WARNING|") for m in log_messages)


def test_failure_score_configurable():
    estimator = QualityEstimator(FailingProbe(OSError()), failure_score=0.2)
    assert estimator.measure() == 0.2


def test_tcp_probe_measures_connect_time():
    server = socket.socket()
    server.bind(("127.0.0.1", 0))
    server.listen(1)
    try:
        probe = TcpConnectProbe("127.0.0.1", server.getsockname()[1], nominal_bandwidth_kbps=5000)
        score = QualityEstimator(probe).measure()
        assert 0.5 < score <= 1.0
    finally:
        server.close()


def test_tcp_probe_unreachable_falls_back():
    placeholder = socket.socket()
    placeholder.bind(("127.0.0.1", 0))
    port = placeholder.getsockname()[1]
    placeholder.close()

    probe = TcpConnectProbe("127.0.0.1", port, timeout=0.5)
    with pytest.raises(LinkProbeError):
        probe.measure_latency_ms()
    assert QualityEstimator(probe).measure() == 0.5


def test_static_probe_values():
    probe = StaticLinkProbe(latency_ms=250, bandwidth_kbps=1000)
    assert QualityEstimator(probe).measure() == pytest.approx((0.75 + 0.2) / 2)
