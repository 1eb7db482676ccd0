import pytest

from src.config import AdaptiveVideoConfig
from src.video.profile import EncodingProfile, Resolution
from src.video.adaptation.adaptation_gate import AdaptationGate

BASE = EncodingProfile(1000, 25, Resolution(640, 480))


def profile(bitrate=1000, fps=25, width=640, height=480):
    return EncodingProfile(bitrate, fps, Resolution(width, height))


def test_identical_profiles_not_applied():
    assert AdaptationGate().should_apply(BASE, BASE) is False


def test_changes_within_deadband_not_applied():
    target = profile(bitrate=1200, fps=30, width=740)
    assert AdaptationGate().should_apply(BASE, target) is False


@pytest.mark.parametrize("target", [
    profile(bitrate=1201),
    profile(bitrate=799),
    profile(fps=31),
    profile(fps=19),
    profile(width=741),
    profile(width=320, height=240),
])
def test_any_threshold_exceeded_applies(target):
    assert AdaptationGate().should_apply(BASE, target) is True


def test_height_only_change_ignored():
    assert AdaptationGate().should_apply(BASE, profile(height=720)) is False


def test_thresholds_come_from_config():
    gate = AdaptationGate.from_config(AdaptiveVideoConfig(bitrate_threshold_kbps=50))
    assert gate.should_apply(BASE, profile(bitrate=1100)) is True
    assert AdaptationGate().should_apply(BASE, profile(bitrate=1100)) is False
