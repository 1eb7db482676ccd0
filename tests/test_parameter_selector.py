import math

import pytest

from src.video.profile import EncodingProfile, LevelTables, Resolution
from src.video.adaptation.parameter_selector import ParameterSelector, level_index, select_level

BITRATES = [200, 500, 1000, 2000, 5000]


@pytest.fixture
def tables():
    return LevelTables(
        bitrate_levels=tuple(BITRATES),
        fps_levels=(15, 20, 25, 30),
        resolution_levels=(
            Resolution(320, 240),
            Resolution(480, 360),
            Resolution(640, 480),
            Resolution(800, 600),
            Resolution(1280, 720),
        ),
    )


@pytest.mark.parametrize("length", [1, 2, 3, 4, 5, 7])
def test_index_formula_and_monotonic(length):
    scores = [i / 100 for i in range(101)]
    indices = [level_index(s, length) for s in scores]
    for s, index in zip(scores, indices):
        assert index == max(0, min(math.floor(s * length), length - 1))
    assert indices == sorted(indices)


def test_score_zero_selects_lowest():
    assert select_level(0.0, BITRATES) == 200


def test_score_half_selects_middle():
    assert select_level(0.5, BITRATES) == 1000


def test_score_one_clamps_to_top():
    assert select_level(1.0, BITRATES) == 5000


def test_out_of_range_scores_clamp():
    assert select_level(-0.3, BITRATES) == 200
    assert select_level(1.7, BITRATES) == 5000
    assert select_level(float("nan"), BITRATES) == 200


def test_empty_table_rejected():
    with pytest.raises(ValueError):
        level_index(0.5, 0)


def test_tables_indexed_independently(tables):
    profile = ParameterSelector().select(0.5, tables)
    assert profile == EncodingProfile(1000, 25, Resolution(640, 480))

    profile = ParameterSelector().select(0.7, tables)
    # floor(0.7*5)=3 for bitrate/resolution, floor(0.7*4)=2 for fps
    assert profile.bitrate_kbps == 2000
    assert profile.fps == 25
    assert profile.resolution == Resolution(800, 600)


def test_bitrate_clamped_to_bounds(tables):
    selector = ParameterSelector(min_bitrate=400, max_bitrate=1500)
    assert selector.select(0.0, tables).bitrate_kbps == 400
    assert selector.select(1.0, tables).bitrate_kbps == 1500
    assert selector.select(0.5, tables).bitrate_kbps == 1000
