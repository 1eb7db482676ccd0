import os

import pytest
from fastapi import HTTPException

from conftest import CollectingSink, FakeEstimator, FakeSupervisor, missing_encoder
from src.config import AdaptiveVideoConfig, AppConfig
from src.video.adaptive_controller import AdaptiveVideoController
from src.video.encoder_supervisor import EncoderSupervisor
from src.video.status_publisher import LatestValueSink, StatusPublisher
from src.video.video_api import VideoAPI


def make_app_config():
    return AppConfig(
        api_key="test-key-123456",
        input_device="/dev/video0",
        output_path="/tmp/test-output.h264",
        autostart=False,
        host="127.0.0.1",
        port=8003,
        debug=False,
        video=AdaptiveVideoConfig(adaptation_interval_ms=60_000)
    )


@pytest.fixture
def opened_sinks():
    return []


@pytest.fixture
def api(opened_sinks):
    config = make_app_config()
    events = LatestValueSink()
    supervisor = FakeSupervisor()
    controller = AdaptiveVideoController(
        config.video,
        estimator=FakeEstimator(0.0),
        publisher=StatusPublisher(events),
        supervisor=supervisor
    )

    def opener(path):
        sink = CollectingSink()
        opened_sinks.append((path, sink))
        return sink

    video_api = VideoAPI(config, sink_opener=opener)
    video_api.set_component_references(controller=controller, events=events)
    yield video_api
    controller.stop()


def test_missing_controller_is_unavailable():
    video_api = VideoAPI(make_app_config())
    with pytest.raises(HTTPException) as excinfo:
        video_api.get_status()
    assert excinfo.value.status_code == 503


def test_start_and_stop(api, opened_sinks):
    result = api.start()
    assert result["success"] is True
    assert result["status"]["is_running"] is True
    assert opened_sinks[0][0] == "/tmp/test-output.h264"

    status = api.get_status()
    assert status["is_running"] is True
    assert "timestamp" in status

    result = api.stop()
    assert result["status"]["is_running"] is False
    assert opened_sinks[0][1].closed is True


def test_start_twice_conflicts(api, opened_sinks):
    api.start("/dev/video1")
    with pytest.raises(HTTPException) as excinfo:
        api.start()
    assert excinfo.value.status_code == 409
    assert len(opened_sinks) == 1
    assert opened_sinks[0][1].closed is False


def test_start_twice_keeps_live_output(tmp_path):
    output = tmp_path / "out.h264"
    config = make_app_config()
    config.output_path = str(output)
    controller = AdaptiveVideoController(
        config.video,
        estimator=FakeEstimator(0.0),
        supervisor=FakeSupervisor()
    )
    video_api = VideoAPI(config)
    video_api.set_component_references(controller=controller)

    video_api.start()
    try:
        video_api.output_sink.write(b"x" * 1000)
        with pytest.raises(HTTPException) as excinfo:
            video_api.start()
        assert excinfo.value.status_code == 409
        assert os.path.getsize(output) == 1000
    finally:
        video_api.stop()


def test_spawn_failure_is_server_error(opened_sinks):
    config = make_app_config()
    controller = AdaptiveVideoController(
        config.video,
        supervisor=EncoderSupervisor(config.video, command_builder=missing_encoder)
    )
    video_api = VideoAPI(config, sink_opener=lambda path: opened_sinks.append(path) or CollectingSink())
    video_api.set_component_references(controller=controller)

    with pytest.raises(HTTPException) as excinfo:
        video_api.start()
    assert excinfo.value.status_code == 500
    assert controller.get_status()["is_running"] is False


def test_update_config(api):
    result = api.update_config({"adaptationIntervalMs": 10_000})
    assert result["config"]["adaptation_interval_ms"] == 10_000

    with pytest.raises(HTTPException) as excinfo:
        api.update_config({"qualityLevels": []})
    assert excinfo.value.status_code == 400

    with pytest.raises(HTTPException) as excinfo:
        api.update_config({})
    assert excinfo.value.status_code == 400


def test_events_after_adaptation(api):
    api.start()
    api.controller.tick()
    assert api.controller.publisher.flush()

    events = api.get_events("video-adaptation")["events"]
    assert events["payload"]["bitrate"] == 200
    assert api.get_encoding_params()["keyframe_interval"] == 30
