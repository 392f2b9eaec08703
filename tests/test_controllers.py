# tests/test_controllers.py

import socket
import pytest
from app.controllers import Controller
from core.config import CameraControl, GainPresets, Linearize, SpectrometerConfig, SpectrumWindow
from core.constants import StreamState, ThreadId
from core.models import SessionState
from conftest import FakeCamera, wait_until


@pytest.fixture
def config(tmp_path):
    cfg = SpectrometerConfig()
    cfg.image_config.window = SpectrumWindow(offset_x=0, offset_y=0, width=8, height=2)
    cfg.image_config.flip = False
    cfg.import_export_config.path = str(tmp_path / "spectrum.csv")
    return cfg


@pytest.fixture
def make_controller(config):
    created = []

    def make(camera=None):
        ctrl = Controller(config, SessionState(), camera_factory=(camera or FakeCamera()).factory,
                          enable_feed=False)
        created.append(ctrl)
        ctrl.start()
        return ctrl

    yield make
    for ctrl in created:
        ctrl.shutdown()


def tick_until(ctrl, predicate, timeout=3.0):
    def step():
        ctrl.update()
        return predicate()
    return wait_until(step, timeout=timeout)


def test_spectrum_reaches_host(make_controller):
    ctrl = make_controller()
    ctrl.start_stream()
    assert ctrl.state.running
    assert tick_until(ctrl, lambda: ctrl.spectrum_container.spectrum.shape == (4, 8))
    assert ctrl.state.preview_frame is not None
    assert ctrl.state.last_result is not None and ctrl.state.last_result.ok
    assert ctrl.json_queue is None


def test_export_spectrum(make_controller, config, tmp_path):
    ctrl = make_controller()
    ctrl.start_stream()
    assert tick_until(ctrl, lambda: ctrl.spectrum_container.spectrum.shape[1] == 8)
    ctrl.export_spectrum()
    lines = (tmp_path / "spectrum.csv").read_text().splitlines()
    assert lines[0] == "wavelength,r,g,b,sum"
    assert len(lines) == 9


def test_camera_failure_stops_running(make_controller):
    ctrl = make_controller(FakeCamera(fail_open=True))
    ctrl.start_stream()
    assert tick_until(ctrl, lambda: not ctrl.state.running)
    result = ctrl.state.last_result
    assert result.id is ThreadId.CAMERA
    assert result.error == "Could not initialize camera"
    assert any("Could not initialize camera" in line for line in ctrl.state.log)


def test_stop_and_pause(make_controller):
    ctrl = make_controller()
    ctrl.start_stream()
    assert tick_until(ctrl, lambda: ctrl.stream_state is StreamState.STREAMING)
    ctrl.pause_stream()
    assert tick_until(ctrl, lambda: ctrl.stream_state is StreamState.PAUSED)
    ctrl.resume_stream()
    assert tick_until(ctrl, lambda: ctrl.stream_state is StreamState.STREAMING)
    ctrl.stop_stream()
    assert not ctrl.state.running
    assert tick_until(ctrl, lambda: ctrl.stream_state is StreamState.IDLE)


def test_controls_update_config(make_controller, config):
    camera = FakeCamera()
    ctrl = make_controller(camera)
    config.image_config.controls = [CameraControl(10, "Gain", 0.0)]
    ctrl.start_stream()
    assert wait_until(lambda: camera.controls == [(10, 0.0)])
    ctrl.send_controls([(10, 5)])
    assert config.image_config.controls[0].value == 5.0
    assert wait_until(lambda: camera.controls[-1] == (10, 5.0))


def test_malformed_reference_import(make_controller, tmp_path):
    ctrl = make_controller()
    path = tmp_path / "ref.csv"
    path.write_text("nope\n1,2\n")
    ctrl.import_reference(path)
    ctrl.update()
    assert ctrl.state.last_result.id is ThreadId.MAIN
    assert not ctrl.state.last_result.ok
    assert ctrl.config.reference_config.reference is None


def test_reference_import_export(make_controller, tmp_path):
    ctrl = make_controller()
    ctrl.generate_reference(2800)
    ctrl.export_reference(tmp_path / "tungsten.csv")
    ctrl.delete_reference()
    assert ctrl.config.reference_config.reference is None
    ctrl.import_reference(tmp_path / "tungsten.csv")
    assert len(ctrl.config.reference_config.reference) == 1660


def test_calibration_without_reference_reports_error(make_controller):
    ctrl = make_controller()
    ctrl.set_reference_calibration()
    ctrl.update()
    assert not ctrl.state.last_result.ok
    assert ctrl.config.spectrum_calibration.scaling is None


def test_linearize_and_gain_preset(make_controller):
    ctrl = make_controller()
    ctrl.set_linearize(Linearize.SRGB)
    ctrl.set_gain_preset(GainPresets.REC601)
    cal = ctrl.config.spectrum_calibration
    assert cal.linearize is Linearize.SRGB
    assert (cal.gain_r, cal.gain_g, cal.gain_b) == (0.299, 0.587, 0.114)


def test_feed_bind_failure_is_reported(config):
    with socket.create_server(("127.0.0.1", 0)) as taken:
        config.feed_config.host, config.feed_config.port = taken.getsockname()[:2]
        ctrl = Controller(config, SessionState(), camera_factory=FakeCamera().factory, enable_feed=True)
        ctrl.start()
        try:
            assert ctrl.feed_server is None
            ctrl.update()
            assert ctrl.state.last_result.id is ThreadId.MAIN
            assert not ctrl.state.last_result.ok
        finally:
            ctrl.shutdown()


def test_calibration_before_first_spectrum_reports_error(make_controller):
    ctrl = make_controller()
    ctrl.generate_reference(2800)
    ctrl.update()
    ctrl.set_reference_calibration()
    ctrl.update()
    assert ctrl.state.last_result.id is ThreadId.MAIN
    assert ctrl.state.last_result.error == "No spectrum data available"
    assert ctrl.config.spectrum_calibration.scaling is None


def test_generate_reference_rejects_zero_temperature(make_controller):
    ctrl = make_controller()
    ctrl.generate_reference(0)
    ctrl.update()
    assert not ctrl.state.last_result.ok
    assert ctrl.config.reference_config.reference is None


@pytest.mark.parametrize("size, expected", [(500, 100), (0, 1), (25, 25)])
def test_set_buffer_size_clamps(make_controller, size, expected):
    ctrl = make_controller()
    assert ctrl.set_buffer_size(size) == expected
    assert ctrl.config.postprocessing_config.spectrum_buffer_size == expected


@pytest.mark.parametrize("cutoff, expected", [(5.0, 1.0), (0.0, 0.001), (0.25, 0.25)])
def test_set_filter_cutoff_clamps(make_controller, cutoff, expected):
    ctrl = make_controller()
    ctrl.set_filter_active(True)
    assert ctrl.set_filter_cutoff(cutoff) == pytest.approx(expected)
    post = ctrl.config.postprocessing_config
    assert post.spectrum_filter_active
    assert post.spectrum_filter_cutoff == pytest.approx(expected)
