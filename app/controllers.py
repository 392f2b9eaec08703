# app/controllers.py

import logging
import queue
from pathlib import Path
from typing import Iterable, Optional, Tuple
from core.config import GainPresets, Linearize, SpectrometerConfig
from core.constants import (
    FILTER_CUTOFF_MIN, FILTER_CUTOFF_MAX, JSON_QUEUE_SIZE, SPECTRUM_BUFFER_SIZE_MIN,
    SPECTRUM_BUFFER_SIZE_MAX, SPECTRUM_QUEUE_SIZE, WINDOW_QUEUE_SIZE, StreamState, ThreadId
)
from core.devices import Camera
from core.models import (
    Config, Controls, Pause, Resume, SessionState, SharedSlot, StartStream, StopStream, ThreadResult
)
from core.repository import load_reference_csv, save_reference_csv
from core.spectrum import SpectrumContainer
from core.tungsten import reference_from_filament_temp
from app.feed_server import FeedServerError, SpectrumFeedServer
from app.threads import CameraThread, SpectrumCalculatorThread

logger = logging.getLogger(__name__)

class Controller:
    """
    Headless host of the pipeline. Owns the queues, the worker threads and the
    spectrum container; update() is meant to be called periodically from one thread.
    """
    def __init__(self, config: SpectrometerConfig, state: Optional[SessionState] = None,
                 camera_factory=Camera, enable_feed: Optional[bool] = None):
        self.config = config
        self.state = state or SessionState()

        self.events: queue.Queue = queue.Queue()
        self.result_queue: queue.Queue = queue.Queue()
        self.frame_slot: SharedSlot = SharedSlot()
        self.window_queue: queue.Queue = queue.Queue(maxsize=WINDOW_QUEUE_SIZE)
        self.spectrum_queue: queue.Queue = queue.Queue(maxsize=SPECTRUM_QUEUE_SIZE)

        self.feed_enabled = config.feed_config.enabled if enable_feed is None else enable_feed
        self.json_queue: Optional[queue.Queue] = queue.Queue(maxsize=JSON_QUEUE_SIZE) if self.feed_enabled else None
        self.feed_server: Optional[SpectrumFeedServer] = None

        self.camera_thread = CameraThread(self.events, self.frame_slot, self.window_queue,
                                          self.result_queue, camera_factory)
        self.calculator_thread = SpectrumCalculatorThread(self.window_queue, self.spectrum_queue)
        self.spectrum_container = SpectrumContainer(self.spectrum_queue, self.json_queue)

    def log(self, text: str):
        self.state.append_log(text)
        logger.info(text)

    def _post_result(self, error: Optional[str] = None):
        self.result_queue.put(ThreadResult(id=ThreadId.MAIN, error=error))

    # ---------------- Lifecycle ----------------

    def start(self):
        self.camera_thread.start()
        self.calculator_thread.start()
        if self.feed_enabled:
            feed = self.config.feed_config
            try:
                self.feed_server = SpectrumFeedServer((feed.host, feed.port), self.json_queue)
            except FeedServerError as e:
                self.log(f"[ERROR] {e}: {e.__cause__}")
                self._post_result(str(e))
            else:
                self.feed_server.start()

    def shutdown(self):
        self.camera_thread.shutdown()
        self.calculator_thread.stop()
        if self.feed_server is not None:
            self.feed_server.stop()
            self.feed_server = None
        self.state.running = False

    # ---------------- Stream control ----------------

    @property
    def stream_state(self) -> StreamState:
        return self.camera_thread.stream_state

    def send_config(self):
        self.events.put(Config(self.config.image_config))

    def send_controls(self, controls: Iterable[Tuple[int, float]]):
        controls = tuple((int(cid), float(value)) for cid, value in controls)
        for cid, value in controls:
            for ctrl in self.config.image_config.controls:
                if ctrl.id == cid:
                    ctrl.value = value
        # frames from before the change are not comparable
        self.spectrum_container.clear_buffer()
        self.events.put(Controls(controls))

    def start_stream(self):
        self.spectrum_container.clear_buffer()
        self.send_config()
        if self.config.image_config.controls:
            self.events.put(Controls(tuple((c.id, c.value) for c in self.config.image_config.controls)))
        self.events.put(StartStream(device=self.config.camera_id, camera_format=self.config.camera_format))
        self.state.running = True
        self.log(f"[INFO] Starting camera {self.config.camera_id}")

    def stop_stream(self):
        self.events.put(StopStream())
        self.state.running = False
        self.log("[INFO] Stopping camera")

    def pause_stream(self):
        self.events.put(Pause())

    def resume_stream(self):
        self.events.put(Resume())

    # ---------------- Calibration / postprocessing ----------------

    def set_linearize(self, mode: Linearize):
        if mode is not self.config.spectrum_calibration.linearize:
            self.config.spectrum_calibration.linearize = mode
            self.spectrum_container.clear_buffer()

    def set_gain_preset(self, preset: GainPresets):
        self.config.spectrum_calibration.set_gain_preset(preset)

    def set_buffer_size(self, size: int) -> int:
        size = int(min(max(size, SPECTRUM_BUFFER_SIZE_MIN), SPECTRUM_BUFFER_SIZE_MAX))
        self.config.postprocessing_config.spectrum_buffer_size = size
        return size

    def set_filter_active(self, active: bool):
        self.config.postprocessing_config.spectrum_filter_active = bool(active)

    def set_filter_cutoff(self, cutoff: float) -> float:
        cutoff = float(min(max(cutoff, FILTER_CUTOFF_MIN), FILTER_CUTOFF_MAX))
        self.config.postprocessing_config.spectrum_filter_cutoff = cutoff
        return cutoff

    def set_reference_calibration(self):
        try:
            self.spectrum_container.set_calibration(self.config.spectrum_calibration,
                                                    self.config.reference_config)
        except ValueError as e:
            self.log(f"[ERROR] Calibration against reference failed: {e}")
            self._post_result(str(e))
            return
        self.log("[INFO] Reference set as calibration")
        self._post_result()

    def delete_reference_calibration(self):
        self.config.spectrum_calibration.scaling = None

    def set_zero_reference(self):
        self.spectrum_container.set_zero_reference()

    def clear_zero_reference(self):
        self.spectrum_container.clear_zero_reference()

    # ---------------- Import / export ----------------

    def _path(self, path) -> Path:
        return Path(path if path is not None else self.config.import_export_config.path)

    def export_spectrum(self, path=None):
        path = self._path(path)
        try:
            out = self.spectrum_container.write_to_csv(path, self.config.spectrum_calibration)
        except OSError as e:
            self.log(f"[ERROR] Could not export spectrum: {e}")
            self._post_result(str(e))
            return
        self.log(f"[INFO] Saved spectrum → {out}")
        self._post_result()

    def import_reference(self, path=None):
        path = self._path(path)
        try:
            self.config.reference_config.set_reference(load_reference_csv(path))
        except (OSError, ValueError) as e:
            self.log(f"[ERROR] Could not import reference: {e}")
            self._post_result(str(e))
            return
        self.log(f"[INFO] Loaded reference → {path}")
        self._post_result()

    def export_reference(self, path=None):
        reference = self.config.reference_config.reference
        if not reference:
            self._post_result("No reference loaded.")
            return
        path = self._path(path)
        try:
            out = save_reference_csv(path, reference)
        except OSError as e:
            self.log(f"[ERROR] Could not export reference: {e}")
            self._post_result(str(e))
            return
        self.log(f"[INFO] Saved reference → {out}")
        self._post_result()

    def delete_reference(self):
        self.config.reference_config.reference = None

    def generate_reference(self, filament_temp: float):
        try:
            reference = reference_from_filament_temp(filament_temp)
        except ValueError as e:
            self.log(f"[ERROR] Could not generate reference: {e}")
            self._post_result(str(e))
            return
        self.config.reference_config.set_reference(reference)
        self.log(f"[INFO] Generated tungsten reference for {filament_temp:.0f} K")
        self._post_result()

    # ---------------- Tick ----------------

    def handle_thread_result(self, result: ThreadResult):
        if result.id is ThreadId.CAMERA and not result.ok and result.fatal:
            self.state.running = False
        if not result.ok:
            self.log(f"[ERROR] {result.id.value}: {result.error}")

    def update(self):
        frame = self.frame_slot.take()
        if frame is not None:
            self.state.preview_frame = frame

        self.spectrum_container.update(self.config)

        try:
            result = self.result_queue.get_nowait()
        except queue.Empty:
            return
        self.handle_thread_result(result)
        self.state.last_result = result
