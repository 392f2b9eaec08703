# app/threads.py

import logging
import queue
import threading
from typing import Callable, Optional
from PyQt5.QtCore import QThread
from core.analysis import crop_window, flip_horizontal, process_window
from core.config import CameraFormat, ImageConfig
from core.constants import StreamState, ThreadId
from core.devices import Camera
from core.models import (
    CameraEvent, Config, Controls, Pause, Resume, SharedSlot, StartStream, StopStream,
    ThreadResult, Timestamped, timestamp_now
)

logger = logging.getLogger(__name__)

class CaptureThread(QThread):
    """
    Owns the camera for the lifetime of one stream.
    Puts timestamped windows on window_queue (dropping them when it is full) and the
    full frames into frame_slot for preview.
    """
    def __init__(self, camera, frame_slot: SharedSlot, window_queue: queue.Queue,
                 result_queue: queue.Queue, config_slot: SharedSlot, controls_slot: SharedSlot,
                 parent=None):
        super().__init__(parent)
        self.camera = camera
        self.frame_slot = frame_slot
        self.window_queue = window_queue
        self.result_queue = result_queue
        self.config_slot = config_slot
        self.controls_slot = controls_slot
        self.dropped_windows = 0
        self.frame_count = 0
        self._pause_cond = threading.Condition()
        self._paused = False
        self._exit = threading.Event()
        self._state_lock = threading.Lock()
        self._state = StreamState.STARTING

    @property
    def state(self) -> StreamState:
        with self._state_lock:
            state = self._state
        if state is StreamState.STREAMING and self.is_paused():
            return StreamState.PAUSED
        return state

    def _set_state(self, state: StreamState):
        with self._state_lock:
            self._state = state

    def is_paused(self) -> bool:
        with self._pause_cond:
            return self._paused

    def pause(self):
        with self._pause_cond:
            self._paused = True

    def resume(self):
        with self._pause_cond:
            self._paused = False
            self._pause_cond.notify_all()

    def request_exit(self):
        self._exit.set()

    def _wait_while_paused(self):
        with self._pause_cond:
            while self._paused:
                self._pause_cond.wait()

    def _report(self, error: Optional[str] = None, fatal: bool = False):
        self.result_queue.put(ThreadResult(id=ThreadId.CAMERA, error=error, fatal=fatal))

    def run(self):
        try:
            self._stream()
        except Exception as e:
            logger.exception("Capture thread failed")
            self._report(f"Camera failure: {e}", fatal=True)
        finally:
            try:
                self.camera.close()
            except Exception as e_close:
                logger.error("Error closing camera: %s", e_close)
            self._set_state(StreamState.STOPPED)
            logger.debug("Capture thread exiting")

    def _stream(self):
        try:
            self.camera.open()
        except Exception as e:
            logger.error("Could not initialize camera: %s", e)
            self._report("Could not initialize camera", fatal=True)
            return
        try:
            self.camera.open_stream()
        except Exception as e:
            logger.error("Could not open stream: %s", e)
            self._report("Could not open stream", fatal=True)
            return

        self._report()
        self._set_state(StreamState.STREAMING)

        image_config: Optional[ImageConfig] = None
        window_error_reported = False
        previous_frame_timestamp = timestamp_now()

        while True:
            self._wait_while_paused()
            if self._exit.is_set():
                return

            cfg = self.config_slot.take()
            if cfg is not None:
                image_config = cfg
                window_error_reported = False
            controls = self.controls_slot.take()
            if controls is not None:
                self._apply_controls(controls)

            try:
                frame = self.camera.poll_frame()
            except Exception as e:
                logger.error("Could not poll for frame: %s", e)
                self._report("Could not poll for frame", fatal=True)
                return

            # end: after the last photon of this frame hit the sensor,
            # start: most likely before the first one did
            frame_end = timestamp_now()
            frame_start = min(previous_frame_timestamp, frame_end)
            previous_frame_timestamp = frame_end
            self.frame_count += 1

            if image_config is not None:
                if image_config.flip:
                    frame = flip_horizontal(frame)
                w = image_config.window
                window = crop_window(frame, w.offset_x, w.offset_y, w.width, w.height)
                if window is None:
                    if not window_error_reported:
                        self._report(f"Spectrum window {w.width}x{w.height}+{w.offset_x}+{w.offset_y} "
                                     f"exceeds frame {frame.shape[1]}x{frame.shape[0]}")
                        window_error_reported = True
                else:
                    self._publish_window(Timestamped(start=frame_start, end=frame_end, data=window))

            self.frame_slot.put(frame)

    def _apply_controls(self, controls):
        for control_id, value in controls:
            try:
                self.camera.set_control(control_id, value)
            except Exception as e:
                logger.error("Could not set camera control %s=%s: %s", control_id, value, e)

    def _publish_window(self, timed_window: Timestamped):
        try:
            self.window_queue.put_nowait(timed_window)
        except queue.Full:
            self.dropped_windows += 1
            logger.warning("Spectrum calculation falling behind, dropped window (%d so far)",
                           self.dropped_windows)

class CameraThread(QThread):
    """
    Executes CameraEvents from the control queue in order.
    Spawns one CaptureThread per stream and joins it on StopStream.
    A None on the control queue ends the thread.
    """
    def __init__(self, events: queue.Queue, frame_slot: SharedSlot, window_queue: queue.Queue,
                 result_queue: queue.Queue,
                 camera_factory: Callable[[int, CameraFormat], object] = Camera, parent=None):
        super().__init__(parent)
        self.events = events
        self.frame_slot = frame_slot
        self.window_queue = window_queue
        self.result_queue = result_queue
        self.camera_factory = camera_factory
        self._config_slot: SharedSlot = SharedSlot()
        self._controls_slot: SharedSlot = SharedSlot()
        self._capture: Optional[CaptureThread] = None

    @property
    def capture(self) -> Optional[CaptureThread]:
        return self._capture

    @property
    def stream_state(self) -> StreamState:
        capture = self._capture
        if capture is None:
            return StreamState.IDLE
        state = capture.state
        if state is StreamState.STOPPED:
            return StreamState.IDLE
        return state

    def shutdown(self):
        self.events.put(None)
        self.wait()

    def run(self):
        while True:
            event = self.events.get()
            if event is None:
                break
            try:
                self.handle_event(event)
            except Exception:
                logger.exception("Failed to handle camera event %r", event)
        self._stop_stream()
        logger.debug("Camera thread exiting")

    def handle_event(self, event: CameraEvent):
        if isinstance(event, StartStream):
            self._start_stream(event)
        elif isinstance(event, StopStream):
            self._stop_stream()
        elif isinstance(event, Pause):
            if self._capture is not None:
                self._capture.pause()
        elif isinstance(event, Resume):
            if self._capture is not None:
                self._capture.resume()
        elif isinstance(event, Config):
            self._config_slot.put(event.image_config)
        elif isinstance(event, Controls):
            self._controls_slot.put(tuple(event.controls))
        else:
            raise TypeError(f"Unknown camera event: {event!r}")

    def _start_stream(self, event: StartStream):
        if self._capture is not None:
            if self._capture.isRunning():
                logger.warning("StartStream ignored, a stream is already running")
                return
            # previous stream ended on its own
            self._capture.wait()
            self._capture = None

        camera = self.camera_factory(event.device, event.camera_format)
        self._capture = CaptureThread(
            camera, self.frame_slot, self.window_queue, self.result_queue,
            self._config_slot, self._controls_slot
        )
        self._capture.start()

    def _stop_stream(self):
        capture, self._capture = self._capture, None
        if capture is None:
            return
        # a paused loop never reaches the exit check
        capture.resume()
        capture.request_exit()
        capture.wait()

class SpectrumCalculatorThread(QThread):
    """
    Reduces windows from window_queue to raw spectra on spectrum_queue.
    A None on window_queue closes the channel and ends the thread.
    """
    def __init__(self, window_queue: queue.Queue, spectrum_queue: queue.Queue, parent=None):
        super().__init__(parent)
        self.window_queue = window_queue
        self.spectrum_queue = spectrum_queue
        self.dropped_spectra = 0

    def stop(self):
        if self.isRunning():
            self.window_queue.put(None)
            self.wait()

    def run(self):
        while True:
            timed_window = self.window_queue.get()
            if timed_window is None:
                break
            try:
                spectrum = process_window(timed_window.data)
            except Exception as e:
                logger.error("Could not process window: %s", e)
                continue
            timed_spectrum = Timestamped(start=timed_window.start, end=timed_window.end, data=spectrum)
            try:
                self.spectrum_queue.put_nowait(timed_spectrum)
            except queue.Full:
                self.dropped_spectra += 1
                logger.debug("Spectrum queue full, dropped spectrum (%d so far)", self.dropped_spectra)
        logger.debug("SpectrumCalculator thread exiting")
