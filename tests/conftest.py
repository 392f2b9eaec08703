# tests/conftest.py

import threading
import time
import numpy as np
import pytest
from PyQt5.QtCore import QCoreApplication


@pytest.fixture(scope="session", autouse=True)
def qt_app():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


def wait_until(predicate, timeout=3.0, interval=0.005):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FakeCamera:
    """
    Stands in for core.devices.Camera. Every polled frame is filled with the poll
    count (mod 256) so windows can be told apart.
    """
    def __init__(self, height=4, width=8, fail_open=False, fail_stream=False,
                 fail_after=None, fail_controls=()):
        self.height = height
        self.width = width
        self.fail_open = fail_open
        self.fail_stream = fail_stream
        self.fail_after = fail_after
        self.fail_controls = set(fail_controls)
        self.polls = 0
        self.controls = []
        self.opened = False
        self.closed = False
        self._lock = threading.Lock()

    def open(self):
        if self.fail_open:
            raise RuntimeError("no such camera")
        self.opened = True

    def open_stream(self):
        if self.fail_stream:
            raise RuntimeError("stream refused")

    def poll_frame(self):
        time.sleep(0.002)
        with self._lock:
            self.polls += 1
            n = self.polls
        if self.fail_after is not None and n > self.fail_after:
            raise RuntimeError("camera unplugged")
        return np.full((self.height, self.width, 3), n % 256, dtype=np.uint8)

    def set_control(self, control_id, value):
        if control_id in self.fail_controls:
            raise RuntimeError(f"control {control_id} not supported")
        self.controls.append((control_id, value))

    def close(self):
        self.closed = True

    def factory(self, device, camera_format):
        return self
