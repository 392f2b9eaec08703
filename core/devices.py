# core/devices.py

import numpy as np
from core.config import CameraFormat

class Camera:
    """
    Thin wrapper around an OpenCV capture device.
    Only the capture thread touches an opened instance.
    """
    def __init__(self, index: int, camera_format: CameraFormat):
        self.index = index
        self.camera_format = camera_format
        self.handle = None

    def open(self):
        """Open the device with exactly the requested format."""
        import cv2
        handle = cv2.VideoCapture(self.index)
        if not handle.isOpened():
            raise RuntimeError(f"open: could not open camera {self.index}")

        fmt = self.camera_format
        handle.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*fmt.fourcc))
        handle.set(cv2.CAP_PROP_FRAME_WIDTH, fmt.width)
        handle.set(cv2.CAP_PROP_FRAME_HEIGHT, fmt.height)
        handle.set(cv2.CAP_PROP_FPS, fmt.frame_rate)

        width = int(handle.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(handle.get(cv2.CAP_PROP_FRAME_HEIGHT))
        if (width, height) != (fmt.width, fmt.height):
            handle.release()
            raise RuntimeError(f"open: camera {self.index} does not support {fmt.width}x{fmt.height} "
                               f"(got {width}x{height})")
        self.handle = handle

    def open_stream(self):
        if self.handle is None:
            raise RuntimeError("open_stream: call open first")
        if not self.handle.grab():
            raise RuntimeError(f"open_stream: camera {self.index} delivers no frames")

    def poll_frame(self) -> np.ndarray:
        """Blocks for up to one frame interval, returns an (h, w, 3) uint8 RGB frame."""
        if self.handle is None:
            raise RuntimeError("poll_frame: camera not open")
        import cv2
        ok, frame = self.handle.read()
        if not ok or frame is None:
            raise RuntimeError(f"poll_frame: no frame from camera {self.index}")
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def set_control(self, control_id: int, value: float):
        if self.handle is None:
            raise RuntimeError("set_control: camera not open")
        if not self.handle.set(int(control_id), float(value)):
            raise RuntimeError(f"set_control: camera {self.index} rejected control {control_id}={value}")

    def close(self):
        if self.handle is not None:
            self.handle.release()
            self.handle = None
