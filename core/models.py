# core/models.py

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, List, Optional, Tuple, TypeVar, Union
import numpy as np
from core.constants import ThreadId

T = TypeVar("T")

def timestamp_now() -> datetime:
    """Local, timezone-aware wall clock time rounded down to the millisecond."""
    now = datetime.now().astimezone()
    return now.replace(microsecond=now.microsecond // 1000 * 1000)

@dataclass(frozen=True)
class Timestamped:
    """
    Data captured between two timestamps.
    start is at or before the first photon contributing to data, end at or after the last.
    """
    start: datetime
    end: datetime
    data: Any

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError("Timestamped: start must not be after end")

@dataclass(frozen=True)
class ThreadResult:
    id: ThreadId
    error: Optional[str] = None
    fatal: bool = False  # the reporting thread has terminated

    @property
    def ok(self) -> bool:
        return self.error is None

@dataclass(frozen=True)
class SpectrumPoint:
    wavelength: float
    value: float

@dataclass(frozen=True)
class SpectrumExportPoint:
    wavelength: float
    r: float
    g: float
    b: float
    sum: float

# ---------------- Camera events ----------------

@dataclass(frozen=True)
class StartStream:
    device: int
    camera_format: Any  # core.config.CameraFormat

@dataclass(frozen=True)
class StopStream:
    pass

@dataclass(frozen=True)
class Pause:
    pass

@dataclass(frozen=True)
class Resume:
    pass

@dataclass(frozen=True)
class Config:
    image_config: Any  # core.config.ImageConfig

@dataclass(frozen=True)
class Controls:
    controls: Tuple[Tuple[int, float], ...]  # (control_id, value)

CameraEvent = Union[StartStream, StopStream, Pause, Resume, Config, Controls]

class SharedSlot(Generic[T]):
    """
    Single value cell shared between threads.
    put() overwrites whatever is stored, take() returns it and leaves the slot empty.
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._value: Optional[T] = None

    def put(self, value: T):
        with self._lock:
            self._value = value

    def take(self) -> Optional[T]:
        with self._lock:
            value, self._value = self._value, None
        return value

    def is_empty(self) -> bool:
        with self._lock:
            return self._value is None

@dataclass
class SessionState:
    running: bool = False
    last_result: Optional[ThreadResult] = None
    preview_frame: Optional[np.ndarray] = None
    log: List[str] = field(default_factory=list)

    def append_log(self, msg: str):
        self.log.append(msg)
