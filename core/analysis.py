# core/analysis.py

import math
import numpy as np
from typing import List, Tuple
from numpy.lib.stride_tricks import sliding_window_view
from scipy.signal import lfilter
from core.constants import CHANNEL_MAX, NUM_CHANNELS, FILTER_SAMPLE_RATE_HZ
from core.models import SpectrumPoint

def process_window(window: np.ndarray) -> np.ndarray:
    """
    Reduce an RGB window (rows, columns, 3) to a raw spectrum of shape (3, columns).
    Every column is the sum over all rows divided by rows * 255 * 3, so values stay
    within [0, 1] whatever the window height.
    """
    if window.ndim != 3 or window.shape[2] != NUM_CHANNELS:
        raise ValueError(f"Expected an RGB window, got shape {window.shape}")
    rows, columns = window.shape[0], window.shape[1]
    if rows == 0:
        return np.zeros((NUM_CHANNELS, columns), dtype=np.float32)
    max_value = rows * CHANNEL_MAX * NUM_CHANNELS
    summed = window.sum(axis=0, dtype=np.float64)  # (columns, 3)
    return (summed.T / max_value).astype(np.float32)

def lowpass_coefficients(cutoff_hz: float, sample_rate_hz: float = FILTER_SAMPLE_RATE_HZ) -> Tuple[np.ndarray, np.ndarray]:
    """
    Second order Butterworth low-pass biquad (b, a), normalized so a[0] == 1.
    """
    if cutoff_hz <= 0 or 2.0 * cutoff_hz > sample_rate_hz:
        raise ValueError(f"Cutoff {cutoff_hz} Hz outside (0, {sample_rate_hz / 2}] Hz")
    q = 1.0 / math.sqrt(2.0)
    omega = 2.0 * math.pi * cutoff_hz / sample_rate_hz
    cos_w = math.cos(omega)
    alpha = math.sin(omega) / (2.0 * q)

    a0 = 1.0 + alpha
    b = np.array([(1.0 - cos_w) / 2.0, 1.0 - cos_w, (1.0 - cos_w) / 2.0]) / a0
    a = np.array([1.0, -2.0 * cos_w / a0, (1.0 - alpha) / a0])
    return b, a

def zero_phase_lowpass(channel: np.ndarray, cutoff_hz: float,
                       sample_rate_hz: float = FILTER_SAMPLE_RATE_HZ) -> np.ndarray:
    """
    Run the low-pass forward, then backward over the result to cancel the phase shift.
    The filter state carries over into the backward pass and outputs are clamped to
    zero after each pass.
    """
    if channel.size == 0:
        return channel.copy()
    b, a = lowpass_coefficients(cutoff_hz, sample_rate_hz)
    forward, state = lfilter(b, a, channel.astype(np.float64), zi=np.zeros(2))
    forward = np.maximum(forward, 0.0)
    backward, _ = lfilter(b, a, forward[::-1], zi=state)
    backward = np.maximum(backward, 0.0)
    return backward[::-1].astype(channel.dtype)

def find_peaks_and_dips(values: np.ndarray, wavelengths: np.ndarray, peaks: bool,
                        find_window: int, unique_window: float) -> List[SpectrumPoint]:
    """
    Strict local extrema over a sliding window of 2 * find_window + 1 samples.
    Candidates within +-unique_window / 2 nm of each other are merged, only the
    highest peak (lowest dip) of such a cluster is kept.
    """
    values = np.asarray(values)
    wavelengths = np.asarray(wavelengths, dtype=np.float64)
    size = 2 * find_window + 1
    if values.size < size:
        return []

    win = sliding_window_view(values, size)
    mid = win[:, find_window]
    others = np.delete(win, find_window, axis=1)
    if peaks:
        candidate = (others < mid[:, None]).all(axis=1)
    else:
        candidate = (others > mid[:, None]).all(axis=1)

    idx = np.nonzero(candidate)[0] + find_window
    cand_wl = wavelengths[idx]
    cand_val = values[idx]

    half = unique_window / 2.0
    result = []
    for j, (wl, v) in enumerate(zip(cand_wl, cand_val)):
        near = (cand_wl > wl - half) & (cand_wl < wl + half)
        near[j] = True
        best = cand_val[near].max() if peaks else cand_val[near].min()
        if v == best:
            result.append(SpectrumPoint(wavelength=float(wl), value=float(v)))
    return result

def flip_horizontal(frame: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(frame[:, ::-1])

def crop_window(frame: np.ndarray, offset_x: int, offset_y: int, width: int, height: int):
    """
    Copy of the (width x height) rectangle at (offset_x, offset_y).
    None if the rectangle does not fit inside the frame.
    """
    frame_h, frame_w = frame.shape[0], frame.shape[1]
    if offset_x < 0 or offset_y < 0 or width <= 0 or height <= 0:
        return None
    if offset_x + width > frame_w or offset_y + height > frame_h:
        return None
    return frame[offset_y:offset_y + height, offset_x:offset_x + width].copy()
