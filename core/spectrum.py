# core/spectrum.py

import json
import logging
import queue
from collections import deque
from dataclasses import replace
from typing import Deque, List, Optional
import numpy as np
from core.analysis import find_peaks_and_dips, zero_phase_lowpass
from core.config import (
    Linearize, ReferenceConfig, SpectrometerConfig, SpectrumCalibration
)
from core.constants import (
    FILTER_CUTOFF_MIN, FILTER_CUTOFF_MAX, SPECTRUM_BUFFER_SIZE_MIN, SPECTRUM_BUFFER_SIZE_MAX,
    TIMESTAMP_TIMESPEC
)
from core.models import SpectrumExportPoint, SpectrumPoint, Timestamped
from core.repository import save_spectrum_csv

logger = logging.getLogger(__name__)

class SpectrumContainer:
    """
    Turns raw (3, N) spectra into the (4, N) R, G, B, Sum spectrum.
    Not thread safe: only the host thread calls into it.
    """
    def __init__(self, spectrum_queue: "queue.Queue[Timestamped]",
                 json_queue: Optional["queue.Queue[str]"] = None):
        self.spectrum = np.zeros((4, 0), dtype=np.float32)
        self.spectrum_buffer: Deque[Timestamped] = deque()
        self.zero_reference: Optional[np.ndarray] = None
        self.spectrum_queue = spectrum_queue
        self.json_queue = json_queue

    @property
    def buffer_len(self) -> int:
        return len(self.spectrum_buffer)

    def clear_buffer(self):
        self.spectrum_buffer.clear()

    def update(self, config: SpectrometerConfig):
        """Process every queued raw spectrum in arrival order."""
        while True:
            try:
                timed_spectrum = self.spectrum_queue.get_nowait()
            except queue.Empty:
                break
            if timed_spectrum is None:
                continue
            self.update_spectrum(timed_spectrum, config)

            if self.json_queue is None:
                continue
            try:
                payload = self.to_json_with_timestamps(config.spectrum_calibration)
            except (ValueError, TypeError) as e:
                logger.error("Failed to serialize JSON spectrum: %s", e)
                continue
            try:
                self.json_queue.put_nowait(payload)
            except queue.Full:
                pass

    def update_spectrum(self, timed_spectrum: Timestamped, config: SpectrometerConfig):
        calibration = config.spectrum_calibration
        post = config.postprocessing_config
        raw = np.asarray(timed_spectrum.data, dtype=np.float32)
        ncols = raw.shape[1]

        # Buffer and zero reference are meaningless after a resolution change
        if self.spectrum_buffer and self.spectrum_buffer[0].data.shape[1] != ncols:
            logger.debug("Spectrum width changed to %d, clearing buffer", ncols)
            self.spectrum_buffer.clear()
            self.zero_reference = None

        if calibration.linearize is not Linearize.OFF:
            raw = calibration.linearize.linearize(raw)

        self.spectrum_buffer.appendleft(replace(timed_spectrum, data=raw))
        buffer_size = min(max(post.spectrum_buffer_size, SPECTRUM_BUFFER_SIZE_MIN), SPECTRUM_BUFFER_SIZE_MAX)
        while len(self.spectrum_buffer) > buffer_size:
            self.spectrum_buffer.pop()

        combined = np.mean([s.data for s in self.spectrum_buffer], axis=0).astype(np.float32)

        combined[0] *= calibration.gain_r
        combined[1] *= calibration.gain_g
        combined[2] *= calibration.gain_b

        total = combined.sum(axis=0)
        if calibration.scaling is not None:
            total = total * calibration.scaling_factors(ncols)
        current = np.vstack([combined, total / 3.0]).astype(np.float32)

        if post.spectrum_filter_active:
            cutoff = min(max(post.spectrum_filter_cutoff, FILTER_CUTOFF_MIN), FILTER_CUTOFF_MAX)
            for row in range(current.shape[0]):
                current[row] = zero_phase_lowpass(current[row], cutoff)

        if self.zero_reference is not None:
            if self.zero_reference.shape == current.shape:
                current = current - self.zero_reference
            else:
                self.zero_reference = None

        self.spectrum = current

    def spectrum_to_peaks_and_dips(self, peaks: bool, config: SpectrometerConfig) -> List[SpectrumPoint]:
        sums = self.spectrum[3]
        return find_peaks_and_dips(
            sums,
            config.spectrum_calibration.wavelengths(sums.size),
            peaks,
            config.view_config.peaks_dips_find_window,
            config.view_config.peaks_dips_unique_window,
        )

    def get_spectrum_channel(self, channel_index: int, config: SpectrometerConfig) -> List[SpectrumPoint]:
        row = self.spectrum[channel_index]
        wavelengths = config.spectrum_calibration.wavelengths(row.size)
        return [SpectrumPoint(wavelength=float(w), value=float(v)) for w, v in zip(wavelengths, row)]

    def set_calibration(self, calibration: SpectrumCalibration, reference_config: ReferenceConfig):
        """
        Update the scaling factors in calibration so the current spectrum matches the
        reference. Columns with a zero sum keep a factor of 1.
        """
        if not reference_config.reference:
            raise ValueError("No reference loaded.")
        if self.spectrum.shape[1] == 0:
            raise ValueError("No spectrum data available")
        sums = self.spectrum[3].astype(np.float64)
        ref_values = np.empty_like(sums)
        for i in range(sums.size):
            wavelength = calibration.get_wavelength_from_index(i)
            ref_value = reference_config.get_value_at_wavelength(wavelength)
            if ref_value is None:
                raise ValueError(f"Reference does not cover {wavelength:.1f} nm.")
            ref_values[i] = ref_value
        with np.errstate(divide="ignore", invalid="ignore"):
            scaling = np.where(sums != 0, ref_values / sums, 1.0)
        calibration.scaling = [float(v) for v in scaling]

    def has_zero_reference(self) -> bool:
        return self.zero_reference is not None

    def set_zero_reference(self):
        self.zero_reference = self.spectrum.copy()

    def clear_zero_reference(self):
        self.zero_reference = None

    def spectrum_to_point_vec(self, calibration: SpectrumCalibration) -> List[SpectrumExportPoint]:
        wavelengths = calibration.wavelengths(self.spectrum.shape[1])
        return [
            SpectrumExportPoint(wavelength=float(w), r=float(c[0]), g=float(c[1]), b=float(c[2]), sum=float(c[3]))
            for w, c in zip(wavelengths, self.spectrum.T)
        ]

    def write_to_csv(self, path, calibration: SpectrumCalibration):
        return save_spectrum_csv(path, self.spectrum_to_point_vec(calibration))

    def to_json_with_timestamps(self, calibration: SpectrumCalibration) -> str:
        """
        The spectrum as JSON. start/end span all camera frames in the averaging
        buffer: start of the oldest one, end of the newest one.
        """
        if not self.spectrum_buffer:
            raise ValueError("No spectrum data available")
        start = self.spectrum_buffer[-1].start
        end = self.spectrum_buffer[0].end
        return json.dumps({
            "start": start.isoformat(timespec=TIMESTAMP_TIMESPEC),
            "end": end.isoformat(timespec=TIMESTAMP_TIMESPEC),
            "spectrum": [
                {"wavelength": p.wavelength, "value": p.sum}
                for p in self.spectrum_to_point_vec(calibration)
            ],
        })

    def get_spectrum_max_value(self) -> Optional[float]:
        if self.spectrum.size == 0:
            return None
        return float(self.spectrum.max())
