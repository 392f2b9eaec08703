# tests/test_analysis.py

import numpy as np
import pytest
from core.analysis import (
    crop_window, find_peaks_and_dips, flip_horizontal, lowpass_coefficients,
    process_window, zero_phase_lowpass
)


def test_process_window_normalizes_by_rows():
    window = np.zeros((2, 4, 3), dtype=np.uint8)
    window[:, :, 0] = 255
    window[:, 1, 1] = 255
    spectrum = process_window(window)
    assert spectrum.shape == (3, 4)
    assert spectrum.dtype == np.float32
    assert spectrum[0] == pytest.approx([1 / 3] * 4)
    assert spectrum[1] == pytest.approx([0, 1 / 3, 0, 0])
    assert spectrum[2] == pytest.approx([0] * 4)


def test_process_window_independent_of_height():
    one = process_window(np.full((1, 6, 3), 120, dtype=np.uint8))
    many = process_window(np.full((7, 6, 3), 120, dtype=np.uint8))
    assert np.allclose(one, many)


def test_process_window_zero_rows():
    spectrum = process_window(np.zeros((0, 5, 3), dtype=np.uint8))
    assert spectrum.shape == (3, 5)
    assert not spectrum.any()


def test_process_window_rejects_grayscale():
    with pytest.raises(ValueError):
        process_window(np.zeros((2, 5), dtype=np.uint8))


def test_lowpass_has_unity_dc_gain():
    b, a = lowpass_coefficients(0.5)
    assert a[0] == 1.0
    assert b.sum() / a.sum() == pytest.approx(1.0)
    with pytest.raises(ValueError):
        lowpass_coefficients(1.5)


def test_zero_phase_lowpass_smooths_and_clamps():
    rng = np.random.default_rng(1)
    signal = (0.5 + 0.3 * rng.standard_normal(400)).astype(np.float32)
    out = zero_phase_lowpass(signal, 0.05)
    assert out.shape == signal.shape
    assert out.dtype == np.float32
    assert (out >= 0).all()
    assert np.std(out[50:-50]) < np.std(signal[50:-50]) / 2


def test_zero_phase_lowpass_empty():
    assert zero_phase_lowpass(np.zeros(0, dtype=np.float32), 0.5).size == 0


def test_find_peaks():
    values = np.array([0, 1, 0, 0, 3, 0, 0, 2, 0], dtype=np.float32)
    wavelengths = np.arange(values.size, dtype=float)

    separate = find_peaks_and_dips(values, wavelengths, True, 1, 2.0)
    assert [p.wavelength for p in separate] == [1.0, 4.0, 7.0]

    merged = find_peaks_and_dips(values, wavelengths, True, 1, 8.0)
    assert [(p.wavelength, p.value) for p in merged] == [(4.0, 3.0)]


def test_find_peaks_requires_strict_extremum():
    values = np.array([0, 2, 2, 0], dtype=np.float32)
    assert find_peaks_and_dips(values, np.arange(4.0), True, 1, 1.0) == []


def test_find_peaks_short_input():
    assert find_peaks_and_dips(np.zeros(3), np.arange(3.0), True, 5, 10.0) == []


def test_peaks_and_dips_symmetry():
    rng = np.random.default_rng(7)
    values = rng.random(300).astype(np.float32)
    wavelengths = 400 + np.arange(300) * 0.7
    peaks = find_peaks_and_dips(values, wavelengths, True, 3, 5.0)
    dips = find_peaks_and_dips(-values, wavelengths, False, 3, 5.0)
    assert peaks
    assert [p.wavelength for p in peaks] == [d.wavelength for d in dips]


def test_crop_window_copies():
    frame = np.arange(5 * 6 * 3, dtype=np.uint8).reshape(5, 6, 3)
    window = crop_window(frame, 1, 2, 4, 2)
    assert window.shape == (2, 4, 3)
    assert np.array_equal(window, frame[2:4, 1:5])
    window[:] = 0
    assert frame[2, 1, 0] != 0


def test_crop_window_out_of_bounds():
    frame = np.zeros((5, 6, 3), dtype=np.uint8)
    assert crop_window(frame, 3, 0, 4, 1) is None
    assert crop_window(frame, 0, 5, 1, 1) is None
    assert crop_window(frame, -1, 0, 2, 1) is None


def test_flip_horizontal():
    frame = np.arange(6, dtype=np.uint8).reshape(1, 2, 3)
    flipped = flip_horizontal(frame)
    assert np.array_equal(flipped[0, 0], frame[0, 1])
    assert flipped.flags["C_CONTIGUOUS"]
