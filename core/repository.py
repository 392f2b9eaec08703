# core/repository.py

from pathlib import Path
from typing import List
import numpy as np
from core.models import SpectrumExportPoint, SpectrumPoint
from core.constants import SPECTRUM_CSV_HEADER, REFERENCE_CSV_HEADER

def _prepare(path) -> Path:
    path = Path(path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    return path

def save_spectrum_csv(path, points: List[SpectrumExportPoint]) -> Path:
    """One row per spectrum column: wavelength,r,g,b,sum"""
    fpath = _prepare(path)
    arr = np.array([[p.wavelength, p.r, p.g, p.b, p.sum] for p in points], dtype=float).reshape(-1, 5)
    np.savetxt(str(fpath), arr, delimiter=",", header=SPECTRUM_CSV_HEADER, comments="")
    return fpath

def save_reference_csv(path, points: List[SpectrumPoint]) -> Path:
    fpath = _prepare(path)
    arr = np.array([[p.wavelength, p.value] for p in points], dtype=float).reshape(-1, 2)
    np.savetxt(str(fpath), arr, delimiter=",", header=REFERENCE_CSV_HEADER, comments="")
    return fpath

def load_reference_csv(path) -> List[SpectrumPoint]:
    """
    Loads a reference curve with a wavelength,value header line.
    Raises OSError if the file cannot be read and ValueError if it is malformed.
    """
    path = Path(path)
    with path.open("r", encoding="utf-8") as f:
        header = f.readline().strip()
        if header.replace(" ", "").lower() != REFERENCE_CSV_HEADER:
            raise ValueError(f"{path.name}: expected header '{REFERENCE_CSV_HEADER}', got '{header}'")
        data = np.loadtxt(f, delimiter=",", comments="#", ndmin=2)
    if data.size == 0:
        raise ValueError(f"{path.name}: no reference points")
    if data.shape[1] != 2:
        raise ValueError(f"{path.name}: expected 2 columns, got {data.shape[1]}")
    if not np.all(np.isfinite(data)):
        raise ValueError(f"{path.name}: non-finite values")
    return [SpectrumPoint(wavelength=float(w), value=float(v)) for w, v in data]
