# core/tungsten.py

from typing import List, Optional
import numpy as np
import scipy.constants as const
from core.constants import TUNGSTEN_WAVELENGTH_START, TUNGSTEN_WAVELENGTH_STOP
from core.models import SpectrumPoint

T0 = 2.200  # kK

# (upper wavelength nm, l0, a0, a1, b0, b1, b2, c0, c1), Larrabee-type emissivity fit
# From: https://doi.org/10.1364/AO.23.000975
_EMISSIVITY_BANDS = (
    (420.0, 0.380, 0.47245, -0.0155, -0.0086, -0.0229, 0.0, -2.86, 0.0),
    (480.0, 0.450, 0.46361, -0.0172, -0.1304, 0.0, 0.0, 0.52, 0.0),
    (580.0, 0.530, 0.45549, -0.0173, -0.1150, 0.0, 0.0, -0.5, 0.0),
    (640.0, 0.610, 0.44297, -0.0177, -0.1482, 0.0, 0.0, 0.723, 0.0),
    (760.0, 0.700, 0.43151, -0.0207, -0.1441, -0.0551, 0.0, -0.278, -0.190),
    (940.0, 0.850, 0.40610, -0.0259, -0.1889, 0.0087, 0.0290, -0.126, 0.246),
    (1600.0, 1.270, 0.32835, 0.0, -0.1686, 0.0737, 0.0, 0.046, 0.016),
)
_LAST_BAND = (2600.0, 2.100, 0.22631, 0.0431, -0.0829, 0.0241, 0.0, 0.04, -0.026)

def emissivity(wavelength: float, filament_temp: float) -> Optional[float]:
    """Tungsten emissivity at wavelength (nm) and temperature (K), None outside 340-2600 nm."""
    if wavelength < 340.0 or wavelength > _LAST_BAND[0]:
        return None
    band = next((b for b in _EMISSIVITY_BANDS if wavelength < b[0]), _LAST_BAND)
    _, l0, a0, a1, b0, b1, b2, c0, c1 = band
    dt = filament_temp / 1000.0 - T0
    dl = wavelength / 1000.0 - l0
    return a0 + a1 * dt + (b0 + b1 * dt + b2 * dt ** 2) * dl + (c0 + c1 * dt) * dl ** 2

def spectral_irradiance(wavelength: float, filament_temp: float) -> Optional[float]:
    """
    Emissivity weighted Planck radiance.
    From: https://doi.org/10.1364/AO.49.000880
    """
    e = emissivity(wavelength, filament_temp)
    if e is None:
        return None
    h, c, k = const.h, const.c, const.k
    wavelength_m = wavelength * 1e-9
    return e * 2.0 * h * c ** 2 / (wavelength_m ** 5 * np.expm1(h * c / (wavelength_m * k * filament_temp)))

def reference_from_filament_temp(filament_temp: float) -> List[SpectrumPoint]:
    """
    Reference curve of a tungsten halogen lamp in 1 nm steps, normalized to a maximum of 1.
    Raises ValueError for temperatures that give no usable curve.
    """
    if not filament_temp > 0:
        raise ValueError(f"Filament temperature must be positive, got {filament_temp} K")
    wavelengths = range(TUNGSTEN_WAVELENGTH_START, TUNGSTEN_WAVELENGTH_STOP)
    with np.errstate(over="ignore"):
        values = np.array([spectral_irradiance(float(w), float(filament_temp)) for w in wavelengths])
    peak = values.max()
    if not np.isfinite(peak) or peak <= 0:
        raise ValueError(f"Filament temperature {filament_temp} K is too low for a reference curve")
    values = values / peak
    return [SpectrumPoint(wavelength=float(w), value=float(v)) for w, v in zip(wavelengths, values)]
