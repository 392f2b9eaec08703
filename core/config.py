# core/config.py

import json
import logging
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import List, Optional
import numpy as np
from core.constants import (
    DEFAULT_FEED_HOST, DEFAULT_FEED_PORT,
    FILTER_CUTOFF_MIN, FILTER_CUTOFF_MAX,
    SPECTRUM_BUFFER_SIZE_MIN, SPECTRUM_BUFFER_SIZE_MAX
)
from core.models import SpectrumPoint

logger = logging.getLogger(__name__)

class Linearize(Enum):
    """Removal of the camera's transfer curve to approximate linear light."""
    OFF = "Off"
    REC601 = "Rec601"
    REC709 = "Rec709"
    SRGB = "sRGB"

    def linearize(self, value):
        """Works on floats and numpy arrays with values in [0, 1]."""
        if self is Linearize.OFF:
            return value
        v = np.asarray(value, dtype=np.float32)
        if self is Linearize.SRGB:
            out = np.where(v <= 0.04045,
                           v / 12.92,
                           np.power(np.maximum(v + 0.055, 0.0) / 1.055, 2.4))
        else:
            # Rec.601 and Rec.709 share the same transfer function
            out = np.where(v < 0.081,
                           v / 4.5,
                           np.power(np.maximum(v + 0.099, 0.0) / 1.099, 1.0 / 0.45))
        out = out.astype(np.float32)
        return float(out) if out.ndim == 0 else out

class GainPresets(Enum):
    UNITY = "Unity"
    SRGB = "sRGB"
    REC601 = "Rec601"
    REC709 = "Rec709"

    @property
    def gains(self):
        """(r, g, b) luminosity weights"""
        if self is GainPresets.UNITY:
            return 1.0, 1.0, 1.0
        if self is GainPresets.REC601:
            return 0.299, 0.587, 0.114
        return 0.2126, 0.7152, 0.0722

@dataclass
class SpectrumCalibrationPoint:
    wavelength: int
    index: int

@dataclass
class SpectrumCalibration:
    low: SpectrumCalibrationPoint = field(default_factory=lambda: SpectrumCalibrationPoint(436, 261))
    high: SpectrumCalibrationPoint = field(default_factory=lambda: SpectrumCalibrationPoint(546, 486))
    linearize: Linearize = Linearize.OFF
    gain_r: float = 1.0
    gain_g: float = 1.0
    gain_b: float = 1.0
    # One correction factor per column, set by calibrating against a reference
    scaling: Optional[List[float]] = None

    def validate(self):
        if self.high.wavelength <= self.low.wavelength:
            raise ValueError("High calibration wavelength must be above the low one.")
        if self.high.index <= self.low.index:
            raise ValueError("High calibration index must be above the low one.")
        if min(self.gain_r, self.gain_g, self.gain_b) < 0:
            raise ValueError("Channel gains must not be negative.")

    def wavelength_delta(self) -> float:
        return (self.high.wavelength - self.low.wavelength) / (self.high.index - self.low.index)

    def get_wavelength_from_index(self, index) -> float:
        return self.low.wavelength + (index - self.low.index) * self.wavelength_delta()

    def wavelengths(self, ncols: int) -> np.ndarray:
        return self.get_wavelength_from_index(np.arange(ncols, dtype=np.float64))

    def get_scaling_factor_from_index(self, index: int) -> float:
        if self.scaling is None or index >= len(self.scaling):
            return 1.0
        return self.scaling[index]

    def scaling_factors(self, ncols: int) -> np.ndarray:
        return np.array([self.get_scaling_factor_from_index(i) for i in range(ncols)], dtype=np.float32)

    def set_gain_preset(self, preset: GainPresets):
        self.gain_r, self.gain_g, self.gain_b = preset.gains

@dataclass
class ReferenceConfig:
    reference: Optional[List[SpectrumPoint]] = None
    scale: float = 1.0

    def set_reference(self, points: List[SpectrumPoint]):
        if not points:
            raise ValueError("Reference must contain at least one point.")
        self.reference = sorted(points, key=lambda p: p.wavelength)

    def get_value_at_wavelength(self, wavelength: float) -> Optional[float]:
        """
        Piecewise-linear interpolation between the reference points, times scale.
        None outside the wavelength range covered by the reference.
        """
        if not self.reference:
            return None
        wl = np.array([p.wavelength for p in self.reference], dtype=np.float64)
        val = np.array([p.value for p in self.reference], dtype=np.float64)
        if wavelength < wl[0] or wavelength > wl[-1]:
            return None
        return float(np.interp(wavelength, wl, val)) * self.scale

@dataclass
class PostprocessingConfig:
    spectrum_buffer_size: int = 10
    spectrum_filter_active: bool = False
    spectrum_filter_cutoff: float = 0.5

    def clamped(self) -> "PostprocessingConfig":
        return PostprocessingConfig(
            spectrum_buffer_size=int(min(max(self.spectrum_buffer_size, SPECTRUM_BUFFER_SIZE_MIN),
                                         SPECTRUM_BUFFER_SIZE_MAX)),
            spectrum_filter_active=self.spectrum_filter_active,
            spectrum_filter_cutoff=float(min(max(self.spectrum_filter_cutoff, FILTER_CUTOFF_MIN),
                                             FILTER_CUTOFF_MAX)),
        )

@dataclass
class ViewConfig:
    peaks_dips_find_window: int = 10
    peaks_dips_unique_window: float = 20.0

@dataclass
class CameraControl:
    id: int
    name: str
    value: float

@dataclass
class SpectrumWindow:
    offset_x: int = 100
    offset_y: int = 500
    width: int = 1500
    height: int = 1

@dataclass
class ImageConfig:
    controls: List[CameraControl] = field(default_factory=list)
    window: SpectrumWindow = field(default_factory=SpectrumWindow)
    flip: bool = True

@dataclass(frozen=True)
class CameraFormat:
    width: int = 1920
    height: int = 1080
    fourcc: str = "MJPG"
    frame_rate: int = 30

@dataclass
class ImportExportConfig:
    path: str = "spectrum.csv"

@dataclass
class FeedConfig:
    enabled: bool = True
    host: str = DEFAULT_FEED_HOST
    port: int = DEFAULT_FEED_PORT

@dataclass
class SpectrometerConfig:
    camera_id: int = 0
    camera_format: CameraFormat = field(default_factory=CameraFormat)
    image_config: ImageConfig = field(default_factory=ImageConfig)
    spectrum_calibration: SpectrumCalibration = field(default_factory=SpectrumCalibration)
    postprocessing_config: PostprocessingConfig = field(default_factory=PostprocessingConfig)
    view_config: ViewConfig = field(default_factory=ViewConfig)
    reference_config: ReferenceConfig = field(default_factory=ReferenceConfig)
    import_export_config: ImportExportConfig = field(default_factory=ImportExportConfig)
    feed_config: FeedConfig = field(default_factory=FeedConfig)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["spectrum_calibration"]["linearize"] = self.spectrum_calibration.linearize.value
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "SpectrometerConfig":
        cal = dict(d.get("spectrum_calibration", {}))
        calibration = SpectrumCalibration(
            low=SpectrumCalibrationPoint(**cal.pop("low")) if "low" in cal else SpectrumCalibrationPoint(436, 261),
            high=SpectrumCalibrationPoint(**cal.pop("high")) if "high" in cal else SpectrumCalibrationPoint(546, 486),
            linearize=Linearize(cal.pop("linearize", Linearize.OFF.value)),
            **cal
        )
        calibration.validate()

        img = dict(d.get("image_config", {}))
        image_config = ImageConfig(
            controls=[CameraControl(**c) for c in img.pop("controls", [])],
            window=SpectrumWindow(**img.pop("window", {})),
            **img
        )

        ref = dict(d.get("reference_config", {}))
        reference_config = ReferenceConfig(scale=ref.get("scale", 1.0))
        if ref.get("reference"):
            reference_config.set_reference([SpectrumPoint(**p) for p in ref["reference"]])

        return cls(
            camera_id=d.get("camera_id", 0),
            camera_format=CameraFormat(**d.get("camera_format", {})),
            image_config=image_config,
            spectrum_calibration=calibration,
            postprocessing_config=PostprocessingConfig(**d.get("postprocessing_config", {})).clamped(),
            view_config=ViewConfig(**d.get("view_config", {})),
            reference_config=reference_config,
            import_export_config=ImportExportConfig(**d.get("import_export_config", {})),
            feed_config=FeedConfig(**d.get("feed_config", {})),
        )

def load_config(path: Path) -> SpectrometerConfig:
    """Loads the config, falling back to defaults when the file is missing or unusable."""
    path = Path(path)
    if not path.exists():
        return SpectrometerConfig()
    try:
        with path.open("r", encoding="utf-8") as f:
            return SpectrometerConfig.from_dict(json.load(f))
    except (OSError, ValueError, TypeError, KeyError) as e:
        logger.warning("Could not load config from %s, using defaults: %s", path, e)
        return SpectrometerConfig()

def save_config(config: SpectrometerConfig, path: Path):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)
