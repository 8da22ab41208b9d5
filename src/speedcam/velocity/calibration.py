"""
Fixed pixel-to-meter calibration plus exclusion zones.
"""

import json
import math
from pathlib import Path
from typing import Any, Dict, Iterable, Tuple, Union

from ..exceptions import ConfigError
from .zones import Rect


def pixels_per_meter_from_points(point_a: Tuple[float, float],
                                 point_b: Tuple[float, float],
                                 distance_meters: float) -> float:
    """
    Scale from two image points a known road distance apart.

    Raises:
        ConfigError: if the distance is not positive or the points coincide
    """
    if not distance_meters or distance_meters <= 0:
        raise ConfigError("Reference distance must be positive")

    pixels = math.hypot(point_b[0] - point_a[0], point_b[1] - point_a[1])
    if pixels == 0:
        raise ConfigError("Reference points must be distinct")

    return pixels / distance_meters


def rect_from_corners(x1: float, y1: float, x2: float, y2: float) -> Rect:
    """Rectangle spanned by two opposite corners in any order"""
    return Rect(min(x1, x2), min(y1, y2), abs(x2 - x1), abs(y2 - y1))


class Calibration:
    """
    Read-only calibration shared by every pipeline run.
    Safe to share across concurrent runs since nothing mutates it.
    """

    def __init__(self, pixels_per_meter: float, ignored_areas: Iterable[Any] = ()):
        """
        Args:
            pixels_per_meter: Pixel distance that corresponds to one meter on the road
            ignored_areas: Rectangles where detections are suppressed before tracking
        """
        self.pixels_per_meter = pixels_per_meter
        try:
            self.ignored_areas: Tuple[Rect, ...] = tuple(Rect.of(a) for a in ignored_areas)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ConfigError(f"Invalid ignored area: {e}") from e

        self._validate_calibration()

    def _validate_calibration(self):
        """Validate calibration parameters"""
        ppm = self.pixels_per_meter
        if isinstance(ppm, bool) or not isinstance(ppm, (int, float)):
            raise ConfigError("pixelsPerMeter must be a number")
        if not math.isfinite(ppm) or ppm <= 0:
            raise ConfigError("pixelsPerMeter must be a positive finite number")

        for area in self.ignored_areas:
            if area.w < 0 or area.h < 0:
                raise ConfigError(f"Ignored area has negative size: {area}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Calibration':
        """
        Build calibration from a dictionary.

        Accepts both camelCase keys (pixelsPerMeter, ignoredAreas) and
        snake_case keys (pixels_per_meter, ignored_areas).
        """
        if not isinstance(data, dict):
            raise ConfigError("Calibration data must be a mapping")

        if 'pixelsPerMeter' in data:
            ppm = data['pixelsPerMeter']
        elif 'pixels_per_meter' in data:
            ppm = data['pixels_per_meter']
        else:
            raise ConfigError("Calibration is missing pixelsPerMeter")

        areas = data.get('ignoredAreas', data.get('ignored_areas', [])) or []
        return cls(ppm, areas)

    @classmethod
    def from_file(cls, calibration_file: Union[str, Path]) -> 'Calibration':
        """
        Load calibration from JSON file

        Args:
            calibration_file: Path to calibration file

        Returns:
            Calibration instance
        """
        calibration_path = Path(calibration_file)

        if not calibration_path.exists():
            raise ConfigError(f"Calibration file not found: {calibration_path}")

        try:
            with open(calibration_path, 'r') as f:
                calibration_data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Could not read calibration file {calibration_path}: {e}") from e

        return cls.from_dict(calibration_data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pixelsPerMeter': self.pixels_per_meter,
            'ignoredAreas': [area.to_dict() for area in self.ignored_areas],
        }

    def save(self, calibration_file: Union[str, Path]):
        """Write calibration JSON in the camelCase form read by from_file"""
        with open(calibration_file, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def __repr__(self) -> str:
        return (f"Calibration(pixels_per_meter={self.pixels_per_meter}, "
                f"ignored_areas={len(self.ignored_areas)})")
