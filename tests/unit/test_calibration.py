"""
Unit tests for calibration loading and validation.
"""

import pytest
import sys
import json
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from speedcam.exceptions import ConfigError
from speedcam.velocity.calibration import (
    Calibration, pixels_per_meter_from_points, rect_from_corners
)
from speedcam.velocity.zones import Rect


class TestCalibration:
    """Test Calibration construction"""

    def test_from_dict_camel_case(self):
        calibration = Calibration.from_dict({
            'pixelsPerMeter': 20.0,
            'ignoredAreas': [{'x': 0, 'y': 0, 'w': 100, 'h': 50}],
        })

        assert calibration.pixels_per_meter == 20.0
        assert calibration.ignored_areas == (Rect(0, 0, 100, 50),)

    def test_from_dict_snake_case(self):
        calibration = Calibration.from_dict({'pixels_per_meter': 12})

        assert calibration.pixels_per_meter == 12
        assert calibration.ignored_areas == ()

    @pytest.mark.parametrize("ppm", [0, -1.5, float('nan'), float('inf'), "10", True, None])
    def test_invalid_scale(self, ppm):
        with pytest.raises(ConfigError):
            Calibration(ppm)

    def test_missing_scale(self):
        with pytest.raises(ConfigError):
            Calibration.from_dict({'ignoredAreas': []})

    def test_invalid_area(self):
        with pytest.raises(ConfigError):
            Calibration(10.0, [{'x': 0, 'y': 0}])

    def test_negative_area_size(self):
        with pytest.raises(ConfigError):
            Calibration(10.0, [{'x': 0, 'y': 0, 'w': -5, 'h': 5}])

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            Calibration(0)

    def test_file_round_trip(self, tmp_path):
        """Test save writes what from_file reads"""
        path = tmp_path / "calibration.json"
        Calibration(37.5, [Rect(1, 2, 3, 4)]).save(path)

        data = json.loads(path.read_text())
        loaded = Calibration.from_file(path)

        assert data['pixelsPerMeter'] == 37.5
        assert loaded.pixels_per_meter == 37.5
        assert loaded.ignored_areas == (Rect(1, 2, 3, 4),)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            Calibration.from_file(tmp_path / "absent.json")

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        with pytest.raises(ConfigError):
            Calibration.from_file(path)


class TestCalibrationHelpers:
    """Test helpers used by the calibration tool"""

    def test_pixels_per_meter_from_points(self):
        assert pixels_per_meter_from_points((0, 0), (30, 40), 5.0) == pytest.approx(10.0)

    def test_coincident_points(self):
        with pytest.raises(ConfigError):
            pixels_per_meter_from_points((3, 3), (3, 3), 5.0)

    def test_non_positive_distance(self):
        with pytest.raises(ConfigError):
            pixels_per_meter_from_points((0, 0), (10, 0), 0)

    def test_rect_from_corners_any_order(self):
        assert rect_from_corners(50, 40, 10, 20) == Rect(10, 20, 40, 20)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
