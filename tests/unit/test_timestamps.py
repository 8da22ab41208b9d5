"""
Unit tests for progress mark parsing and frame timestamp correlation.
"""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from speedcam.core.timestamps import TimestampCorrelator, time_string_to_seconds


class TestTimeStringToSeconds:
    """Test decoder time mark conversion"""

    def test_hms_string(self):
        assert time_string_to_seconds("00:01:05.50") == pytest.approx(65.5)

    def test_hours(self):
        assert time_string_to_seconds("01:00:00.00") == pytest.approx(3600.0)

    def test_numbers_pass_through(self):
        assert time_string_to_seconds(12.25) == 12.25
        assert time_string_to_seconds(3) == 3

    def test_numeric_string(self):
        assert time_string_to_seconds("4.5") == pytest.approx(4.5)

    def test_garbage_maps_to_zero(self):
        assert time_string_to_seconds("N/A") == 0.0
        assert time_string_to_seconds("aa:bb:cc") == 0.0


class TestTimestampCorrelator:
    """Test frame index to capture time mapping"""

    def test_uses_progress_marks(self):
        """Test marks are used in arrival order"""
        correlator = TimestampCorrelator(assumed_fps=30.0)
        correlator.add_progress("00:00:00.50")
        correlator.add_progress("00:00:01.00")

        assert correlator.timestamp_for(0) == pytest.approx(0.5)
        assert correlator.timestamp_for(1) == pytest.approx(1.0)
        assert len(correlator) == 2

    def test_falls_back_to_assumed_fps(self):
        """Test frames without a mark get index / fps"""
        correlator = TimestampCorrelator(assumed_fps=25.0)
        correlator.add_progress("00:00:00.10")

        assert correlator.timestamp_for(50) == pytest.approx(2.0)

    def test_reset(self):
        correlator = TimestampCorrelator(assumed_fps=10.0)
        correlator.add_progress(7.0)

        correlator.reset()

        assert len(correlator) == 0
        assert correlator.timestamp_for(0) == 0.0

    def test_invalid_fps(self):
        with pytest.raises(ValueError):
            TimestampCorrelator(assumed_fps=0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
