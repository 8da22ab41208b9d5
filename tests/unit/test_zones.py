"""
Unit tests for rectangles and the ignored-area filter.
"""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from speedcam.models.detector import Detection
from speedcam.velocity.zones import DetectionZoneFilter, Rect, center_in_area


class TestRect:
    """Test Rect helpers"""

    def test_of_accepts_dicts_and_objects(self):
        det = Detection(x=1, y=2, w=3, h=4, confidence=90.0, class_name='car')

        assert Rect.of({'x': 1, 'y': 2, 'w': 3, 'h': 4}) == Rect(1, 2, 3, 4)
        assert Rect.of(det) == Rect(1, 2, 3, 4)

    def test_center_and_corners(self):
        rect = Rect(10, 20, 30, 40)

        assert rect.center == (25, 40)
        assert rect.to_xyxy() == (10, 20, 40, 60)

    def test_contains_point_edges_inclusive(self):
        rect = Rect(0, 0, 10, 10)

        assert rect.contains_point(0, 0)
        assert rect.contains_point(10, 10)
        assert not rect.contains_point(10.1, 5)

    def test_intersects(self):
        rect = Rect(0, 0, 10, 10)

        assert rect.intersects(Rect(5, 5, 10, 10))
        assert not rect.intersects(Rect(10, 0, 5, 5))
        assert not rect.intersects(Rect(20, 20, 5, 5))


class TestDetectionZoneFilter:
    """Test detection suppression inside ignored areas"""

    def test_center_inside_area_is_removed(self):
        zone_filter = DetectionZoneFilter([Rect(0, 0, 100, 50)])
        inside = Detection(x=40, y=10, w=20, h=20, confidence=90.0, class_name='car')
        outside = Detection(x=40, y=80, w=20, h=20, confidence=90.0, class_name='car')

        assert zone_filter.filter([inside, outside]) == [outside]

    def test_partial_overlap_with_center_outside_is_kept(self):
        zone_filter = DetectionZoneFilter([Rect(0, 0, 100, 50)])
        straddling = Detection(x=40, y=45, w=20, h=20, confidence=90.0, class_name='car')

        assert not zone_filter.is_ignored(straddling)

    def test_no_areas_keeps_everything(self):
        detections = [Detection(x=0, y=0, w=5, h=5, confidence=50.0, class_name='bus')]

        assert DetectionZoneFilter([]).filter(detections) == detections

    def test_custom_zone_test(self):
        zone_filter = DetectionZoneFilter([Rect(0, 0, 100, 50)],
                                          zone_test=lambda box, area: box.intersects(area))
        straddling = Detection(x=40, y=45, w=20, h=20, confidence=90.0, class_name='car')

        assert zone_filter.is_ignored(straddling)

    def test_center_in_area(self):
        assert center_in_area(Rect(0, 0, 10, 10), Rect(4, 4, 2, 2))
        assert not center_in_area(Rect(0, 0, 10, 10), Rect(6, 6, 2, 2))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
