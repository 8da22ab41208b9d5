"""
Rectangles and the exclusion-zone filter applied before tracking.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Sequence, Tuple


@dataclass(frozen=True)
class Rect:
    """
    Axis-aligned pixel rectangle in [x, y, w, h] form
    """
    x: float
    y: float
    w: float
    h: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Rect':
        return cls(float(data['x']), float(data['y']), float(data['w']), float(data['h']))

    @classmethod
    def of(cls, obj: Any) -> 'Rect':
        """Build a Rect from anything exposing x, y, w, h"""
        if isinstance(obj, Rect):
            return obj
        if isinstance(obj, dict):
            return cls.from_dict(obj)
        return cls(float(obj.x), float(obj.y), float(obj.w), float(obj.h))

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.w / 2, self.y + self.h / 2)

    def to_xyxy(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.x + self.w, self.y + self.h)

    def contains_point(self, px: float, py: float) -> bool:
        return self.x <= px <= self.x + self.w and self.y <= py <= self.y + self.h

    def intersects(self, other: 'Rect') -> bool:
        return (self.x < other.x + other.w and other.x < self.x + self.w and
                self.y < other.y + other.h and other.y < self.y + self.h)

    def to_dict(self) -> Dict[str, float]:
        return {'x': self.x, 'y': self.y, 'w': self.w, 'h': self.h}


IgnoredArea = Rect


def center_in_area(box: Rect, area: Rect) -> bool:
    """Default zone test: the box center lies inside the area, edges inclusive"""
    cx, cy = box.center
    return area.contains_point(cx, cy)


class DetectionZoneFilter:
    """
    Removes detections that fall inside any ignored area.
    Callers keep the unfiltered list for drawing; only the filtered list
    reaches the tracker.
    """

    def __init__(self,
                 ignored_areas: Iterable[Rect],
                 zone_test: Callable[[Rect, Rect], bool] = center_in_area):
        self.ignored_areas: Tuple[Rect, ...] = tuple(Rect.of(a) for a in ignored_areas)
        self.zone_test = zone_test

    def is_ignored(self, detection: Any) -> bool:
        box = Rect.of(detection)
        return any(self.zone_test(box, area) for area in self.ignored_areas)

    def filter(self, detections: Sequence[Any]) -> List[Any]:
        if not self.ignored_areas:
            return list(detections)
        return [det for det in detections if not self.is_ignored(det)]
