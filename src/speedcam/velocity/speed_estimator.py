"""
Converts per-frame track displacement into real-world speed.
Keeps the last known center of every track and compares each new
observation against it.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .zones import Rect


@dataclass
class TrackPosition:
    """
    Last known state of a single track
    """
    track_id: int
    center_x: float
    center_y: float
    timestamp: float


@dataclass
class SpeedSample:
    """
    Speed observation of one track in one frame
    """
    track_id: int
    frame_index: int
    timestamp_iso: str
    actual_time_seconds: float
    speed_kmh: int
    bounding_boxes: Tuple[Rect, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.track_id,
            'frame': self.frame_index,
            'timestamp': self.timestamp_iso,
            'actual_time': self.actual_time_seconds,
            'speed_kmh': self.speed_kmh,
            'boxes': [box.to_dict() for box in self.bounding_boxes],
        }


def compute_speed_kmh(distance_pixels: float, dt: float, pixels_per_meter: float) -> int:
    """
    Turn a pixel displacement over dt seconds into km/h.

    Non-finite or negative results (dt <= 0, NaN input) map to 0, never to an
    error. The result is rounded half up to the nearest integer.
    """
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        meters = np.float64(distance_pixels) / np.float64(pixels_per_meter)
        speed = (meters / np.float64(dt)) * 3.6

    if not np.isfinite(speed) or speed < 0:
        return 0
    return int(np.floor(speed + 0.5))


class SpeedEstimator:
    """
    Per-track speed estimation with a fixed calibration.
    State is owned by one pipeline run; call reset() before reusing it.
    """

    def __init__(self,
                 pixels_per_meter: float,
                 reference_time: Optional[datetime] = None):
        """
        Args:
            pixels_per_meter: Calibration scale
            reference_time: Wall-clock instant of video time zero, used for ISO timestamps
        """
        self.pixels_per_meter = pixels_per_meter
        self.reference_time = reference_time or datetime.now(timezone.utc)

        self.last_positions: Dict[int, TrackPosition] = {}
        self.samples: List[SpeedSample] = []
        self._latest_speed: Dict[int, int] = {}

        # Performance tracking
        self.calculation_times: List[float] = []

        self.logger = logging.getLogger(__name__)

    def reset(self, reference_time: Optional[datetime] = None):
        """Wipe all per-run state"""
        self.last_positions.clear()
        self.samples = []
        self._latest_speed.clear()
        self.calculation_times = []
        self.reference_time = reference_time or datetime.now(timezone.utc)

    def to_iso(self, seconds: float) -> str:
        return (self.reference_time + timedelta(seconds=float(seconds))).isoformat()

    def update(self,
               frame_index: int,
               timestamp: float,
               tracks: Sequence[Any],
               detections: Sequence[Any] = ()) -> List[SpeedSample]:
        """
        Record one frame worth of tracked boxes.

        Args:
            frame_index: Index of the frame the tracks belong to
            timestamp: Capture time of the frame in seconds
            tracks: Objects exposing id, x, y, w, h
            detections: Unfiltered detections of the frame, kept for cropping

        Returns:
            The samples appended for this frame, one per track
        """
        start_time = time.time()
        detection_boxes = [Rect.of(det) for det in detections]
        timestamp_iso = self.to_iso(timestamp)

        new_samples = []
        for track in tracks:
            box = Rect.of(track)
            cx, cy = box.center
            track_id = track.id

            previous = self.last_positions.get(track_id)
            if previous is None:
                speed_kmh = 0
            else:
                dt = timestamp - previous.timestamp
                distance = float(np.hypot(cx - previous.center_x, cy - previous.center_y))
                speed_kmh = compute_speed_kmh(distance, dt, self.pixels_per_meter)
                if dt <= 0:
                    self.logger.debug(
                        f"Track {track_id} has non-positive dt {dt:.4f}s at frame {frame_index}"
                    )

            boxes = (box,) + tuple(d for d in detection_boxes if d.intersects(box))
            sample = SpeedSample(
                track_id=track_id,
                frame_index=frame_index,
                timestamp_iso=timestamp_iso,
                actual_time_seconds=timestamp,
                speed_kmh=speed_kmh,
                bounding_boxes=boxes,
            )
            new_samples.append(sample)

            self.last_positions[track_id] = TrackPosition(track_id, cx, cy, timestamp)
            self._latest_speed[track_id] = speed_kmh

        self.samples.extend(new_samples)

        self.calculation_times.append(time.time() - start_time)
        if len(self.calculation_times) > 100:
            self.calculation_times = self.calculation_times[-100:]

        return new_samples

    def speed_for(self, track_id: int) -> int:
        """Most recent speed of a track, 0 if it has never been seen"""
        return self._latest_speed.get(track_id, 0)

    def get_performance_stats(self) -> Dict[str, float]:
        """Get calculation performance statistics"""
        if not self.calculation_times:
            return {}

        times = np.array(self.calculation_times)

        return {
            'mean_calculation_time': float(np.mean(times)),
            'max_calculation_time': float(np.max(times)),
            'total_samples': len(self.samples)
        }
