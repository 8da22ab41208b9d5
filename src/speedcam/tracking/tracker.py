"""
Multi-object tracker interface and a lightweight IOU tracker.
The pipeline treats track ids as opaque: they are stable only while the
tracker's own tolerance rules keep an object alive.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from scipy.optimize import linear_sum_assignment

from ..velocity.zones import Rect


@dataclass
class Track:
    """
    Tracked object snapshot with a persistent id
    """
    id: int
    x: float
    y: float
    w: float
    h: float
    last_seen_frame: int
    class_name: str = 'vehicle'
    confidence: float = 0.0
    hits: int = 1
    frames_unmatched: int = 0

    def get_center(self):
        """Get center point of bounding box"""
        return (self.x + self.w / 2, self.y + self.h / 2)

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'x': self.x, 'y': self.y, 'w': self.w, 'h': self.h}


class Tracker(ABC):
    """Interface of the multi-object tracker"""

    @abstractmethod
    def reset(self):
        """Forget every track and restart id assignment"""

    @abstractmethod
    def set_params(self, config: Dict[str, Any]):
        """Apply tracker parameters"""

    @abstractmethod
    def update(self, detections: Sequence[Any], frame_index: int):
        """Feed the filtered detections of one frame"""

    @abstractmethod
    def get_current_tracks(self) -> List[Track]:
        """Tracks visible in the latest frame"""

    def feed_frame(self, detections: Sequence[Any], frame_index: int) -> List[Track]:
        """Update with one frame and return the resulting tracks"""
        self.update(detections, frame_index)
        return self.get_current_tracks()


def compute_iou(box1: Rect, box2: Rect) -> float:
    """Compute IoU between two [x, y, w, h] boxes"""
    x1_1, y1_1, x2_1, y2_1 = box1.to_xyxy()
    x1_2, y1_2, x2_2, y2_2 = box2.to_xyxy()

    # Intersection
    x1_i = max(x1_1, x1_2)
    y1_i = max(y1_1, y1_2)
    x2_i = min(x2_1, x2_2)
    y2_i = min(y2_1, y2_2)

    if x2_i <= x1_i or y2_i <= y1_i:
        return 0.0

    intersection = (x2_i - x1_i) * (y2_i - y1_i)

    # Union
    union = box1.w * box1.h + box2.w * box2.h - intersection

    return intersection / union if union > 0 else 0.0


class IOUTracker(Tracker):
    """
    IoU tracker with Hungarian assignment.
    A track survives up to unmatched_frames_tolerance frames without a match.
    With fast_delete, a track that is never matched after its first frame is
    dropped on its first miss.
    """

    DEFAULT_PARAMS = {
        'unmatched_frames_tolerance': 5,
        'iou_limit': 0.05,
        'fast_delete': True,
    }

    def __init__(self, **params):
        self.unmatched_frames_tolerance = self.DEFAULT_PARAMS['unmatched_frames_tolerance']
        self.iou_limit = self.DEFAULT_PARAMS['iou_limit']
        self.fast_delete = self.DEFAULT_PARAMS['fast_delete']

        self.tracks: List[Track] = []
        self.next_id = 1
        self.frame_index: Optional[int] = None

        self.logger = logging.getLogger(__name__)
        self.tracking_times: List[float] = []

        if params:
            self.set_params(params)

    def reset(self):
        self.tracks = []
        self.next_id = 1
        self.frame_index = None

    def set_params(self, config: Dict[str, Any]):
        unknown = set(config) - set(self.DEFAULT_PARAMS)
        if unknown:
            self.logger.warning(f"Ignoring unknown tracker parameters: {sorted(unknown)}")

        self.unmatched_frames_tolerance = int(
            config.get('unmatched_frames_tolerance', self.unmatched_frames_tolerance))
        self.iou_limit = float(config.get('iou_limit', self.iou_limit))
        self.fast_delete = bool(config.get('fast_delete', self.fast_delete))

    def update(self, detections: Sequence[Any], frame_index: int):
        """Update tracks with the detections of a new frame"""
        start_time = time.time()
        self.frame_index = frame_index
        boxes = [Rect.of(det) for det in detections]

        matched, unmatched_dets, unmatched_trks = self._associate_detections_to_tracks(boxes)

        # Update matched tracks
        for det_idx, trk_idx in matched:
            self._update_track(self.tracks[trk_idx], boxes[det_idx], detections[det_idx], frame_index)

        # Age unmatched tracks
        survivors = []
        unmatched_set = set(unmatched_trks)
        for i, track in enumerate(self.tracks):
            if i in unmatched_set:
                track.frames_unmatched += 1
                if self.fast_delete and track.hits == 1:
                    continue
                if track.frames_unmatched > self.unmatched_frames_tolerance:
                    continue
            survivors.append(track)
        self.tracks = survivors

        # Create new tracks for unmatched detections
        for i in unmatched_dets:
            self.tracks.append(self._create_track(boxes[i], detections[i], frame_index))

        self.tracking_times.append(time.time() - start_time)
        if len(self.tracking_times) > 100:
            self.tracking_times = self.tracking_times[-100:]

    def get_current_tracks(self) -> List[Track]:
        return [t for t in self.tracks if t.last_seen_frame == self.frame_index]

    def _associate_detections_to_tracks(self, boxes: List[Rect]):
        """Associate detections to tracks using IoU and the Hungarian algorithm"""
        if not self.tracks:
            return [], list(range(len(boxes))), []

        if not boxes:
            return [], [], list(range(len(self.tracks)))

        iou_matrix = np.zeros((len(boxes), len(self.tracks)))
        for d, box in enumerate(boxes):
            for t, track in enumerate(self.tracks):
                iou_matrix[d, t] = compute_iou(box, Rect.of(track))

        det_indices, trk_indices = linear_sum_assignment(1.0 - iou_matrix)

        matched = []
        for d, t in zip(det_indices, trk_indices):
            if iou_matrix[d, t] > self.iou_limit:
                matched.append((int(d), int(t)))

        matched_dets = {d for d, _ in matched}
        matched_trks = {t for _, t in matched}
        unmatched_dets = [d for d in range(len(boxes)) if d not in matched_dets]
        unmatched_trks = [t for t in range(len(self.tracks)) if t not in matched_trks]

        return matched, unmatched_dets, unmatched_trks

    def _create_track(self, box: Rect, detection: Any, frame_index: int) -> Track:
        """Create new track from detection"""
        track = Track(
            id=self.next_id,
            x=box.x, y=box.y, w=box.w, h=box.h,
            last_seen_frame=frame_index,
            class_name=getattr(detection, 'class_name', 'vehicle'),
            confidence=getattr(detection, 'confidence', 0.0),
        )
        self.next_id += 1
        return track

    def _update_track(self, track: Track, box: Rect, detection: Any, frame_index: int):
        """Update existing track with new detection"""
        track.x, track.y, track.w, track.h = box.x, box.y, box.w, box.h
        track.last_seen_frame = frame_index
        track.class_name = getattr(detection, 'class_name', track.class_name)
        track.confidence = getattr(detection, 'confidence', track.confidence)
        track.hits += 1
        track.frames_unmatched = 0

    def get_performance_stats(self) -> Dict[str, float]:
        """Get tracking performance statistics"""
        if not self.tracking_times:
            return {}

        times = np.array(self.tracking_times)

        return {
            'mean_tracking_time': float(np.mean(times)),
            'max_tracking_time': float(np.max(times)),
            'active_tracks': len(self.tracks),
            'total_updates': len(self.tracking_times)
        }


def create_tracker(config: Optional[Dict[str, Any]] = None) -> IOUTracker:
    """
    Create an IOU tracker from the tracker config section
    """
    return IOUTracker(**(config or {}))
