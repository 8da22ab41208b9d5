"""
OpenCV drawing of annotated frames and vehicle crops.
Works on encoded JPEG bytes in and out so frames can be persisted directly.
"""

import logging
from typing import Any, Dict, Optional, Sequence

import cv2
import numpy as np

from ..velocity.zones import Rect


# BGR colors
IGNORED_COLOR = (0, 0, 255)
DETECTION_COLOR = (0, 255, 255)
TRACK_COLOR = (0, 255, 0)
SPEED_COLOR = (0, 165, 255)
TEXT_DARK = (0, 0, 0)
TEXT_LIGHT = (255, 255, 255)

FONT = cv2.FONT_HERSHEY_SIMPLEX


def decode_image(frame_bytes: bytes) -> Optional[np.ndarray]:
    """Decode JPEG bytes into a BGR image, None if the bytes are not an image"""
    if not frame_bytes:
        return None
    buffer = np.frombuffer(frame_bytes, dtype=np.uint8)
    return cv2.imdecode(buffer, cv2.IMREAD_COLOR)


def encode_image(image: np.ndarray, quality: int = 90) -> bytes:
    ok, encoded = cv2.imencode('.jpg', image, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        raise ValueError("JPEG encoding failed")
    return encoded.tobytes()


class AnnotationRenderer:
    """
    Draws ignored areas, raw detections, tracks, speeds and a frame info box.
    """

    def __init__(self, jpeg_quality: int = 90):
        self.jpeg_quality = jpeg_quality
        self.logger = logging.getLogger(__name__)

    def render_annotated(self,
                         frame_bytes: bytes,
                         detections: Sequence[Any],
                         tracks: Sequence[Any],
                         ignored_areas: Sequence[Any],
                         frame_index: int,
                         timestamp: float,
                         speeds: Optional[Dict[int, int]] = None) -> bytes:
        """
        Create the annotated JPEG of one frame.

        Args:
            frame_bytes: Original JPEG frame
            detections: Unfiltered detections, ignored-area ones included
            tracks: Tracks of this frame
            ignored_areas: Exclusion rectangles
            frame_index: Frame index shown in the info box
            timestamp: Frame time in seconds shown in the info box
            speeds: Track id -> km/h, labels are drawn for speeds above 0

        Raises:
            ValueError: if the frame cannot be decoded
        """
        image = decode_image(frame_bytes)
        if image is None:
            raise ValueError(f"Could not decode frame {frame_index}")

        self._draw_ignored_areas(image, ignored_areas)
        self._draw_detections(image, detections)
        self._draw_tracks(image, tracks)
        self._draw_speeds(image, tracks, speeds or {})
        self._draw_frame_info(image, frame_index, timestamp, len(detections), len(tracks))

        return encode_image(image, self.jpeg_quality)

    def crop(self, frame_bytes: bytes, boxes: Sequence[Any]) -> Optional[bytes]:
        """
        Compose the given boxes onto a canvas sized to the first box.
        Every box region is placed relative to the first box's origin and
        clipped to the canvas and the frame.

        Returns:
            JPEG bytes, or None when there are no boxes or the frame is unreadable
        """
        if not boxes:
            return None

        image = decode_image(frame_bytes)
        if image is None:
            return None

        frame_h, frame_w = image.shape[:2]
        first = Rect.of(boxes[0])
        origin_x, origin_y = int(round(first.x)), int(round(first.y))
        canvas_w = max(1, int(round(first.w)))
        canvas_h = max(1, int(round(first.h)))
        canvas = np.zeros((canvas_h, canvas_w, 3), dtype=np.uint8)

        for box in boxes:
            rect = Rect.of(box)
            x1, y1 = int(round(rect.x)), int(round(rect.y))
            x2, y2 = int(round(rect.x + rect.w)), int(round(rect.y + rect.h))

            # Clip to frame, then to canvas
            x1, y1 = max(x1, 0, origin_x), max(y1, 0, origin_y)
            x2 = min(x2, frame_w, origin_x + canvas_w)
            y2 = min(y2, frame_h, origin_y + canvas_h)
            if x2 <= x1 or y2 <= y1:
                continue

            canvas[y1 - origin_y:y2 - origin_y, x1 - origin_x:x2 - origin_x] = image[y1:y2, x1:x2]

        return encode_image(canvas, self.jpeg_quality)

    def _draw_ignored_areas(self, image: np.ndarray, ignored_areas: Sequence[Any]):
        """Semi-transparent red rectangles with an IGNORED label"""
        if not ignored_areas:
            return

        overlay = image.copy()
        for area in ignored_areas:
            x1, y1, x2, y2 = _int_xyxy(Rect.of(area))
            cv2.rectangle(overlay, (x1, y1), (x2, y2), IGNORED_COLOR, -1)
        cv2.addWeighted(overlay, 0.3, image, 0.7, 0, dst=image)

        for i, area in enumerate(ignored_areas):
            x1, y1, x2, y2 = _int_xyxy(Rect.of(area))
            cv2.rectangle(image, (x1, y1), (x2, y2), IGNORED_COLOR, 2)
            cv2.putText(image, f"IGNORED {i + 1}", (x1 + 5, y1 + 20),
                        FONT, 0.5, TEXT_LIGHT, 1)

    def _draw_detections(self, image: np.ndarray, detections: Sequence[Any]):
        for det in detections:
            x1, y1, x2, y2 = _int_xyxy(Rect.of(det))
            cv2.rectangle(image, (x1, y1), (x2, y2), DETECTION_COLOR, 2)

            name = getattr(det, 'class_name', 'vehicle')
            confidence = getattr(det, 'confidence', 0.0)
            _draw_label(image, f"{name} {confidence:.0f}%", x1, y1, DETECTION_COLOR, TEXT_DARK)

    def _draw_tracks(self, image: np.ndarray, tracks: Sequence[Any]):
        for track in tracks:
            rect = Rect.of(track)
            x1, y1, x2, y2 = _int_xyxy(rect)
            cv2.rectangle(image, (x1, y1), (x2, y2), TRACK_COLOR, 3)

            cx, cy = rect.center
            cv2.circle(image, (int(cx), int(cy)), 5, TRACK_COLOR, -1)

            # ID label below the box
            label = f"ID: {track.id}"
            (text_w, text_h), _ = cv2.getTextSize(label, FONT, 0.6, 2)
            cv2.rectangle(image, (x1, y2), (x1 + text_w + 10, y2 + text_h + 12), TRACK_COLOR, -1)
            cv2.putText(image, label, (x1 + 5, y2 + text_h + 5), FONT, 0.6, TEXT_DARK, 2)

    def _draw_speeds(self, image: np.ndarray, tracks: Sequence[Any], speeds: Dict[int, int]):
        for track in tracks:
            speed = speeds.get(track.id, 0)
            if not speed or speed <= 0:
                continue

            rect = Rect.of(track)
            label = f"{speed} km/h"
            (text_w, text_h), _ = cv2.getTextSize(label, FONT, 0.6, 2)
            label_x = int(rect.x + (rect.w - text_w - 10) / 2)
            label_y = int(rect.y) - 10
            cv2.rectangle(image, (label_x, label_y - text_h - 10),
                          (label_x + text_w + 10, label_y), SPEED_COLOR, -1)
            cv2.putText(image, label, (label_x + 5, label_y - 5), FONT, 0.6, TEXT_DARK, 2)

    def _draw_frame_info(self, image: np.ndarray, frame_index: int, timestamp: float,
                         detections_count: int, tracked_count: int):
        overlay = image.copy()
        cv2.rectangle(overlay, (10, 10), (310, 90), (0, 0, 0), -1)
        cv2.addWeighted(overlay, 0.7, image, 0.3, 0, dst=image)

        time_value = timestamp if isinstance(timestamp, (int, float)) else 0.0
        cv2.putText(image, f"Frame: {frame_index}", (20, 30), FONT, 0.5, TEXT_LIGHT, 1)
        cv2.putText(image, f"Time: {time_value:.2f}s", (20, 50), FONT, 0.5, TEXT_LIGHT, 1)
        cv2.putText(image, f"Detections: {detections_count}", (20, 70), FONT, 0.5, TEXT_LIGHT, 1)
        cv2.putText(image, f"Tracked: {tracked_count}", (160, 70), FONT, 0.5, TEXT_LIGHT, 1)


def _int_xyxy(rect: Rect):
    x1, y1, x2, y2 = rect.to_xyxy()
    return int(x1), int(y1), int(x2), int(y2)


def _draw_label(image: np.ndarray, label: str, x: int, y: int, background, foreground):
    """Draw label with background above (x, y)"""
    (text_w, text_h), _ = cv2.getTextSize(label, FONT, 0.5, 1)
    cv2.rectangle(image, (x, y - text_h - 8), (x + text_w + 10, y), background, -1)
    cv2.putText(image, label, (x + 5, y - 4), FONT, 0.5, foreground, 1)
