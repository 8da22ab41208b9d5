"""
Correlates decoder progress marks with frame sequence indices.
Progress marks and emitted frames are not in 1:1 correspondence, so the
resulting timestamps are best effort.
"""

import threading
from typing import List, Union


def time_string_to_seconds(value: Union[str, int, float]) -> float:
    """
    Convert a decoder progress mark to seconds.

    Args:
        value: "HH:MM:SS.ms" string, plain numeric string, or a number

    Returns:
        Seconds as float. Numbers pass through unchanged, garbage maps to 0.0
    """
    if isinstance(value, (int, float)):
        return value

    text = str(value).strip()
    parts = text.split(':')
    if len(parts) == 3:
        try:
            hours, minutes, seconds = (float(p) for p in parts)
            return hours * 3600 + minutes * 60 + seconds
        except ValueError:
            return 0.0

    try:
        return float(text)
    except ValueError:
        return 0.0


class TimestampCorrelator:
    """
    Maps a frame index to a capture time using the decoder's progress marks,
    falling back to index / assumed_fps when no mark exists for the index.
    """

    def __init__(self, assumed_fps: float = 30.0):
        if assumed_fps <= 0:
            raise ValueError("assumed_fps must be positive")
        self.assumed_fps = assumed_fps
        self._marks: List[float] = []
        self._lock = threading.Lock()

    def add_progress(self, mark: Union[str, int, float]) -> float:
        """Record one progress mark in arrival order and return it in seconds"""
        seconds = time_string_to_seconds(mark)
        with self._lock:
            self._marks.append(seconds)
        return seconds

    def timestamp_for(self, frame_index: int) -> float:
        """Best-effort capture time of a frame in seconds"""
        with self._lock:
            if 0 <= frame_index < len(self._marks):
                return self._marks[frame_index]
        return frame_index / self.assumed_fps

    def reset(self):
        with self._lock:
            self._marks.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._marks)
