"""
Groups speed samples by track and picks one representative frame per vehicle.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .speed_estimator import SpeedSample


@dataclass
class VehicleRecord:
    """
    Final per-vehicle result
    """
    id: int
    speed_kmh: int
    time_iso: str
    representative_frame_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'speed': self.speed_kmh,
            'time': self.time_iso,
            'frame': self.representative_frame_path,
        }


def group_samples(samples: Sequence[SpeedSample]) -> Dict[int, List[SpeedSample]]:
    """Group samples by track id, keeping first-appearance order and frame order"""
    groups: Dict[int, List[SpeedSample]] = {}
    for sample in samples:
        groups.setdefault(sample.track_id, []).append(sample)
    return groups


def select_representative(group: Sequence[SpeedSample]) -> SpeedSample:
    """
    Sample with the highest speed. Ties keep the earliest sample.
    """
    if not group:
        raise ValueError("Cannot select a representative from an empty group")

    best = group[0]
    for sample in group[1:]:
        if sample.speed_kmh > best.speed_kmh:
            best = sample
    return best


class ResultAggregator:
    """
    Builds VehicleRecords at stream end and extracts a crop of each vehicle
    from the persisted frame it reached its top speed in.
    """

    def __init__(self,
                 cropper: Optional[Any],
                 frame_path_fn: Callable[[int], Path],
                 output_dir: Union[str, Path]):
        """
        Args:
            cropper: Object with crop(frame_bytes, boxes) -> bytes or None; None skips crops
            frame_path_fn: Maps a frame index to its persisted file
            output_dir: Directory the vehicle crops are written to
        """
        self.cropper = cropper
        self.frame_path_fn = frame_path_fn
        self.output_dir = Path(output_dir)
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def crop_filename(track_id: int, frame_index: int) -> str:
        return f"vehicle_{track_id}_frame_{frame_index:06d}.jpg"

    def aggregate(self, samples: Sequence[SpeedSample]) -> List[VehicleRecord]:
        """
        One record per distinct track id, in ascending id order.
        """
        records = []
        for track_id, group in sorted(group_samples(samples).items()):
            winner = select_representative(group)
            records.append(VehicleRecord(
                id=track_id,
                speed_kmh=winner.speed_kmh,
                time_iso=winner.timestamp_iso,
                representative_frame_path=self._extract_crop(winner),
            ))

        self.logger.info(f"Aggregated {len(samples)} samples into {len(records)} vehicle records")
        return records

    def _extract_crop(self, sample: SpeedSample) -> Optional[str]:
        """Crop the winning frame. Any failure leaves the record without an image."""
        if self.cropper is None:
            return None

        source = Path(self.frame_path_fn(sample.frame_index))
        try:
            frame_bytes = source.read_bytes()
        except OSError as e:
            self.logger.warning(
                f"Representative frame {source} for track {sample.track_id} unavailable: {e}"
            )
            return None

        try:
            cropped = self.cropper.crop(frame_bytes, list(sample.bounding_boxes))
        except Exception as e:
            self.logger.warning(f"Crop failed for track {sample.track_id}: {e}")
            return None

        if cropped is None:
            return None

        target = self.output_dir / self.crop_filename(sample.track_id, sample.frame_index)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(cropped)
        except OSError as e:
            self.logger.warning(f"Could not write crop for track {sample.track_id}: {e}")
            return None

        return str(target)
