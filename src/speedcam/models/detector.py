"""
Vehicle detection adapter around an Ultralytics YOLO model.
The pipeline only depends on detect(image) returning raw dictionaries;
normalize_detections() turns those into the vehicle Detection type.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import torch


# Raw model class names mapped to the pipeline's vehicle classes
VEHICLE_CLASSES = {
    'car': 'car',
    'truck': 'truck',
    'bus': 'bus',
    'motorcycle': 'motorcycle',
    'bicycle': 'bike',
    'bike': 'bike',
}


@dataclass
class Detection:
    """
    Vehicle detection in pixel [x, y, w, h] form
    """
    x: float
    y: float
    w: float
    h: float
    confidence: float  # Percent, 0-100
    class_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'x': self.x, 'y': self.y, 'w': self.w, 'h': self.h,
            'confidence': self.confidence,
            'class_name': self.class_name,
        }


def normalize_detections(raw_detections: Iterable[Dict[str, Any]],
                         min_confidence: float = 0.0) -> List[Detection]:
    """
    Keep vehicle classes only and convert model output to Detection objects.

    Args:
        raw_detections: Dicts with bbox [x, y, w, h], score 0-1 and class name
        min_confidence: Minimum confidence in percent

    Returns:
        Detections in input order
    """
    detections = []
    for raw in raw_detections:
        class_name = VEHICLE_CLASSES.get(str(raw.get('class', '')).lower())
        if class_name is None:
            continue

        confidence = float(raw.get('score', 0.0)) * 100.0
        if confidence < min_confidence:
            continue

        x, y, w, h = (float(v) for v in raw['bbox'])
        detections.append(Detection(x=x, y=y, w=w, h=h,
                                    confidence=confidence, class_name=class_name))
    return detections


class Detector(ABC):
    """Interface of the detection model"""

    @abstractmethod
    def detect(self, image: np.ndarray) -> List[Dict[str, Any]]:
        """Return raw detections: {'bbox': [x, y, w, h], 'score': 0-1, 'class': str}"""


class YOLODetector(Detector):
    """
    YOLO detection module for vehicle detection.
    Handles model loading, inference, and post-processing.
    """

    def __init__(self,
                 model_path: str,
                 device: str = 'auto',
                 conf_threshold: float = 0.4,
                 iou_threshold: float = 0.45,
                 img_size: int = 640):
        """
        Initialize YOLO detector.

        Args:
            model_path: Path or hub name of the YOLO weights
            device: Device to run inference on ('auto', 'cpu', 'cuda:0', etc.)
            conf_threshold: Confidence threshold for detections
            iou_threshold: IoU threshold for NMS
            img_size: Input image size for model
        """
        self.model_path = model_path
        self.conf_threshold = conf_threshold
        self.iou_threshold = iou_threshold
        self.img_size = img_size

        # Setup logging
        self.logger = logging.getLogger(__name__)

        # Setup device
        self.device = self._setup_device(device)

        self.model = None
        self.model_loaded = False

        # Performance tracking
        self.inference_times: List[float] = []

    def _setup_device(self, device: str) -> torch.device:
        """Setup computation device"""
        if device == 'auto':
            device = 'cuda:0' if torch.cuda.is_available() else 'cpu'

        device_obj = torch.device(device)
        self.logger.info(f"Using device: {device_obj}")
        return device_obj

    def load_model(self) -> bool:
        """
        Load YOLO model with error handling
        """
        try:
            from ultralytics import YOLO

            # Bare names like "yolov8n.pt" that do not exist locally are downloaded by ultralytics
            if not Path(self.model_path).exists():
                self.logger.info(f"{self.model_path} not found locally, resolving through ultralytics")

            self.logger.info(f"Loading model from {self.model_path}")
            self.model = YOLO(str(self.model_path))
            self.model.to(self.device)
            self.model_loaded = True
            self.logger.info("Model loaded successfully")
            return True

        except Exception as e:
            self.logger.error(f"Failed to load model: {e}")
            return False

    def detect(self, image: np.ndarray) -> List[Dict[str, Any]]:
        """
        Run detection on a single frame.

        Args:
            image: Input frame as numpy array (H, W, 3) in BGR format

        Returns:
            Raw detections with [x, y, w, h] boxes in image pixels

        Raises:
            RuntimeError: if the model cannot be loaded
        """
        if not self.model_loaded and not self.load_model():
            raise RuntimeError(f"Detection model unavailable: {self.model_path}")

        start_time = time.time()

        with torch.no_grad():
            results = self.model.predict(
                image,
                conf=self.conf_threshold,
                iou=self.iou_threshold,
                imgsz=self.img_size,
                verbose=False,
            )

        detections = self._postprocess_results(results[0] if results else None)

        self.inference_times.append(time.time() - start_time)
        if len(self.inference_times) > 100:
            self.inference_times = self.inference_times[-100:]

        return detections

    def _postprocess_results(self, results) -> List[Dict[str, Any]]:
        """
        Convert ultralytics results into raw detection dicts
        """
        detections = []

        if results is None or getattr(results, 'boxes', None) is None:
            return detections

        names = getattr(results, 'names', None) or getattr(self.model, 'names', {})
        boxes = results.boxes

        for i in range(len(boxes)):
            x1, y1, x2, y2 = (float(v) for v in boxes.xyxy[i].cpu().numpy())
            cls_id = int(boxes.cls[i])
            detections.append({
                'bbox': [x1, y1, x2 - x1, y2 - y1],
                'score': float(boxes.conf[i]),
                'class': names.get(cls_id, f'class_{cls_id}'),
            })

        return detections

    def get_performance_stats(self) -> Dict[str, float]:
        """Get inference performance statistics"""
        if not self.inference_times:
            return {}

        times = np.array(self.inference_times)

        return {
            'mean_inference_time': float(np.mean(times)),
            'median_inference_time': float(np.median(times)),
            'max_inference_time': float(np.max(times)),
            'fps_estimate': float(1.0 / np.mean(times)) if np.mean(times) > 0 else 0.0,
            'total_inferences': len(self.inference_times)
        }


def create_detector(config: Optional[Dict[str, Any]] = None) -> YOLODetector:
    """
    Create a YOLO detector from the detector config section
    """
    config = config or {}
    return YOLODetector(
        model_path=config.get('model_path', 'yolov8n.pt'),
        device=config.get('device', 'auto'),
        conf_threshold=config.get('conf_threshold', 0.4),
        iou_threshold=config.get('iou_threshold', 0.45),
        img_size=config.get('img_size', 640),
    )
