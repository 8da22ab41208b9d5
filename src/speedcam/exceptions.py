"""
Exception hierarchy for the speed estimation pipeline.
"""

from typing import Any, Optional


class SpeedCamError(Exception):
    """Base exception. Stream and encoder level errors carry partial results."""

    def __init__(self, message: str = "", result: Optional[Any] = None):
        super().__init__(message)
        self.result = result


class ConfigError(SpeedCamError, ValueError):
    """Raised for missing or invalid configuration and calibration data."""


class DecoderError(SpeedCamError):
    """Raised when the decoder process fails. Fatal for the pipeline."""


class FrameBufferOverflowError(DecoderError):
    """Raised when the frame parser buffer grows past its bound."""


class FrameProcessingError(SpeedCamError):
    """Raised when a single frame cannot be detected, tracked or drawn."""

    def __init__(self, message: str = "", frame_index: Optional[int] = None):
        super().__init__(message)
        self.frame_index = frame_index


class EncoderError(SpeedCamError):
    """Raised when the annotated video cannot be reassembled."""
