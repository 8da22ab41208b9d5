"""
Configuration loading and logging setup.
"""

import copy
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .exceptions import ConfigError


DEFAULT_CONFIG: Dict[str, Any] = {
    'detector': {
        'model_path': 'yolov8n.pt',
        'device': 'auto',
        'conf_threshold': 0.4,
        'iou_threshold': 0.45,
        'img_size': 640,
        'min_confidence': 0.0,  # Percent, applied after class filtering
    },
    'tracker': {
        'unmatched_frames_tolerance': 5,
        'iou_limit': 0.05,
        'fast_delete': True,
    },
    'velocity': {
        'calibration_file': 'calibration.json',
        'assumed_fps': 30.0,
    },
    'stream': {
        'ffmpeg_bin': 'ffmpeg',
        'max_buffer_bytes': 64 * 1024 * 1024,
        'frame_queue_size': 30,
        'detection_lookahead': 4,
        'writer_threads': 2,
    },
    'output': {
        'output_dir': 'output',
        'keep_frames': False,
        'video_fps': 30.0,
        'jpeg_quality': 90,
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    },
}

REQUIRED_SECTIONS = ('detector', 'tracker', 'velocity', 'output')


def merge_config(overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Merge a (partial) config over DEFAULT_CONFIG, one section deep"""
    config = copy.deepcopy(DEFAULT_CONFIG)
    for section, values in (overrides or {}).items():
        if isinstance(values, dict) and isinstance(config.get(section), dict):
            config[section].update(values)
        else:
            config[section] = values

    for section in REQUIRED_SECTIONS:
        if not isinstance(config.get(section), dict):
            raise ConfigError(f"Config section '{section}' must be a mapping")

    return config


def load_config(config_path: Union[str, Path, None]) -> Dict[str, Any]:
    """
    Load configuration from a JSON or YAML file and merge it over the defaults.

    Args:
        config_path: Config file, None returns the defaults

    Raises:
        ConfigError: if the file is missing, unreadable or malformed
    """
    if config_path is None:
        return merge_config(None)

    config_file = Path(config_path)

    if not config_file.exists():
        raise ConfigError(f"Configuration file not found: {config_file}")

    try:
        with open(config_file, 'r') as f:
            if config_file.suffix.lower() == '.json':
                data = json.load(f)
            elif config_file.suffix.lower() in ['.yml', '.yaml']:
                data = yaml.safe_load(f)
            else:
                raise ConfigError(f"Unsupported config format: {config_file.suffix}")
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read configuration {config_file}: {e}") from e

    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"Configuration {config_file} must contain a mapping")

    return merge_config(data)


def setup_logging(config: Optional[Dict[str, Any]] = None, level: Optional[str] = None):
    """Setup logging configuration"""
    log_config = (config or {}).get('logging', {}) or {}

    level_name = (level or log_config.get('level', 'INFO')).upper()
    format_str = log_config.get('format', DEFAULT_CONFIG['logging']['format'])

    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=format_str)


@dataclass
class PipelineConfig:
    """
    Runtime settings of one pipeline instance
    """
    assumed_fps: float = 30.0
    ffmpeg_bin: str = 'ffmpeg'
    max_buffer_bytes: Optional[int] = 64 * 1024 * 1024
    frame_queue_size: int = 30
    detection_lookahead: int = 4
    writer_threads: int = 2
    min_confidence: float = 0.0
    output_dir: str = 'output'
    keep_frames: bool = False
    video_fps: float = 30.0
    jpeg_quality: int = 90

    def __post_init__(self):
        if self.assumed_fps <= 0:
            raise ConfigError("assumed_fps must be positive")
        if self.video_fps <= 0:
            raise ConfigError("video_fps must be positive")
        if self.frame_queue_size < 1:
            raise ConfigError("frame_queue_size must be at least 1")
        if self.detection_lookahead < 1:
            raise ConfigError("detection_lookahead must be at least 1")
        if self.writer_threads < 1:
            raise ConfigError("writer_threads must be at least 1")
        if self.max_buffer_bytes is not None and self.max_buffer_bytes <= 0:
            raise ConfigError("max_buffer_bytes must be positive or null")

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'PipelineConfig':
        """Build from a full config dictionary (see DEFAULT_CONFIG)"""
        config = merge_config(config)
        stream = config.get('stream', {}) or {}
        output = config['output']
        return cls(
            assumed_fps=float(config['velocity'].get('assumed_fps', 30.0)),
            ffmpeg_bin=stream.get('ffmpeg_bin', 'ffmpeg'),
            max_buffer_bytes=stream.get('max_buffer_bytes'),
            frame_queue_size=int(stream.get('frame_queue_size', 30)),
            detection_lookahead=int(stream.get('detection_lookahead', 4)),
            writer_threads=int(stream.get('writer_threads', 2)),
            min_confidence=float(config['detector'].get('min_confidence', 0.0)),
            output_dir=str(output.get('output_dir', 'output')),
            keep_frames=bool(output.get('keep_frames', False)),
            video_fps=float(output.get('video_fps', 30.0)),
            jpeg_quality=int(output.get('jpeg_quality', 90)),
        )
