"""
Unit tests for configuration loading.
"""

import pytest
import sys
import json
import logging
from pathlib import Path
from unittest.mock import patch

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from speedcam.config import (
    DEFAULT_CONFIG, PipelineConfig, load_config, merge_config, setup_logging
)
from speedcam.exceptions import ConfigError


class TestLoadConfig:
    """Test config files and default merging"""

    def test_defaults_without_file(self):
        config = load_config(None)

        assert config == DEFAULT_CONFIG
        assert config is not DEFAULT_CONFIG

    def test_json_overrides_one_section_deep(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({'tracker': {'iou_limit': 0.3}}))

        config = load_config(path)

        assert config['tracker']['iou_limit'] == 0.3
        assert config['tracker']['unmatched_frames_tolerance'] == 5

    def test_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("output:\n  keep_frames: true\n  output_dir: out\n")

        config = load_config(path)

        assert config['output']['keep_frames'] is True
        assert config['output']['output_dir'] == 'out'
        assert config['output']['jpeg_quality'] == 90

    def test_shipped_default_config_loads(self):
        path = Path(__file__).parent.parent.parent / "configs" / "default_config.yaml"

        config = load_config(path)

        assert PipelineConfig.from_dict(config).detection_lookahead == 4

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "absent.yaml")

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("[detector]")

        with pytest.raises(ConfigError):
            load_config(path)

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("detector: [unclosed")

        with pytest.raises(ConfigError):
            load_config(path)

    def test_required_section_must_be_mapping(self):
        with pytest.raises(ConfigError):
            merge_config({'tracker': 5})


class TestPipelineConfig:
    """Test runtime settings validation"""

    def test_from_dict(self):
        config = merge_config({
            'velocity': {'assumed_fps': 25},
            'stream': {'writer_threads': 4, 'max_buffer_bytes': None},
            'output': {'keep_frames': True},
        })

        settings = PipelineConfig.from_dict(config)

        assert settings.assumed_fps == 25.0
        assert settings.writer_threads == 4
        assert settings.max_buffer_bytes is None
        assert settings.keep_frames is True

    @pytest.mark.parametrize("field,value", [
        ('assumed_fps', 0),
        ('video_fps', -1),
        ('frame_queue_size', 0),
        ('detection_lookahead', 0),
        ('writer_threads', 0),
        ('max_buffer_bytes', 0),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ConfigError):
            PipelineConfig(**{field: value})


class TestSetupLogging:
    """Test logging section handling"""

    def test_level_override(self):
        with patch('speedcam.config.logging.basicConfig') as basic_config:
            setup_logging(DEFAULT_CONFIG, level='debug')

        assert basic_config.call_args.kwargs['level'] == logging.DEBUG

    def test_config_level(self):
        config = merge_config({'logging': {'level': 'WARNING'}})

        with patch('speedcam.config.logging.basicConfig') as basic_config:
            setup_logging(config)

        assert basic_config.call_args.kwargs['level'] == logging.WARNING


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
