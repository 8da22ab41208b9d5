"""
Basic tests to verify project structure.
"""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))


PROJECT_ROOT = Path(__file__).parent.parent.parent


def test_project_structure():
    """Test that required directories exist"""
    required_dirs = [
        "src/speedcam",
        "src/speedcam/core",
        "src/speedcam/models",
        "src/speedcam/tracking",
        "src/speedcam/velocity",
        "src/speedcam/visual",
        "src/speedcam/inference",
        "tests",
        "configs",
    ]

    for dir_path in required_dirs:
        assert (PROJECT_ROOT / dir_path).exists(), f"Missing directory: {dir_path}"


def test_package_version():
    import speedcam

    assert speedcam.__version__


def test_pipeline_collaborator_interfaces():
    """Test the narrow interfaces the pipeline relies on"""
    from speedcam.core.video_io import FFmpegDecoder, FFmpegEncoder
    from speedcam.models.detector import Detector
    from speedcam.tracking.tracker import Tracker
    from speedcam.visual.renderer import AnnotationRenderer

    for name in ('start', 'chunks', 'stop'):
        assert hasattr(FFmpegDecoder, name)
    assert hasattr(FFmpegEncoder, 'encode')
    assert hasattr(Detector, 'detect')
    for name in ('reset', 'set_params', 'update', 'get_current_tracks', 'feed_frame'):
        assert hasattr(Tracker, name)
    assert hasattr(AnnotationRenderer, 'render_annotated')
    assert hasattr(AnnotationRenderer, 'crop')


def test_pyproject_dependencies():
    """Test that pyproject.toml declares the essential packages"""
    content = (PROJECT_ROOT / "pyproject.toml").read_text()

    essential_packages = [
        "torch",
        "opencv-python",
        "numpy",
        "scipy",
        "ultralytics",
        "PyYAML",
        "pytest",
    ]

    for package in essential_packages:
        assert package in content, f"Missing package in pyproject.toml: {package}"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
