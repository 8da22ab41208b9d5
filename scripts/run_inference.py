#!/usr/bin/env python3
"""
Example script for running vehicle speed estimation on a video file.

Examples:
  # Run with default config and a calibration file
  python scripts/run_inference.py --source video.mp4 --calibration calibration.json

  # Run with a YAML config, keeping the annotated frames
  python scripts/run_inference.py --source video.mp4 --config configs/default_config.yaml --keep-frames

  # Process only the first 100 frames
  python scripts/run_inference.py --source video.mp4 --max-frames 100
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from speedcam.inference.pipeline import main


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInference interrupted by user")
        sys.exit(0)
