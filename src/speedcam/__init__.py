"""
Vehicle Speed Estimation

Estimates vehicle speeds from recorded traffic video using a fixed
pixels-per-meter calibration, YOLO detection and IoU tracking.
"""

__version__ = "1.0.0"
__author__ = "Vehicle Velocity Team"
