#!/usr/bin/env python3
"""
Calibration utility for vehicle speed estimation.

Produces the calibration JSON read by the pipeline: a pixels-per-meter scale
and the rectangles whose detections are ignored.
"""

import sys
import argparse
from pathlib import Path

import cv2

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from speedcam.exceptions import ConfigError
from speedcam.velocity.calibration import (
    Calibration, pixels_per_meter_from_points, rect_from_corners
)


def collect_reference_points(image, window: str = 'Calibration') -> list:
    """
    Let the user click two points a known distance apart on the road.
    Press 'r' to reset, 'q' when done.
    """
    points = []
    canvas = image.copy()

    def mouse_callback(event, x, y, flags, param):
        if event == cv2.EVENT_LBUTTONDOWN and len(points) < 2:
            points.append((x, y))
            cv2.circle(canvas, (x, y), 5, (0, 255, 0), -1)
            if len(points) == 2:
                cv2.line(canvas, points[0], points[1], (0, 255, 0), 2)
            cv2.imshow(window, canvas)
            print(f"Point {len(points)}: ({x}, {y})")

    cv2.namedWindow(window)
    cv2.setMouseCallback(window, mouse_callback)
    cv2.imshow(window, canvas)

    while True:
        key = cv2.waitKey(1) & 0xFF
        if key == ord('q'):
            break
        elif key == ord('r'):
            points.clear()
            canvas[:] = image
            cv2.imshow(window, canvas)
            print("Points reset")

    cv2.destroyWindow(window)
    return points


def collect_ignored_areas(image, window: str = 'Ignored areas') -> list:
    """
    Let the user drag rectangles over areas to ignore.
    Press 'r' to reset, 'q' when done.
    """
    areas = []
    canvas = image.copy()
    drag = {}

    def mouse_callback(event, x, y, flags, param):
        if event == cv2.EVENT_LBUTTONDOWN:
            drag['start'] = (x, y)
        elif event == cv2.EVENT_LBUTTONUP and 'start' in drag:
            x1, y1 = drag.pop('start')
            area = rect_from_corners(x1, y1, x, y)
            if area.w > 0 and area.h > 0:
                areas.append(area)
                cv2.rectangle(canvas, (int(area.x), int(area.y)),
                              (int(area.x + area.w), int(area.y + area.h)), (0, 0, 255), 2)
                cv2.imshow(window, canvas)
                print(f"Ignored area {len(areas)}: {area.to_dict()}")

    cv2.namedWindow(window)
    cv2.setMouseCallback(window, mouse_callback)
    cv2.imshow(window, canvas)

    while True:
        key = cv2.waitKey(1) & 0xFF
        if key == ord('q'):
            break
        elif key == ord('r'):
            areas.clear()
            canvas[:] = image
            cv2.imshow(window, canvas)
            print("Areas reset")

    cv2.destroyWindow(window)
    return areas


def main():
    """Main calibration function"""
    parser = argparse.ArgumentParser(
        description="Calibration for vehicle speed estimation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Interactive calibration from a still frame, 4.5 m between the clicked points
  python scripts/calibrate_camera.py --image frame.jpg --distance 4.5 --output calibration.json

  # Simple calibration with a known scale
  python scripts/calibrate_camera.py --simple --ppm 37.5 --output calibration.json
        """
    )

    parser.add_argument('--output', required=True, help='Output calibration file path')
    parser.add_argument('--image', help='Still frame for interactive calibration')
    parser.add_argument('--distance', type=float,
                        help='Real distance in meters between the two clicked points')
    parser.add_argument('--simple', action='store_true',
                        help='Write a calibration from --ppm without ignored areas')
    parser.add_argument('--ppm', type=float, help='Pixels per meter (for simple calibration)')

    args = parser.parse_args()

    try:
        if args.simple:
            if not args.ppm:
                print("Error: Simple calibration requires --ppm")
                return 1
            calibration = Calibration(args.ppm)

        else:
            if not args.image or not args.distance:
                print("Error: Interactive calibration requires --image and --distance")
                return 1
            if not Path(args.image).exists():
                print(f"Error: Image file not found: {args.image}")
                return 1

            image = cv2.imread(args.image)
            if image is None:
                print(f"Could not load image: {args.image}")
                return 1

            print("Click two points a known distance apart, then press 'q'")
            points = collect_reference_points(image)
            if len(points) != 2:
                print("Error: Exactly two reference points are needed")
                return 1

            print("Drag rectangles over areas to ignore, then press 'q'")
            areas = collect_ignored_areas(image)

            ppm = pixels_per_meter_from_points(points[0], points[1], args.distance)
            calibration = Calibration(ppm, areas)

    except ConfigError as e:
        print(f"Error: {e}")
        return 1

    calibration.save(args.output)
    print(f"Calibration saved to: {args.output} ({calibration})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
