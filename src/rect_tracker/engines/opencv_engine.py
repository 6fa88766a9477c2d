"""
OpenCV rectangle detector and corner tracker.

Detection finds convex quadrilaterals in the Canny edge map and filters them
by aspect ratio, corner angles and size. Tracking follows the four corners of
each observation with pyramidal Lucas-Kanade optical flow between
consecutive frames.
"""

import logging
import math

import cv2
import numpy as np

from ..core.errors import DetectionError, TrackingError
from ..core.geometry import box_iou
from ..core.types import RectangleObservation, TrackerResult

logger = logging.getLogger(__name__)

NMS_IOU = 0.5


def order_corners(points) -> np.ndarray:
    """
    Order four normalized (bottom-left origin) points as BL, BR, TR, TL.

    Points are sorted counter-clockwise around their centroid, starting from
    the one closest to the bottom-left direction.
    """
    pts = np.asarray(points, dtype=np.float64).reshape(4, 2)
    centre = pts.mean(axis=0)
    angles = np.arctan2(pts[:, 1] - centre[1], pts[:, 0] - centre[0])
    order = list(np.argsort(angles))
    # Angular distance from -135 degrees
    distance = np.abs(np.mod(angles + 0.75 * np.pi + np.pi, 2 * np.pi) - np.pi)
    start = order.index(int(np.argmin(distance)))
    order = order[start:] + order[:start]
    return pts[order]


def corner_angles(quad) -> np.ndarray:
    """Interior angle in degrees at each vertex of a closed polygon."""
    pts = np.asarray(quad, dtype=np.float64)
    prev_vec = np.roll(pts, 1, axis=0) - pts
    next_vec = np.roll(pts, -1, axis=0) - pts
    norms = np.linalg.norm(prev_vec, axis=1) * np.linalg.norm(next_vec, axis=1)
    norms = np.where(norms == 0, 1e-12, norms)
    cos = np.clip(np.sum(prev_vec * next_vec, axis=1) / norms, -1.0, 1.0)
    return np.degrees(np.arccos(cos))


def _to_gray(image, error_cls):
    if image is None or not hasattr(image, "ndim"):
        raise error_cls(f"Frame image must be a numpy array, got {type(image).__name__}")
    if image.ndim == 2:
        return image
    if image.ndim == 3 and image.shape[2] == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    raise error_cls(f"Unsupported frame shape {image.shape}")


class OpenCVRectangleEngine:
    """
    Detector and tracker capability backed by OpenCV.

    The engine keeps the grayscale version of the last frame it saw (from
    either call) as the reference image for optical flow, so it must be
    driven by a single pipeline in frame order.

    Corners are measured on the image as captured. ``Frame.intrinsics`` is
    ignored: the overlay is drawn over the same distorted image, so
    undistorting the corners would misplace it.
    """

    def __init__(self, params):
        """
        Args:
            params (dict): Detector and tracker parameters (see ``rect_tracker.config``)
        """
        self.params = params
        self._prev_gray = None

    # --- detection ---

    def _roi_bounds(self, shape, region):
        height, width = shape[:2]
        if region is None:
            return 0, 0, width, height
        x, y, w, h = region
        col0 = int(math.floor(max(0.0, x) * width))
        col1 = int(math.ceil(min(1.0, x + w) * width))
        row0 = int(math.floor(max(0.0, 1.0 - (y + h)) * height))
        row1 = int(math.ceil(min(1.0, 1.0 - y) * height))
        return col0, row0, col1, row1

    def _candidate_quads(self, gray, col0, row0, col1, row1):
        p = self.params
        roi = gray[row0:row1, col0:col1]
        blurred = cv2.GaussianBlur(roi, (5, 5), 0)
        edges = cv2.Canny(blurred, p.get("CANNY_LOW", 50), p.get("CANNY_HIGH", 150))
        edges = cv2.dilate(edges, np.ones((3, 3), np.uint8), iterations=1)
        contours, _ = cv2.findContours(
            edges, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE, offset=(col0, row0)
        )

        min_aspect = float(p.get("MIN_ASPECT_RATIO", 0.5))
        max_aspect = float(p.get("MAX_ASPECT_RATIO", 1.0))
        tolerance = float(p.get("QUADRATURE_TOLERANCE", 30.0))
        min_side = float(p.get("MIN_SIZE", 0.2)) * min(row1 - row0, col1 - col0)
        min_confidence = float(p.get("MIN_CONFIDENCE", 0.0))

        quads = []
        for contour in contours:
            perimeter = cv2.arcLength(contour, True)
            approx = cv2.approxPolyDP(contour, 0.02 * perimeter, True)
            if len(approx) != 4 or not cv2.isContourConvex(approx):
                continue

            quad = approx.reshape(4, 2).astype(np.float64)
            sides = np.linalg.norm(np.roll(quad, -1, axis=0) - quad, axis=1)
            side_a = (sides[0] + sides[2]) / 2.0
            side_b = (sides[1] + sides[3]) / 2.0
            short, long = min(side_a, side_b), max(side_a, side_b)
            if long <= 0:
                continue
            if not min_aspect <= short / long <= max_aspect:
                continue
            if np.any(np.abs(corner_angles(quad) - 90.0) > tolerance):
                continue
            if short < min_side:
                continue

            quad_area = cv2.contourArea(approx)
            if quad_area <= 0:
                continue
            score = min(1.0, cv2.contourArea(contour) / quad_area)
            if score < min_confidence:
                continue
            quads.append((score, quad_area, quad))
        return quads

    def detect(self, frame, region=None):
        """
        Detect rectangles in ``frame``.

        Args:
            frame (Frame): Frame to search
            region (tuple): Optional normalized (x, y, w, h) search region,
                bottom-left origin

        Returns:
            list: RectangleObservation objects, best first
        """
        gray = _to_gray(frame.image, DetectionError)
        self._prev_gray = gray
        height, width = gray.shape[:2]

        col0, row0, col1, row1 = self._roi_bounds(gray.shape, region)
        if col1 - col0 < 3 or row1 - row0 < 3:
            return []

        quads = self._candidate_quads(gray, col0, row0, col1, row1)
        quads.sort(key=lambda item: (item[0], item[1]), reverse=True)

        limit = int(self.params.get("MAX_OBSERVATIONS", 1))
        kept = []
        for score, _, quad in quads:
            normalized = np.column_stack([quad[:, 0] / width, 1.0 - quad[:, 1] / height])
            observation = RectangleObservation.from_corners(order_corners(normalized), score)
            box = observation.bounding_box()
            if any(box_iou(box, other.bounding_box()) > NMS_IOU for other in kept):
                continue
            kept.append(observation)
            if limit and len(kept) >= limit:
                break

        logger.debug("Detector found %d candidate(s), kept %d", len(quads), len(kept))
        return kept

    # --- tracking ---

    def track(self, frame, previous_observations):
        """
        Follow each observation's corners into ``frame``.

        Args:
            frame (Frame): Current frame
            previous_observations (list): Observations from the previous frame

        Returns:
            list: One TrackerResult per input observation, in input order
        """
        gray = _to_gray(frame.image, TrackingError)
        prev, self._prev_gray = self._prev_gray, gray
        if prev is None or prev.shape != gray.shape:
            logger.debug("No reference image for optical flow, keeping observations")
            return [
                TrackerResult(i, obs, obs.confidence)
                for i, obs in enumerate(previous_observations)
            ]

        height, width = gray.shape[:2]
        window = int(self.params.get("LK_WINDOW_SIZE", 21))
        max_level = int(self.params.get("LK_MAX_LEVEL", 3))
        error_scale = float(self.params.get("LK_ERROR_SCALE", 30.0))

        results = []
        for index, obs in enumerate(previous_observations):
            corners = obs.corners()
            p0 = np.column_stack([corners[:, 0] * width, (1.0 - corners[:, 1]) * height])
            p0 = p0.astype(np.float32).reshape(-1, 1, 2)
            p1, status, err = cv2.calcOpticalFlowPyrLK(
                prev, gray, p0, None, winSize=(window, window), maxLevel=max_level
            )

            ok = status.ravel() == 1 if status is not None else np.zeros(4, dtype=bool)
            if not ok.any():
                results.append(TrackerResult(index, obs.with_confidence(0.0), 0.0))
                continue

            # Lost corners stay where they were
            moved = np.where(ok[:, None], p1.reshape(-1, 2), p0.reshape(-1, 2))
            mean_err = float(err.ravel()[ok].mean())
            confidence = ok.mean() * math.exp(-mean_err / error_scale)
            if not cv2.isContourConvex(moved.astype(np.float32).reshape(-1, 1, 2)):
                confidence = 0.0
            confidence = float(min(1.0, max(0.0, confidence)))

            normalized = np.column_stack([moved[:, 0] / width, 1.0 - moved[:, 1] / height])
            tracked = RectangleObservation.from_corners(normalized, confidence)
            results.append(TrackerResult(index, tracked, confidence))
        return results
