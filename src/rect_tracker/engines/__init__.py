"""Concrete detector/tracker capabilities."""

from .opencv_engine import OpenCVRectangleEngine

__all__ = ["OpenCVRectangleEngine"]
