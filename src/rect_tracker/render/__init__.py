"""Frame renderers for headless output."""

from .opencv_renderer import OpenCVOverlayRenderer

__all__ = ["OpenCVOverlayRenderer"]
