"""Frame delivery utilities."""

from .frame_source import CaptureFrameSource, FrameGate

__all__ = ["CaptureFrameSource", "FrameGate"]
