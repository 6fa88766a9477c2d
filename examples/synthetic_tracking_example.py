#!/usr/bin/env python3
"""
Example script demonstrating the detect/track pipeline without a camera.

This shows how to:
1. Drive FramePipeline directly with synthetic frames
2. Map the emitted observations into overlay space for an upright phone preview
"""

import cv2
import numpy as np
from rect_tracker.config import default_params
from rect_tracker.core import FramePipeline, OverlayEmitter, OverlayGeometry
from rect_tracker.core.types import Frame
from rect_tracker.engines import OpenCVRectangleEngine

params = default_params()
params["CONFIDENCE_THRESHOLD"] = 0.3

engine = OpenCVRectangleEngine(params)
pipeline = FramePipeline(engine, engine, params)
emitter = OverlayEmitter(OverlayGeometry((640, 480), (390, 844), preview_size=(390, 844)))

print("Tracking a rectangle drifting to the right")
print("=" * 50)

for i in range(10):
    image = np.zeros((480, 640, 3), dtype=np.uint8)
    x = 180 + 4 * i
    cv2.rectangle(image, (x, 150), (x + 240, 330), (255, 255, 255), thickness=-1)
    output = pipeline.advance(Frame(image=image, timestamp=i / 30.0))
    batch = emitter.emit(output.observations, frame_timestamp=output.frame_timestamp)

    print(f"Frame {i}: state={output.state.value} stage={output.stage} rectangles={len(batch)}")
    for track, polygon in zip(output.tracks, batch.polygons()):
        corners = ", ".join(f"({px:.0f}, {py:.0f})" for px, py in polygon)
        print(f"  Track {track.track_id} (confidence {track.confidence:.2f}): {corners}")

print()
print(f"Stats: {pipeline.stats.as_dict()}")
