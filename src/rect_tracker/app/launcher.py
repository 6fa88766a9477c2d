#!/usr/bin/env python3
"""
Main entry point for the live rectangle tracker.

Opens a camera or video file, runs the detect/track pipeline on a worker
thread and shows the overlay in a Qt window, or writes it headless to a
video file.
"""

import argparse
import logging
import os
import sys
import time

from .. import __version__
from ..config import load_params, validate_params
from ..core.diagnostics import LoggingDiagnosticsSink, PipelineStats
from ..core.errors import GeometryConfigurationError
from ..core.geometry import OverlayGeometry
from ..core.overlay import OverlayEmitter, OverlayStyle
from ..core.pipeline import FramePipeline
from ..core.types import DeviceOrientation
from ..core.worker import OverlayChannel, PipelineWorker
from ..utils.frame_source import CaptureFrameSource, FrameGate

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = (480, 640)


def setup_logging(log_level=logging.INFO):
    """Set up console logging for the tracker."""
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    logger.info("Rect-Tracker %s starting up...", __version__)
    logger.info("Python version: %s", sys.version)
    logger.info("Working directory: %s", os.getcwd())


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Rect-Tracker - live rectangle detection and tracking overlay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  rect-tracker                                  # Camera 0 in a preview window
  rect-tracker --video clip.mp4 --headless --output out.mp4
  rect-tracker --threshold 0.5 --log-level DEBUG
        """,
    )

    source = parser.add_mutually_exclusive_group()
    source.add_argument("--camera", type=int, help="Capture device index (default: from config)")
    source.add_argument("--video", type=str, help="Read frames from a video file instead of a camera")

    parser.add_argument("--config", type=str, help="JSON configuration file")
    parser.add_argument(
        "--threshold", type=float, help="Track confidence threshold in [0, 1] (overrides config)"
    )
    parser.add_argument(
        "--orientation",
        choices=[o.value for o in DeviceOrientation],
        default=DeviceOrientation.UPRIGHT.value,
        help="Device orientation reported with every frame (default: portrait)",
    )
    parser.add_argument("--headless", action="store_true", help="Run without a preview window")
    parser.add_argument("--output", type=str, help="Write the overlaid video here (headless mode)")
    parser.add_argument(
        "--max-frames", type=int, default=0, help="Stop after this many processed frames (0 = no limit)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Set the logging level (default: INFO)",
    )
    parser.add_argument("--version", action="version", version=f"Rect-Tracker {__version__}")

    return parser.parse_args(argv)


def check_dependencies(gui=True):
    """Check that all required dependencies are available."""
    required_modules = [
        ("numpy", "numpy"),
        ("cv2", "opencv-python"),
    ]
    if gui:
        required_modules.append(("PySide6", "PySide6"))

    missing_modules = []
    for module_name, package_name in required_modules:
        try:
            __import__(module_name)
        except ImportError:
            missing_modules.append(package_name)

    if missing_modules:
        print("Error: Missing required dependencies:")
        for package in missing_modules:
            print(f"  - {package}")
        print("\nPlease install missing packages with:")
        print(f"pip install {' '.join(missing_modules)}")
        return False

    return True


def build_params(args):
    """Load the configuration and apply command line overrides."""
    params = load_params(args.config)
    if args.threshold is not None:
        params["CONFIDENCE_THRESHOLD"] = args.threshold
    if args.camera is not None:
        params["CAPTURE_DEVICE"] = args.camera
    validate_params(params)
    return params


def open_capture(args, params):
    import cv2

    if args.video:
        cap = cv2.VideoCapture(args.video)
    else:
        cap = cv2.VideoCapture(int(params["CAPTURE_DEVICE"]))
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, int(params["CAPTURE_WIDTH"]))
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, int(params["CAPTURE_HEIGHT"]))
    if not cap.isOpened():
        raise RuntimeError(f"Cannot open capture source: {args.video or params['CAPTURE_DEVICE']}")
    return cap


def build_pipeline(params, diagnostics=None, stats=None):
    from ..engines.opencv_engine import OpenCVRectangleEngine

    engine = OpenCVRectangleEngine(params)
    return FramePipeline(engine, engine, params, diagnostics=diagnostics, stats=stats)


def capture_size_for(source, params):
    width, height = source.resolution()
    if width <= 0 or height <= 0:
        width, height = int(params["CAPTURE_WIDTH"]), int(params["CAPTURE_HEIGHT"])
    return width, height


def _wait_for_completion(source, worker, gate, max_frames):
    while True:
        time.sleep(0.05)
        if worker.exception is not None or source.exception is not None:
            return
        if max_frames and worker.turn >= max_frames:
            logger.info("Reached --max-frames=%d", max_frames)
            return
        if source.finished.is_set() and gate.idle:
            return


def run_headless(args, params, cap):
    """Process frames without a window; optionally write the overlaid video."""
    import cv2

    from ..render.opencv_renderer import OpenCVOverlayRenderer

    orientation = DeviceOrientation.parse(args.orientation)
    sink = LoggingDiagnosticsSink()
    gate = FrameGate()
    source = CaptureFrameSource(
        cap, gate, orientation_provider=lambda: orientation, realtime=not args.video,
        diagnostics=sink,
    )
    capture_size = capture_size_for(source, params)

    stats = PipelineStats()
    pipeline = build_pipeline(params, diagnostics=sink, stats=stats)
    geometry = OverlayGeometry(capture_size, capture_size, preview_size=capture_size, orientation=orientation)
    renderer = OpenCVOverlayRenderer(geometry, OverlayStyle.from_params(params))
    emitter = OverlayEmitter(geometry, renderer)

    writer = None
    if args.output:
        fps = cap.get(cv2.CAP_PROP_FPS) or 30.0
        width, height = renderer.canvas_size()
        writer = cv2.VideoWriter(args.output, cv2.VideoWriter_fourcc(*"mp4v"), fps, (width, height))
        logger.info("Writing overlay video to %s (%dx%d @ %.1f fps)", args.output, width, height, fps)

    def on_output(output, update):
        if writer is not None:
            writer.write(renderer.compose(update.image, update.batch))

    worker = PipelineWorker(pipeline, emitter, gate, on_output=on_output, keep_images=writer is not None)

    worker.start()
    source.start()
    try:
        _wait_for_completion(source, worker, gate, args.max_frames)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        source.stop()
        gate.close()
        worker.stop()
        cap.release()
        if writer is not None:
            writer.release()

    logger.info("Pipeline stats: %s", stats.as_dict())
    if worker.exception is not None or source.exception is not None:
        return 1
    return 0


def run_gui(args, params, cap):
    """Show the live preview with the overlay in a Qt window."""
    from PySide6.QtWidgets import QApplication

    from ..gui.overlay_view import OverlayView

    app = QApplication.instance() or QApplication(sys.argv)
    app.setApplicationName("RectTracker")
    app.setApplicationDisplayName("Rect-Tracker")
    app.setApplicationVersion(__version__)

    orientation = DeviceOrientation.parse(args.orientation)
    sink = LoggingDiagnosticsSink()
    gate = FrameGate()
    source = CaptureFrameSource(
        cap, gate, orientation_provider=lambda: orientation, realtime=not args.video,
        diagnostics=sink,
    )
    capture_size = capture_size_for(source, params)

    stats = PipelineStats()
    pipeline = build_pipeline(params, diagnostics=sink, stats=stats)
    geometry = OverlayGeometry(capture_size, DEFAULT_WINDOW_SIZE, orientation=orientation)
    emitter = OverlayEmitter(geometry)
    channel = OverlayChannel()
    worker = PipelineWorker(pipeline, emitter, gate, channel)

    view = OverlayView(channel, on_resize=worker.resize_viewport, style=OverlayStyle.from_params(params))
    view.setWindowTitle("Rect-Tracker")
    view.resize(*DEFAULT_WINDOW_SIZE)

    worker.start()
    source.start()
    view.show()
    logger.info("Rect-Tracker window launched")
    try:
        exit_code = app.exec()
    finally:
        source.stop()
        gate.close()
        worker.stop()
        cap.release()
    logger.info("Application exited with code %s; pipeline stats: %s", exit_code, stats.as_dict())
    return exit_code


def main(argv=None):
    """
    Application entry point.

    Parses command line arguments, sets up logging, checks dependencies,
    builds the pipeline and runs it headless or in a preview window.
    """
    args = parse_arguments(argv)
    setup_logging(getattr(logging, args.log_level.upper()))

    if not check_dependencies(gui=not args.headless):
        sys.exit(1)

    try:
        params = build_params(args)
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(2)

    try:
        cap = open_capture(args, params)
    except RuntimeError as e:
        logger.error("%s", e)
        sys.exit(1)

    try:
        if args.headless:
            exit_code = run_headless(args, params, cap)
        else:
            exit_code = run_gui(args, params, cap)
    except GeometryConfigurationError as e:
        cap.release()
        logger.error("Overlay geometry cannot be configured: %s", e)
        sys.exit(2)
    except Exception as e:
        logger.error("Unexpected error: %s", e, exc_info=True)
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
