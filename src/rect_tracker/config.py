"""
Parameter defaults and JSON configuration loading.

Components receive a flat ``params`` dictionary with UPPER_CASE keys.
Configuration files use lower_case keys; older key names are still accepted.
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

DEFAULT_PARAMS = {
    # Track lifecycle
    "CONFIDENCE_THRESHOLD": 0.3,
    # Refinement pass
    "ENABLE_REFINEMENT": True,
    "REFINEMENT_SCOPE": "region",  # region | full_frame
    "REFINEMENT_MARGIN": 0.1,
    "REFINEMENT_MIN_IOU": 0.3,
    # Rectangle detector
    "MAX_OBSERVATIONS": 1,
    "MIN_ASPECT_RATIO": 0.5,
    "MAX_ASPECT_RATIO": 1.0,
    "QUADRATURE_TOLERANCE": 30.0,  # degrees
    "MIN_SIZE": 0.2,  # fraction of the shorter image side
    "MIN_CONFIDENCE": 0.0,
    "CANNY_LOW": 50,
    "CANNY_HIGH": 150,
    # Corner tracker
    "LK_WINDOW_SIZE": 21,
    "LK_MAX_LEVEL": 3,
    "LK_ERROR_SCALE": 30.0,
    # Overlay style
    "OVERLAY_FILL_RGBA": (255, 255, 255, 0.2),
    "OVERLAY_STROKE_RGBA": (0, 0, 255, 0.7),
    "OVERLAY_LINE_WIDTH": 25.0,
    "OVERLAY_LINE_JOIN": "round",
    "OVERLAY_SHADOW_OPACITY": 0.8,
    "OVERLAY_SHADOW_RADIUS": 8.0,
    # Capture
    "CAPTURE_DEVICE": 0,
    "CAPTURE_WIDTH": 640,
    "CAPTURE_HEIGHT": 480,
}

# config-file key -> (param key, legacy config-file keys)
_CONFIG_KEYS = {
    "confidence_threshold": ("CONFIDENCE_THRESHOLD", ("tracking_confidence_threshold", "min_track_confidence")),
    "enable_refinement": ("ENABLE_REFINEMENT", ("refine_tracks",)),
    "refinement_scope": ("REFINEMENT_SCOPE", ()),
    "refinement_margin": ("REFINEMENT_MARGIN", ()),
    "refinement_min_iou": ("REFINEMENT_MIN_IOU", ()),
    "max_observations": ("MAX_OBSERVATIONS", ("maximum_observations",)),
    "min_aspect_ratio": ("MIN_ASPECT_RATIO", ("minimum_aspect_ratio",)),
    "max_aspect_ratio": ("MAX_ASPECT_RATIO", ("maximum_aspect_ratio",)),
    "quadrature_tolerance": ("QUADRATURE_TOLERANCE", ()),
    "min_size": ("MIN_SIZE", ("minimum_size",)),
    "min_confidence": ("MIN_CONFIDENCE", ("minimum_confidence",)),
    "canny_low": ("CANNY_LOW", ()),
    "canny_high": ("CANNY_HIGH", ()),
    "lk_window_size": ("LK_WINDOW_SIZE", ()),
    "lk_max_level": ("LK_MAX_LEVEL", ()),
    "lk_error_scale": ("LK_ERROR_SCALE", ()),
    "overlay_fill_rgba": ("OVERLAY_FILL_RGBA", ("fill_color",)),
    "overlay_stroke_rgba": ("OVERLAY_STROKE_RGBA", ("stroke_color",)),
    "overlay_line_width": ("OVERLAY_LINE_WIDTH", ("line_width",)),
    "overlay_line_join": ("OVERLAY_LINE_JOIN", ()),
    "overlay_shadow_opacity": ("OVERLAY_SHADOW_OPACITY", ()),
    "overlay_shadow_radius": ("OVERLAY_SHADOW_RADIUS", ()),
    "capture_device": ("CAPTURE_DEVICE", ("camera",)),
    "capture_width": ("CAPTURE_WIDTH", ()),
    "capture_height": ("CAPTURE_HEIGHT", ()),
}


def default_params() -> dict:
    """Fresh copy of the default parameters."""
    return dict(DEFAULT_PARAMS)


def params_from_config(cfg: dict) -> dict:
    """
    Merge a lower_case configuration dictionary over the defaults.

    Args:
        cfg (dict): Parsed configuration (new or legacy key names)

    Returns:
        dict: Parameter dictionary with UPPER_CASE keys
    """

    def get_cfg(new_key, *legacy_keys, default=None):
        """Get config value with fallback to legacy keys."""
        if new_key in cfg:
            return cfg[new_key]
        for key in legacy_keys:
            if key in cfg:
                return cfg[key]
        return default

    params = default_params()
    known = set()
    for new_key, (param_key, legacy_keys) in _CONFIG_KEYS.items():
        known.add(new_key)
        known.update(legacy_keys)
        value = get_cfg(new_key, *legacy_keys, default=None)
        if value is None:
            continue
        if isinstance(value, list):
            value = tuple(value)
        params[param_key] = value

    for key in cfg:
        if key not in known:
            logger.debug("Ignoring unknown config key: %s", key)
    return params


def load_params(config_path) -> dict:
    """Load parameters from a JSON config file; missing files yield the defaults."""
    if not config_path or not os.path.isfile(config_path):
        if config_path:
            logger.warning("Config file not found: %s (using defaults)", config_path)
        return default_params()

    with open(config_path, "r", encoding="utf-8") as f:
        cfg = json.load(f)
    if not isinstance(cfg, dict):
        raise ValueError(f"Config file {config_path} must contain a JSON object")

    params = params_from_config(cfg)
    validate_params(params)
    logger.info("Configuration loaded from %s", config_path)
    return params


def save_params(params: dict, config_path) -> None:
    """Write parameters as a lower_case JSON config file."""
    cfg = {}
    for new_key, (param_key, _) in _CONFIG_KEYS.items():
        if param_key in params:
            value = params[param_key]
            cfg[new_key] = list(value) if isinstance(value, tuple) else value
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(cfg, f, indent=2)
    logger.info("Configuration saved to %s", config_path)


def validate_params(params: dict) -> None:
    """Raise ValueError for out-of-range parameters."""
    threshold = params["CONFIDENCE_THRESHOLD"]
    if not 0.0 <= float(threshold) <= 1.0:
        raise ValueError(f"CONFIDENCE_THRESHOLD must be in [0, 1], got {threshold}")
    if params["REFINEMENT_SCOPE"] not in ("region", "full_frame"):
        raise ValueError(f"REFINEMENT_SCOPE must be 'region' or 'full_frame', got {params['REFINEMENT_SCOPE']!r}")
    if float(params["REFINEMENT_MARGIN"]) < 0:
        raise ValueError("REFINEMENT_MARGIN must be non-negative")
    if int(params["MAX_OBSERVATIONS"]) < 0:
        raise ValueError("MAX_OBSERVATIONS must be non-negative")
    if not 0.0 <= float(params["MIN_ASPECT_RATIO"]) <= float(params["MAX_ASPECT_RATIO"]) <= 1.0:
        raise ValueError("Aspect ratio bounds must satisfy 0 <= MIN_ASPECT_RATIO <= MAX_ASPECT_RATIO <= 1")
    if not 0.0 <= float(params["MIN_SIZE"]) <= 1.0:
        raise ValueError("MIN_SIZE must be in [0, 1]")
    for key in ("OVERLAY_FILL_RGBA", "OVERLAY_STROKE_RGBA"):
        if len(params[key]) != 4:
            raise ValueError(f"{key} must have four components (r, g, b, alpha)")
    if int(params["CAPTURE_WIDTH"]) <= 0 or int(params["CAPTURE_HEIGHT"]) <= 0:
        raise ValueError("Capture resolution must be positive")
