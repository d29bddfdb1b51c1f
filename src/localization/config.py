from dataclasses import dataclass

from localization.matching import MatcherType


@dataclass
class LocalizerConfig:
    """Configuration data class for the single image localizer."""

    # matching
    ratio_threshold: float = 0.8  # best match must be < ratio * second best
    matcher_type: MatcherType | None = None  # None: pick from descriptor dtype

    # resection
    use_calibration_hint: bool = True  # pass K to the solver for pinhole cameras
    ransac_iterations: int = 4096
    ransac_confidence: float = 0.999
    reprojection_threshold: float = 4.0  # max inlier error in pixels
    random_seed: int | None = 0  # DLT sampler, None for a fresh seed per query

    # pose refinement on inliers (needs a calibration hint)
    refine_pose: bool = False


def get_config(preset: str) -> LocalizerConfig:
    """
    Return the configuration for a preset.

    Args:
        preset: Name of the preset (default, fast, accurate).

    Returns:
        The configuration object with preset-specific overrides.

    Raises:
        ValueError: If the preset is unknown.

    """
    cfg = LocalizerConfig()

    if preset == "default":
        pass

    elif preset == "fast":
        cfg.matcher_type = MatcherType.ANN_L2
        cfg.ransac_iterations = 512
        cfg.ransac_confidence = 0.99

    elif preset == "accurate":
        cfg.ratio_threshold = 0.7
        cfg.ransac_iterations = 10000
        cfg.reprojection_threshold = 2.0
        cfg.refine_pose = True

    else:
        msg = f"Unknown preset: {preset}"
        raise ValueError(msg)

    return cfg
