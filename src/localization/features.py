from enum import Enum

import cv2
import numpy as np

from scene.regions import Regions


class DescriptorType(Enum):
    """Enum for descriptor types used in feature extraction."""

    ORB = 0
    SIFT = 1


# factory, descriptor size and dtype of each supported extractor
_EXTRACTORS = {
    DescriptorType.ORB: (cv2.ORB.create, 32, np.uint8),
    DescriptorType.SIFT: (cv2.SIFT.create, 128, np.float32),
}


def extract_regions(
    img: np.ndarray,
    descriptor_type: DescriptorType = DescriptorType.SIFT,
    mask: np.ndarray | None = None,
    **kwargs: float,
) -> Regions:
    """
    Detect keypoints and compute descriptors of one image.

    Args:
        img: Grayscale image
        descriptor_type: ORB (uint8, 32 bytes) or SIFT (float32, 128)
        mask: Optional detection mask
        **kwargs: Passed to the OpenCV constructor

    Returns:
        regions: positions (N, 2) and descriptors (N, D)

    Raises:
        ValueError: If the descriptor type is not supported.

    """
    if descriptor_type not in _EXTRACTORS:
        msg = f"Unsupported descriptor type: {descriptor_type}"
        raise ValueError(msg)
    factory, size, dtype = _EXTRACTORS[descriptor_type]

    keypoints, descriptors = factory(**kwargs).detectAndCompute(img, mask)

    if descriptors is None or len(keypoints) == 0:
        return Regions(
            positions=np.empty((0, 2)), descriptors=np.empty((0, size), dtype=dtype)
        )

    positions = np.array([kp.pt for kp in keypoints], dtype=np.float64)
    return Regions(positions=positions, descriptors=np.asarray(descriptors, dtype=dtype))
