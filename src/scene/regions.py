from dataclasses import dataclass, field

import numpy as np


@dataclass
class Regions:
    """Local features of one image: positions and descriptors."""

    positions: np.ndarray = field(
        default_factory=lambda: np.empty((0, 2))
    )  # (N, 2) array of pixel coordinates [u, v]
    descriptors: np.ndarray = field(
        default_factory=lambda: np.empty((0, 0), dtype=np.float32)
    )  # (N, D) array of feature descriptors

    def __len__(self) -> int:
        return len(self.positions)

    @property
    def dtype(self) -> np.dtype:
        return self.descriptors.dtype

    @property
    def descriptor_size(self) -> int:
        return self.descriptors.shape[1] if self.descriptors.ndim == 2 else 0

    def empty_clone(self) -> "RegionsAccumulator":
        """Create an empty accumulator holding the same descriptor type."""
        return RegionsAccumulator(dtype=self.dtype, descriptor_size=self.descriptor_size)

    def copy_region(self, index: int, accumulator: "RegionsAccumulator") -> None:
        """
        Append feature `index` to an accumulator of the same type.

        Raises:
            IndexError: If index is not a valid feature index.

        """
        if index < 0 or index >= len(self):
            raise IndexError(f"Feature index {index} out of range ({len(self)})")
        accumulator.append(self.positions[index], self.descriptors[index])


class RegionsAccumulator:
    """Append-only buffer of regions, frozen into Regions when done."""

    def __init__(self, dtype: np.dtype, descriptor_size: int) -> None:
        self.dtype = np.dtype(dtype)
        self.descriptor_size = descriptor_size
        self._positions: list[np.ndarray] = []
        self._descriptors: list[np.ndarray] = []

    def __len__(self) -> int:
        return len(self._descriptors)

    def append(self, position: np.ndarray, descriptor: np.ndarray) -> None:
        self._positions.append(np.asarray(position, dtype=np.float64).reshape(2))
        self._descriptors.append(
            np.asarray(descriptor, dtype=self.dtype).reshape(self.descriptor_size)
        )

    def freeze(self) -> Regions:
        """Stack the buffered rows into read-only arrays."""
        if self._descriptors:
            positions = np.vstack(self._positions)
            descriptors = np.vstack(self._descriptors)
        else:
            positions = np.empty((0, 2))
            descriptors = np.empty((0, self.descriptor_size), dtype=self.dtype)

        positions.setflags(write=False)
        descriptors.setflags(write=False)
        return Regions(positions=positions, descriptors=descriptors)
