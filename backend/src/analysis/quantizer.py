"""Color quantizer — coarse 3-D RGB buckets with per-bucket counts and sums."""

from dataclasses import dataclass

import numpy as np

from analysis.errors import ConfigurationError

DEFAULT_BUCKETS_PER_AXIS = 16


@dataclass(frozen=True)
class ColorBucket:
    """One non-empty cell of the quantized RGB cube."""

    index: int
    count: int
    sum_r: int
    sum_g: int
    sum_b: int

    @property
    def centroid(self) -> tuple[float, float, float]:
        return (
            self.sum_r / self.count,
            self.sum_g / self.count,
            self.sum_b / self.count,
        )


def bucket_bits_for(buckets_per_axis: int) -> int:
    """log2 of buckets_per_axis. Raises ConfigurationError unless a power of two in [1, 256]."""
    if isinstance(buckets_per_axis, bool) or not isinstance(buckets_per_axis, int):
        raise ConfigurationError(
            f"buckets_per_axis must be an int, got {type(buckets_per_axis).__name__}"
        )
    if buckets_per_axis <= 0 or buckets_per_axis & (buckets_per_axis - 1):
        raise ConfigurationError(
            f"buckets_per_axis must be a positive power of two, got {buckets_per_axis}"
        )
    if buckets_per_axis > 256:
        raise ConfigurationError(
            f"buckets_per_axis {buckets_per_axis} exceeds 256 (one bucket per 8-bit value)"
        )
    return buckets_per_axis.bit_length() - 1


class BucketTable:
    """Read-only snapshot of bucket storage, safe to hand to other threads."""

    def __init__(self, buckets_per_axis: int, counts: np.ndarray, sums: np.ndarray):
        self.buckets_per_axis = buckets_per_axis
        self.counts = counts
        self.sums = sums
        self.counts.setflags(write=False)
        self.sums.setflags(write=False)

    def __len__(self) -> int:
        return int(np.count_nonzero(self.counts))

    def __eq__(self, other) -> bool:
        if not isinstance(other, BucketTable):
            return NotImplemented
        return (
            self.buckets_per_axis == other.buckets_per_axis
            and np.array_equal(self.counts, other.counts)
            and np.array_equal(self.sums, other.sums)
        )

    __hash__ = None

    @property
    def total(self) -> int:
        return int(self.counts.sum())

    def active(self) -> list[ColorBucket]:
        """Non-empty buckets in ascending index order."""
        return [
            ColorBucket(
                index=int(i),
                count=int(self.counts[i]),
                sum_r=int(self.sums[i, 0]),
                sum_g=int(self.sums[i, 1]),
                sum_b=int(self.sums[i, 2]),
            )
            for i in np.flatnonzero(self.counts)
        ]


class ColorQuantizer:
    """Maps pixels to bucket indices and keeps running count/sum tables.

    Storage is allocated once at construction with buckets_per_axis**3 cells
    and only zeroed on reset.
    """

    def __init__(self, buckets_per_axis: int = DEFAULT_BUCKETS_PER_AXIS):
        self.bucket_bits = bucket_bits_for(buckets_per_axis)
        self.buckets_per_axis = buckets_per_axis
        self.bucket_count = buckets_per_axis**3
        self._shift = 8 - self.bucket_bits
        self.counts = np.zeros(self.bucket_count, dtype=np.int64)
        self.sums = np.zeros((self.bucket_count, 3), dtype=np.int64)

    def reset(self):
        self.counts.fill(0)
        self.sums.fill(0)

    def bucket_index(self, r: int, g: int, b: int) -> int:
        bits, shift = self.bucket_bits, self._shift
        return ((r >> shift) << (2 * bits)) | ((g >> shift) << bits) | (b >> shift)

    def bucket_indices(self, rgb: np.ndarray) -> np.ndarray:
        """Vectorised :meth:`bucket_index` over an (N, 3) uint8 array."""
        bits, shift = self.bucket_bits, self._shift
        q = rgb.astype(np.int64) >> shift
        return (q[:, 0] << (2 * bits)) | (q[:, 1] << bits) | q[:, 2]

    def accumulate(self, r: int, g: int, b: int):
        idx = self.bucket_index(r, g, b)
        self.counts[idx] += 1
        self.sums[idx, 0] += r
        self.sums[idx, 1] += g
        self.sums[idx, 2] += b

    def accumulate_pixels(self, rgb: np.ndarray):
        """Add a slice of (N, 3) uint8 pixels to the bucket tables."""
        if rgb.shape[0] == 0:
            return
        idx = self.bucket_indices(rgb)
        n = self.bucket_count
        self.counts += np.bincount(idx, minlength=n)
        # float64 bincount weights are exact below 2**53
        for ch in range(3):
            self.sums[:, ch] += np.bincount(
                idx, weights=rgb[:, ch], minlength=n
            ).astype(np.int64)

    def snapshot(self) -> BucketTable:
        return BucketTable(self.buckets_per_axis, self.counts.copy(), self.sums.copy())
