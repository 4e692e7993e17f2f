"""Histogram accumulator — 256-bin luminance and per-channel frequency tables."""

from dataclasses import dataclass

import numpy as np

BINS = 256

# Rec. 709 luma weights scaled to integers so the weighted sum floors exactly
# (0.2126, 0.7152, 0.0722) * 10000
LUMA_WEIGHTS = (2126, 7152, 722)
LUMA_SCALE = 10000


def luminance(r: int, g: int, b: int) -> int:
    """Perceptual luminance bin for one 8-bit pixel, in [0, 255]."""
    wr, wg, wb = LUMA_WEIGHTS
    return (wr * r + wg * g + wb * b) // LUMA_SCALE


def luminance_array(rgb: np.ndarray) -> np.ndarray:
    """Vectorised :func:`luminance` over an (N, 3) uint8 array."""
    weights = np.asarray(LUMA_WEIGHTS, dtype=np.int64)
    return (rgb.astype(np.int64) @ weights) // LUMA_SCALE


class HistogramAccumulator:
    """Owns the luminance and R/G/B histograms for one engine instance.

    Counts only ever grow between resets; accumulation order does not matter.
    """

    def __init__(self):
        self.luminance = np.zeros(BINS, dtype=np.int64)
        self.red = np.zeros(BINS, dtype=np.int64)
        self.green = np.zeros(BINS, dtype=np.int64)
        self.blue = np.zeros(BINS, dtype=np.int64)

    def reset(self):
        for table in (self.luminance, self.red, self.green, self.blue):
            table.fill(0)

    def accumulate(self, r: int, g: int, b: int):
        """Count one pixel."""
        self.luminance[luminance(r, g, b)] += 1
        self.red[r] += 1
        self.green[g] += 1
        self.blue[b] += 1

    def accumulate_pixels(self, rgb: np.ndarray):
        """Count a slice of pixels.

        Args:
            rgb: (N, 3) uint8 array of R, G, B samples.
        """
        if rgb.shape[0] == 0:
            return
        self.luminance += np.bincount(luminance_array(rgb), minlength=BINS)[:BINS]
        self.red += np.bincount(rgb[:, 0], minlength=BINS)[:BINS]
        self.green += np.bincount(rgb[:, 1], minlength=BINS)[:BINS]
        self.blue += np.bincount(rgb[:, 2], minlength=BINS)[:BINS]

    @property
    def total(self) -> int:
        return int(self.luminance.sum())

    def snapshot(self) -> "Histograms":
        return Histograms(
            luminance=tuple(int(v) for v in self.luminance),
            red=tuple(int(v) for v in self.red),
            green=tuple(int(v) for v in self.green),
            blue=tuple(int(v) for v in self.blue),
        )


@dataclass(frozen=True)
class Histograms:
    """Immutable copy of the four histograms taken at the end of a scan."""

    luminance: tuple[int, ...]
    red: tuple[int, ...]
    green: tuple[int, ...]
    blue: tuple[int, ...]

    @classmethod
    def empty(cls) -> "Histograms":
        zeros = (0,) * BINS
        return cls(zeros, zeros, zeros, zeros)

    def to_dict(self) -> dict:
        """{"r": [256 ints], "g": [...], "b": [...], "luma": [...]}"""
        return {
            "r": list(self.red),
            "g": list(self.green),
            "b": list(self.blue),
            "luma": list(self.luminance),
        }
