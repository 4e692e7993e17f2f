"""Tone classifier — zone statistics and key classification from a luminance histogram."""

import operator
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

import numpy as np

from analysis.errors import ThresholdError
from analysis.histogram import BINS

DEFAULT_SHADOW_LEVEL = 64
DEFAULT_HIGHLIGHT_LEVEL = 192

# Classification constants (not configurable)
ZONE_DOMINANCE = 0.35
HIGH_KEY_MEAN = 150
LOW_KEY_MEAN = 105


class ToneKey(Enum):
    HIGH_KEY = "high-key"
    LOW_KEY = "low-key"
    NEUTRAL = "neutral/wide-contrast"


def _as_level(name: str, value) -> int:
    """Accept any integral value (numpy included) except bool."""
    if isinstance(value, bool):
        raise ThresholdError(f"{name} level must be an int, got {value!r}")
    try:
        return operator.index(value)
    except TypeError as e:
        raise ThresholdError(f"{name} level must be an int, got {value!r}") from e


@dataclass(frozen=True)
class ToneThresholds:
    """Shadow and highlight levels; shadow zone is [0, shadow], highlight is (highlight, 255].

    Construction validates the pair, so an instance is always usable by
    :func:`summarize`.
    """

    shadow: int = DEFAULT_SHADOW_LEVEL
    highlight: int = DEFAULT_HIGHLIGHT_LEVEL

    def __post_init__(self):
        for name in ("shadow", "highlight"):
            level = _as_level(name, getattr(self, name))
            # normalise numpy integers to plain ints
            object.__setattr__(self, name, level)
            if not 0 <= level <= BINS - 1:
                raise ThresholdError(f"{name} level {level} outside [0, {BINS - 1}]")
        if self.shadow >= self.highlight:
            raise ThresholdError(
                f"shadow level {self.shadow} must be below highlight level {self.highlight}"
            )

    def drag(self, level: int) -> "ToneThresholds":
        """Move whichever handle is nearer to ``level``, clamped to keep the pair ordered.

        Ties move the shadow handle.
        """
        level = max(0, min(BINS - 1, int(level)))
        if abs(level - self.shadow) <= abs(level - self.highlight):
            return ToneThresholds(min(level, self.highlight - 1), self.highlight)
        return ToneThresholds(self.shadow, max(level, self.shadow + 1))


@dataclass(frozen=True)
class ToneSummary:
    mean: float
    median: int
    peak_bin: int
    peak_count: int
    shadow: float
    midtone: float
    highlight: float
    key: ToneKey
    clipped_shadows: float = 0.0
    clipped_highlights: float = 0.0

    def to_dict(self) -> dict:
        return {
            "mean": round(self.mean, 4),
            "median": self.median,
            "peak_bin": self.peak_bin,
            "peak_count": self.peak_count,
            "shadow": self.shadow,
            "midtone": self.midtone,
            "highlight": self.highlight,
            "key": self.key.value,
            "clipped_shadows": self.clipped_shadows,
            "clipped_highlights": self.clipped_highlights,
        }


def classify(mean: float, shadow: float, highlight: float) -> ToneKey:
    """High-key wins over low-key when both would apply."""
    if highlight > ZONE_DOMINANCE and mean > HIGH_KEY_MEAN:
        return ToneKey.HIGH_KEY
    if shadow > ZONE_DOMINANCE and mean < LOW_KEY_MEAN:
        return ToneKey.LOW_KEY
    return ToneKey.NEUTRAL


def summarize(
    luminance: Sequence[int],
    total_pixels: int,
    thresholds: ToneThresholds,
) -> ToneSummary:
    """Derive tone statistics from a finished luminance histogram.

    Args:
        luminance:    256 bin counts.
        total_pixels: Pixel count the histogram was built from.
        thresholds:   Validated shadow/highlight pair.

    Returns:
        ToneSummary. With ``total_pixels == 0`` every statistic is 0 and the
        key is neutral; an all-zero histogram means "no data", not black.
    """
    hist = np.asarray(luminance, dtype=np.int64)
    if hist.shape != (BINS,):
        raise ValueError(f"luminance histogram must have {BINS} bins, got {hist.shape}")

    peak_bin = int(np.argmax(hist))
    peak_count = int(hist[peak_bin])

    if total_pixels <= 0:
        return ToneSummary(
            mean=0.0,
            median=0,
            peak_bin=peak_bin,
            peak_count=peak_count,
            shadow=0.0,
            midtone=0.0,
            highlight=0.0,
            key=ToneKey.NEUTRAL,
        )

    mean = float(np.dot(np.arange(BINS, dtype=np.int64), hist)) / total_pixels
    cumulative = np.cumsum(hist)
    median = int(np.searchsorted(cumulative, total_pixels / 2, side="left"))
    median = min(median, BINS - 1)

    s, h = thresholds.shadow, thresholds.highlight
    shadow_count = int(hist[: s + 1].sum())
    mid_count = int(hist[s + 1 : h + 1].sum())
    highlight_count = int(hist[h + 1 :].sum())

    shadow = shadow_count / total_pixels
    midtone = mid_count / total_pixels
    highlight = highlight_count / total_pixels

    return ToneSummary(
        mean=mean,
        median=median,
        peak_bin=peak_bin,
        peak_count=peak_count,
        shadow=shadow,
        midtone=midtone,
        highlight=highlight,
        key=classify(mean, shadow, highlight),
        clipped_shadows=int(hist[0]) / total_pixels,
        clipped_highlights=int(hist[BINS - 1]) / total_pixels,
    )
