"""ToneAnalyzer — the engine object tying scan, thresholds and derived outputs together."""

import logging

from analysis.histogram import Histograms
from analysis.palette import PaletteEntry, reduce_palette
from analysis.quantizer import DEFAULT_BUCKETS_PER_AXIS, BucketTable
from analysis.scan import (
    DEFAULT_SLICE_PIXELS,
    ProgressCallback,
    ScanDriver,
    ScanResult,
)
from analysis.tone import ToneSummary, ToneThresholds, summarize

logger = logging.getLogger(__name__)


class ToneAnalyzer:
    """Owns histogram/bucket storage for one image at a time.

    Palette and tone summary are recomputed from the last scan on every
    request; only the scan itself touches pixel data.
    """

    def __init__(
        self,
        buckets_per_axis: int = DEFAULT_BUCKETS_PER_AXIS,
        slice_pixels: int = DEFAULT_SLICE_PIXELS,
        thresholds: ToneThresholds | None = None,
    ):
        self.driver = ScanDriver(buckets_per_axis, slice_pixels)
        self._thresholds = thresholds or ToneThresholds()
        self._result: ScanResult | None = None

    @property
    def buckets_per_axis(self) -> int:
        return self.driver.quantizer.buckets_per_axis

    @property
    def thresholds(self) -> ToneThresholds:
        return self._thresholds

    def set_thresholds(self, shadow: int, highlight: int) -> ToneThresholds:
        """Replace the thresholds. Raises ThresholdError and keeps the old pair if invalid."""
        self._thresholds = ToneThresholds(shadow, highlight)
        logger.debug("Thresholds set to %d/%d", shadow, highlight)
        return self._thresholds

    def drag_threshold(self, level: int) -> ToneThresholds:
        """Move the nearer threshold handle to ``level`` (clamped)."""
        self._thresholds = self._thresholds.drag(level)
        return self._thresholds

    def scan(
        self,
        pixels,
        width: int,
        height: int,
        on_progress: ProgressCallback | None = None,
    ) -> ScanResult:
        self._result = self.driver.scan(pixels, width, height, on_progress)
        return self._result

    def iter_scan(self, pixels, width: int, height: int):
        """Generator form of :meth:`scan`; the result is stored when it finishes.

        The buffer is validated before the generator is returned.
        """
        steps = self.driver.iter_scan(pixels, width, height)
        self._result = None
        return self._collect(steps)

    def _collect(self, steps):
        self._result = yield from steps
        return self._result

    @property
    def result(self) -> ScanResult | None:
        return self._result

    @property
    def total_pixels(self) -> int:
        return self._result.total_pixels if self._result else 0

    @property
    def histograms(self) -> Histograms:
        return self._result.histograms if self._result else Histograms.empty()

    @property
    def buckets(self) -> BucketTable:
        if self._result is None:
            return self.driver.quantizer.snapshot()
        return self._result.buckets

    def palette(self) -> list[PaletteEntry]:
        if self._result is None:
            return []
        return reduce_palette(self._result.buckets)

    def summary(self, thresholds: ToneThresholds | None = None) -> ToneSummary:
        """Tone summary of the last scan under ``thresholds`` (default: current)."""
        return summarize(
            self.histograms.luminance,
            self.total_pixels,
            thresholds or self._thresholds,
        )
