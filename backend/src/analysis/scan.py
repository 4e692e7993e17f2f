"""Chunked scan driver — feeds RGBA pixels to the accumulators in bounded slices.

The scan is a generator: after every slice it yields a ScanProgress and
suspends, so the host decides when to resume (a worker thread looping
straight through, an event loop interleaving UI work, ...). ``scan()`` is the
run-to-completion wrapper that forwards each step to a progress callback.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Generator

import numpy as np

from analysis.errors import InvalidPixelBufferError
from analysis.histogram import HistogramAccumulator, Histograms
from analysis.palette import PaletteEntry, reduce_palette
from analysis.quantizer import (
    DEFAULT_BUCKETS_PER_AXIS,
    BucketTable,
    ColorQuantizer,
)

logger = logging.getLogger(__name__)

CHANNELS = 4
DEFAULT_SLICE_PIXELS = 100_000

NOTE_SCANNING = "Computing histogram…"
NOTE_EMPTY = "No pixels to scan"

ProgressCallback = Callable[[float, str], None]


@dataclass(frozen=True)
class ScanProgress:
    fraction: float
    note: str
    slices_done: int
    slice_count: int


@dataclass(frozen=True)
class ScanResult:
    """Consolidated output of one completed scan."""

    histograms: Histograms
    buckets: BucketTable
    total_pixels: int
    palette: list[PaletteEntry]
    width: int
    height: int


def as_sample_array(pixels, width: int, height: int) -> np.ndarray:
    """Validate an interleaved RGBA buffer and return it as a flat uint8 view.

    Accepts bytes-like objects or a uint8 ndarray of any shape. Never copies
    unless the ndarray is non-contiguous, and never writes.

    Raises:
        InvalidPixelBufferError: length is not a multiple of 4 or does not
            equal width * height * 4.
    """
    if isinstance(pixels, np.ndarray):
        if pixels.dtype != np.uint8:
            raise InvalidPixelBufferError(
                f"pixel array must be uint8, got {pixels.dtype}"
            )
        samples = pixels.reshape(-1)
    else:
        try:
            samples = np.frombuffer(memoryview(pixels), dtype=np.uint8)
        except TypeError as e:
            raise InvalidPixelBufferError(
                f"pixel buffer must be bytes-like, got {type(pixels).__name__}"
            ) from e

    if samples.size % CHANNELS:
        raise InvalidPixelBufferError(
            f"pixel buffer length {samples.size} is not a multiple of {CHANNELS}"
        )
    expected = max(width, 0) * max(height, 0) * CHANNELS
    if samples.size != expected:
        raise InvalidPixelBufferError(
            f"pixel buffer length {samples.size} does not match "
            f"{width}x{height} RGBA ({expected} samples)"
        )
    return samples


class ScanDriver:
    """Owns the accumulators and runs scans over them.

    One scan at a time per driver: a second scan started while the first is
    still suspended raises RuntimeError.
    """

    def __init__(
        self,
        buckets_per_axis: int = DEFAULT_BUCKETS_PER_AXIS,
        slice_pixels: int = DEFAULT_SLICE_PIXELS,
    ):
        if slice_pixels <= 0:
            raise ValueError(f"slice_pixels must be positive, got {slice_pixels}")
        self.histogram = HistogramAccumulator()
        self.quantizer = ColorQuantizer(buckets_per_axis)
        self.slice_pixels = slice_pixels
        self._scanning = False

    @property
    def scanning(self) -> bool:
        return self._scanning

    def iter_scan(
        self, pixels, width: int, height: int
    ) -> Generator[ScanProgress, None, ScanResult]:
        """Validate the buffer now and return a generator that performs the scan.

        The generator yields one ScanProgress per slice and returns the
        ScanResult (available as ``StopIteration.value``).
        """
        if self._scanning:
            raise RuntimeError("Scan already in progress")
        samples = as_sample_array(pixels, width, height)
        return self._run(samples, max(width, 0), max(height, 0))

    def scan(
        self,
        pixels,
        width: int,
        height: int,
        on_progress: ProgressCallback | None = None,
    ) -> ScanResult:
        """Scan to completion, calling ``on_progress(fraction, note)`` after each slice."""
        steps = self.iter_scan(pixels, width, height)
        try:
            while True:
                try:
                    step = next(steps)
                except StopIteration as stop:
                    return stop.value
                if on_progress is not None:
                    on_progress(step.fraction, step.note)
        finally:
            # a raising callback must not leave the driver marked busy
            steps.close()

    def _run(
        self, samples: np.ndarray, width: int, height: int
    ) -> Generator[ScanProgress, None, ScanResult]:
        # iter_scan may hand out several generators before any of them starts
        if self._scanning:
            raise RuntimeError("Scan already in progress")
        self._scanning = True
        try:
            self.histogram.reset()
            self.quantizer.reset()
            total_pixels = width * height

            if total_pixels == 0:
                yield ScanProgress(1.0, NOTE_EMPTY, 0, 0)
                return self._finish(total_pixels, width, height)

            t0 = time.monotonic()
            rgba = samples.reshape(-1, CHANNELS)
            slice_count = math.ceil(total_pixels / self.slice_pixels)
            logger.debug(
                "Scanning %dx%d (%d slices of %d px)",
                width,
                height,
                slice_count,
                self.slice_pixels,
            )

            for k in range(slice_count):
                start = k * self.slice_pixels
                rgb = rgba[start : start + self.slice_pixels, :3]
                self.histogram.accumulate_pixels(rgb)
                self.quantizer.accumulate_pixels(rgb)
                done = k + 1
                yield ScanProgress(done / slice_count, NOTE_SCANNING, done, slice_count)

            result = self._finish(total_pixels, width, height)
            logger.info(
                "Scanned %d px in %.0fms, %d active buckets, %d palette entries",
                total_pixels,
                (time.monotonic() - t0) * 1000,
                len(result.buckets),
                len(result.palette),
            )
            return result
        finally:
            self._scanning = False

    def _finish(self, total_pixels: int, width: int, height: int) -> ScanResult:
        buckets = self.quantizer.snapshot()
        return ScanResult(
            histograms=self.histogram.snapshot(),
            buckets=buckets,
            total_pixels=total_pixels,
            palette=reduce_palette(buckets),
            width=width,
            height=height,
        )
