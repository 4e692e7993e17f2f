"""Pixel analysis engine: histograms, dominant palette, tone classification."""

from analysis.engine import ToneAnalyzer
from analysis.errors import ConfigurationError, InvalidPixelBufferError, ThresholdError
from analysis.palette import PaletteEntry, reduce_palette
from analysis.scan import ScanDriver, ScanProgress, ScanResult
from analysis.tone import ToneKey, ToneSummary, ToneThresholds, summarize

__all__ = [
    "ConfigurationError",
    "InvalidPixelBufferError",
    "PaletteEntry",
    "ScanDriver",
    "ScanProgress",
    "ScanResult",
    "ThresholdError",
    "ToneAnalyzer",
    "ToneKey",
    "ToneSummary",
    "ToneThresholds",
    "reduce_palette",
    "summarize",
]
