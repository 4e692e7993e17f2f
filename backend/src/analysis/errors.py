"""Error types raised by the analysis engine."""


class InvalidPixelBufferError(ValueError):
    """Pixel buffer length does not match the declared RGBA geometry."""


class ThresholdError(ValueError):
    """Shadow/highlight threshold pair is out of range or out of order."""


class ConfigurationError(ValueError):
    """Engine cannot be built with the requested configuration."""
