"""Image decoding via Pillow — RGBA pixels ready for the analysis engine."""

import logging
from dataclasses import dataclass

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

# Longest side handed to the engine; larger images are downsized first
MAX_SIDE = 1400


class ImageDecodeError(ValueError):
    """File could not be decoded as an image."""


@dataclass(frozen=True)
class DecodedImage:
    pixels: np.ndarray  # (H, W, 4) uint8 RGBA
    width: int
    height: int
    source_width: int
    source_height: int

    @property
    def downscaled(self) -> bool:
        return (self.width, self.height) != (self.source_width, self.source_height)


def fit_size(width: int, height: int, max_side: int = MAX_SIDE) -> tuple[int, int]:
    """Scale (width, height) so the longer side is at most ``max_side``. Never upscales."""
    longest = max(width, height)
    if longest <= max_side:
        return width, height
    # integer arithmetic so the longer side lands exactly on max_side
    return (
        max(1, width * max_side // longest),
        max(1, height * max_side // longest),
    )


def probe(path: str) -> dict:
    """Probe image file for metadata. Fast — reads only headers."""
    try:
        with Image.open(path) as img:
            result = {
                "ok": True,
                "width": img.width,
                "height": img.height,
                "format": img.format,
                "mode": img.mode,
                "frames": getattr(img, "n_frames", 1),
            }
    except (
        FileNotFoundError,
        UnidentifiedImageError,
        OSError,
        Image.DecompressionBombError,
    ) as e:
        logger.exception("Probe failed for %s", path)
        return {"ok": False, "error": f"Failed to open image: {type(e).__name__}"}
    result["analysis_size"] = list(fit_size(result["width"], result["height"]))
    return result


def load_image(path: str, max_side: int = MAX_SIDE) -> DecodedImage:
    """Decode ``path`` to RGBA, honouring EXIF orientation, downsized to ``max_side``.

    Raises:
        ImageDecodeError: If Pillow cannot read the file.
    """
    try:
        with Image.open(path) as img:
            img = ImageOps.exif_transpose(img)
            source_width, source_height = img.size
            rgba = img.convert("RGBA")
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        raise ImageDecodeError(f"Failed to decode image: {type(e).__name__}") from e

    target = fit_size(source_width, source_height, max_side)
    if target != rgba.size:
        rgba = rgba.resize(target, Image.Resampling.BILINEAR)
        logger.debug(
            "Downscaled %dx%d -> %dx%d", source_width, source_height, *target
        )

    pixels = np.asarray(rgba, dtype=np.uint8)
    return DecodedImage(
        pixels=pixels,
        width=rgba.width,
        height=rgba.height,
        source_width=source_width,
        source_height=source_height,
    )
