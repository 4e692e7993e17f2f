"""Palette reducer — greedy first-match merging of quantized buckets.

Buckets are visited largest first and each one joins the first existing
cluster whose centroid lies within the merge radius, otherwise it starts a
new cluster. This is a single agglomerative pass, not k-means: the result
depends on visit order, so the tie-break on bucket index matters.
"""

import math
from dataclasses import dataclass

from analysis.quantizer import BucketTable

MERGE_RADIUS = 36
MAX_ENTRIES = 6

# Scan bounds for images with many distinct colors
MAX_BUCKETS_EXAMINED = 512
EARLY_STOP_CLUSTERS = 8
EARLY_STOP_POSITION = 64


@dataclass(frozen=True)
class PaletteEntry:
    """A merged cluster with its aggregate count and rounded centroid."""

    count: int
    sum_r: int
    sum_g: int
    sum_b: int
    r: int
    g: int
    b: int

    @property
    def rgb(self) -> tuple[int, int, int]:
        return (self.r, self.g, self.b)

    @property
    def hex(self) -> str:
        return f"#{self.r:02X}{self.g:02X}{self.b:02X}"

    def share(self, total_pixels: int) -> float:
        """Fraction of the image covered by this entry (0 for empty images)."""
        if total_pixels <= 0:
            return 0.0
        return self.count / total_pixels

    def to_dict(self, total_pixels: int | None = None) -> dict:
        d = {"r": self.r, "g": self.g, "b": self.b, "count": self.count, "hex": self.hex}
        if total_pixels is not None:
            d["share"] = round(self.share(total_pixels), 4)
        return d


class _Cluster:
    __slots__ = ("count", "sum_r", "sum_g", "sum_b", "avg_r", "avg_g", "avg_b")

    def __init__(self, count: int, sum_r: int, sum_g: int, sum_b: int):
        self.count = count
        self.sum_r = sum_r
        self.sum_g = sum_g
        self.sum_b = sum_b
        self._recenter()

    def _recenter(self):
        self.avg_r = self.sum_r / self.count
        self.avg_g = self.sum_g / self.count
        self.avg_b = self.sum_b / self.count

    def distance_sq(self, r: float, g: float, b: float) -> float:
        dr = r - self.avg_r
        dg = g - self.avg_g
        db = b - self.avg_b
        return dr * dr + dg * dg + db * db

    def absorb(self, count: int, sum_r: int, sum_g: int, sum_b: int):
        self.count += count
        self.sum_r += sum_r
        self.sum_g += sum_g
        self.sum_b += sum_b
        self._recenter()


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def reduce_palette(
    buckets: BucketTable,
    *,
    merge_radius: float = MERGE_RADIUS,
    max_entries: int = MAX_ENTRIES,
) -> list[PaletteEntry]:
    """Reduce a bucket table to at most ``max_entries`` dominant colors.

    Pure function of ``buckets``; safe to call repeatedly and from any thread.
    Entries are ordered by descending pixel count.
    """
    active = sorted(buckets.active(), key=lambda bk: (-bk.count, bk.index))
    radius_sq = merge_radius * merge_radius
    clusters: list[_Cluster] = []

    for position, bucket in enumerate(active[:MAX_BUCKETS_EXAMINED]):
        cr, cg, cb = bucket.centroid
        target = None
        for cluster in clusters:
            if cluster.distance_sq(cr, cg, cb) <= radius_sq:
                target = cluster
                break
        if target is not None:
            target.absorb(bucket.count, bucket.sum_r, bucket.sum_g, bucket.sum_b)
        else:
            clusters.append(
                _Cluster(bucket.count, bucket.sum_r, bucket.sum_g, bucket.sum_b)
            )
        if len(clusters) >= EARLY_STOP_CLUSTERS and position > EARLY_STOP_POSITION:
            break

    # sorted() is stable: equal counts keep creation order
    ranked = sorted(clusters, key=lambda c: -c.count)[:max_entries]
    return [
        PaletteEntry(
            count=c.count,
            sum_r=c.sum_r,
            sum_g=c.sum_g,
            sum_b=c.sum_b,
            r=_round_half_up(c.avg_r),
            g=_round_half_up(c.avg_g),
            b=_round_half_up(c.avg_b),
        )
        for c in ranked
    ]
