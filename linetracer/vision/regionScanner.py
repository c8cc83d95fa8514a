# Region scanner for the line tracer.
#
# Samples one horizontal band of the frame on a stride grid and classifies
# every sample as line or floor by its mean brightness. Sampling instead of
# reading every pixel keeps the whole pipeline inside one frame tick.

from dataclasses import dataclass
from enum import Enum

import numpy as np


class Polarity(Enum):
    """Which side of the threshold counts as line."""
    DARK_LINE = "dark"     # dark line on a light floor
    LIGHT_LINE = "light"   # light line on a dark floor


@dataclass(frozen=True)
class Band:
    """Horizontal region of interest, rows [start_y, end_y).

    Args:
        start_y: First row of the band (inclusive).
        end_y: Last row of the band (exclusive).
        stride_x: Horizontal sampling step in pixels.
        stride_y: Vertical sampling step in pixels.
        min_pixels: The band detects a line only when MORE matches than this are found.
        weight: Fusion weight, the weights of one band layout sum to 1.0.
        name: Label used in telemetry and overlays.
    """
    start_y: int
    end_y: int
    stride_x: int = 5
    stride_y: int = 5
    min_pixels: int = 20
    weight: float = 1.0
    name: str = "band"

    def __post_init__(self):
        if self.start_y < 0 or self.start_y >= self.end_y:
            raise ValueError(f"Band {self.name}: need 0 <= start_y < end_y, got [{self.start_y}, {self.end_y})")
        if self.stride_x < 1 or self.stride_y < 1:
            raise ValueError(f"Band {self.name}: strides must be >= 1")
        if self.min_pixels < 0:
            raise ValueError(f"Band {self.name}: min_pixels must be >= 0")
        if not 0.0 <= self.weight <= 1.0:
            raise ValueError(f"Band {self.name}: weight must be in [0, 1], got {self.weight}")

    @property
    def center_y(self):
        return (self.start_y + self.end_y) / 2


@dataclass(frozen=True)
class ScanResult:
    """Detection summary of one band for one frame.

    centroid_x is only a real estimate when detected is True, otherwise it is
    the frame midpoint. min_x/max_x are the outermost matching columns, or
    (width, 0) when nothing matched.
    """
    detected: bool
    centroid_x: float
    min_x: int
    max_x: int
    count: int = 0


BAND_NAMES = ("bottom", "middle", "top")


def make_bands(frame_height, slice_height=80, weights=(0.7, 0.3), stride=5, min_pixels=20):
    """Stack equally tall bands from the bottom of the frame upwards.

    Args:
        frame_height: Frame height in pixels.
        slice_height: Height of every band.
        weights: One fusion weight per band, bottommost first.
        stride: Sampling step used for both axes.
        min_pixels: Detection threshold for every band.

    Returns:
        tuple of Band, bottom-to-top.
    """
    bands = []
    for i, weight in enumerate(weights):
        end_y = frame_height - slice_height * i
        start_y = end_y - slice_height
        if start_y < 0:
            raise ValueError(f"{len(weights)} bands of {slice_height}px do not fit in {frame_height}px")
        name = BAND_NAMES[i] if i < len(BAND_NAMES) else f"band{i}"
        bands.append(Band(start_y, end_y, stride, stride, min_pixels, float(weight), name))
    bands = tuple(bands)
    validate_bands(bands)
    return bands


def validate_bands(bands):
    """Raise ValueError unless bands is a non-empty layout whose weights sum to 1."""
    if not bands:
        raise ValueError("At least the bottom band is required")
    total = sum(band.weight for band in bands)
    if abs(total - 1.0) > 1e-6:
        raise ValueError(f"Band weights must sum to 1.0, got {total:.6f}")


def sample_grid(frame, band, mirrored=False):
    """Read the band's sample points.

    Returns:
        tuple: (xs, ys, brightness) where xs/ys are the sampled coordinates in
        the un-mirrored image and brightness has shape (len(ys), len(xs)).
    """
    height, width = frame.shape[:2]
    xs = np.arange(0, width, band.stride_x)
    ys = np.arange(band.start_y, min(band.end_y, height), band.stride_y)
    columns = (width - 1 - xs) if mirrored else xs
    samples = frame[ys[:, None], columns[None, :], :3]
    brightness = samples.sum(axis=2, dtype=np.float64) / 3.0
    return xs, ys, brightness


def match_mask(brightness, threshold, polarity=Polarity.DARK_LINE):
    """Strict comparison, samples exactly at the threshold never match."""
    if polarity is Polarity.LIGHT_LINE:
        return brightness > threshold
    return brightness < threshold


def scan_region(frame, band, threshold, mirrored=False, polarity=Polarity.DARK_LINE):
    """Scan one band of a frame.

    Args:
        frame: HxWx3 uint8 image. Only read.
        band: Band to scan.
        threshold: Brightness threshold (0-255).
        mirrored: Undo a horizontally mirrored camera feed.
        polarity: Which side of the threshold is line.

    Returns:
        ScanResult. An empty band is a normal outcome, not an error.
    """
    width = frame.shape[1]
    xs, _, brightness = sample_grid(frame, band, mirrored)
    mask = match_mask(brightness, threshold, polarity)
    count = int(np.count_nonzero(mask))

    if count > band.min_pixels:
        matched_x = np.broadcast_to(xs, mask.shape)[mask]
        return ScanResult(
            detected=True,
            centroid_x=float(matched_x.sum()) / count,
            min_x=int(matched_x.min()),
            max_x=int(matched_x.max()),
            count=count,
        )
    return ScanResult(detected=False, centroid_x=width / 2, min_x=width, max_x=0, count=count)
