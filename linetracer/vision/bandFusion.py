# Multi-band fusion: per-band centroids -> one normalized steering error.

import math
from dataclasses import dataclass

LOST_SENTINEL = 999
DEFAULT_ERROR_RANGE = 100


@dataclass(frozen=True)
class FusionResult:
    error: int
    target_x: float = None

    @property
    def detected(self):
        return self.target_x is not None


def round_half_up(value):
    """12.5 -> 13, -12.5 -> -12."""
    return int(math.floor(value + 0.5))


def normalize_error(target_x, frame_width, error_range=DEFAULT_ERROR_RANGE):
    """Map a target column to a signed error in [-error_range, error_range].

    The offset from the frame centre is rescaled from the half-width to
    error_range, rounded, then clamped. The clamp also covers targets that
    fall outside the frame.
    """
    half_width = frame_width / 2
    mapped = (target_x - half_width) / half_width * error_range
    error = round_half_up(mapped)
    return max(-error_range, min(error_range, error))


def fuse(scans, frame_width, error_range=DEFAULT_ERROR_RANGE):
    """Combine the band results of one frame.

    Args:
        scans: Sequence of (Band, ScanResult), bottommost band first.
        frame_width: Frame width in pixels.
        error_range: Half-width of the error range.

    Returns:
        FusionResult. error is LOST_SENTINEL when the bottom band sees no line,
        whatever the other bands report.
    """
    if not scans:
        raise ValueError("fuse() needs at least the primary band")

    _, primary = scans[0]
    if not primary.detected:
        return FusionResult(error=LOST_SENTINEL)

    detected = [(band, result) for band, result in scans if result.detected]
    total_weight = sum(band.weight for band, _ in detected)
    if len(detected) == 1 or total_weight <= 0:
        target_x = primary.centroid_x
    else:
        # Weighted mean over the bands that see the line. Upper bands act as
        # look-ahead, the bottom band keeps the largest weight.
        target_x = sum(band.weight * result.centroid_x for band, result in detected) / total_weight

    return FusionResult(error=normalize_error(target_x, frame_width, error_range), target_x=target_x)
