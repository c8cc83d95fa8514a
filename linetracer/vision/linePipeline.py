# Per-frame detection pipeline: scan every band, then fuse.

import time
from dataclasses import dataclass, field

from linetracer.vision.bandFusion import DEFAULT_ERROR_RANGE, LOST_SENTINEL, fuse
from linetracer.vision.regionScanner import Polarity, scan_region, validate_bands


@dataclass(frozen=True)
class FrameResult:
    """Everything the overlay and the dashboard need about one frame."""
    error: int
    target_x: float
    scans: tuple
    frame_width: int
    frame_height: int
    timestamp: float = field(default_factory=time.time)

    @property
    def detected(self):
        return self.error != LOST_SENTINEL

    @property
    def status_text(self):
        return f"Error {self.error}" if self.detected else "Loss"

    def to_dict(self):
        return {
            "error": self.error,
            "detected": self.detected,
            "status": self.status_text,
            "target_x": self.target_x,
            "frame_size": [self.frame_width, self.frame_height],
            "timestamp": self.timestamp,
            "bands": [
                {
                    "name": band.name,
                    "start_y": band.start_y,
                    "end_y": band.end_y,
                    "detected": result.detected,
                    "centroid_x": result.centroid_x,
                    "min_x": result.min_x,
                    "max_x": result.max_x,
                    "count": result.count,
                }
                for band, result in self.scans
            ],
        }


class LinePipeline:
    """Runs the region scanner over every band and fuses the results.

    Settings may be changed from another thread between frames, each frame
    reads them once at the start of process().

    Args:
        bands: Band layout, bottommost first. Weights must sum to 1.
        threshold: Brightness threshold (0-255).
        mirrored: Undo a mirrored camera feed.
        polarity: Polarity.DARK_LINE or Polarity.LIGHT_LINE.
        error_range: Half-width of the normalized error range.
    """

    def __init__(self, bands, threshold=150, mirrored=False, polarity=Polarity.DARK_LINE,
                 error_range=DEFAULT_ERROR_RANGE):
        validate_bands(bands)
        # every real error must stay distinguishable from the sentinel
        if not 0 < error_range < LOST_SENTINEL:
            raise ValueError(f"error_range must be in (0, {LOST_SENTINEL}), got {error_range}")
        self.bands = tuple(bands)
        self.threshold = threshold
        self.mirrored = mirrored
        self.polarity = polarity
        self.error_range = error_range

    @property
    def threshold(self):
        return self._threshold

    @threshold.setter
    def threshold(self, value):
        self._threshold = max(0, min(255, int(value)))

    def process(self, frame):
        threshold, mirrored, polarity = self.threshold, self.mirrored, self.polarity
        height, width = frame.shape[:2]

        scans = tuple(
            (band, scan_region(frame, band, threshold, mirrored, polarity))
            for band in self.bands
        )
        fused = fuse(scans, width, self.error_range)
        return FrameResult(
            error=fused.error,
            target_x=fused.target_x,
            scans=scans,
            frame_width=width,
            frame_height=height,
        )

    def settings(self):
        return {
            "threshold": self.threshold,
            "mirrored": self.mirrored,
            "polarity": self.polarity.value,
        }
