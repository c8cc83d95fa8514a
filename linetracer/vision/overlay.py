# Debug rendering for the line tracer preview window and dashboard.
#
# Colors are BGR (OpenCV order).

import cv2
import numpy as np

from linetracer.vision.regionScanner import match_mask, sample_grid

PATH_COLOR = (0, 255, 0)
BORDER_COLOR = (0, 255, 255)
CENTROID_COLOR = (0, 0, 255)
LOOKAHEAD_COLOR = (100, 100, 255)
ROI_COLOR = (160, 160, 160)
LOST_COLOR = (53, 67, 234)


def render_binary(frame, bands, threshold, mirrored, polarity):
    """Black canvas with every matching sample point painted white."""
    canvas = np.zeros_like(frame[:, :, :3])
    for band in bands:
        xs, ys, brightness = sample_grid(frame, band, mirrored)
        mask = match_mask(brightness, threshold, polarity)
        rows, cols = np.nonzero(mask)
        canvas[ys[rows], xs[cols]] = 255
    return canvas


def draw_overlay(frame, result, pipeline, binary_view=False):
    """Draw the tracker state over a copy of the frame.

    Args:
        frame: Original BGR frame, as scanned.
        result: FrameResult of that frame.
        pipeline: LinePipeline that produced the result (bands and settings).
        binary_view: Draw on the thresholded view instead of the camera image.

    Returns:
        New BGR image.
    """
    if binary_view:
        image = render_binary(frame, pipeline.bands, pipeline.threshold,
                              pipeline.mirrored, pipeline.polarity)
    elif pipeline.mirrored:
        # Scan coordinates are in the un-mirrored image
        image = cv2.flip(frame, 1)
    else:
        image = frame.copy()

    height, width = image.shape[:2]

    for band, _ in result.scans:
        cv2.rectangle(image, (0, band.start_y), (width - 1, band.end_y - 1), ROI_COLOR, 1)

    if result.detected:
        seen = [(band, scan) for band, scan in result.scans if scan.detected]

        # Path line from the bottom centre through every detecting band
        path = [(width // 2, height)] + [(int(scan.centroid_x), int(band.center_y)) for band, scan in seen]
        cv2.polylines(image, [np.array(path, np.int32)], False, PATH_COLOR, 4)

        # Left/right borders
        for attr in ("min_x", "max_x"):
            border = [(getattr(scan, attr), int(band.center_y)) for band, scan in seen]
            if len(border) > 1:
                cv2.polylines(image, [np.array(border, np.int32)], False, BORDER_COLOR, 2)
            else:
                cv2.circle(image, border[0], 2, BORDER_COLOR, -1)

        for i, (band, scan) in enumerate(seen):
            color = CENTROID_COLOR if i == 0 else LOOKAHEAD_COLOR
            cv2.circle(image, (int(scan.centroid_x), int(band.center_y)), 5 if i == 0 else 4, color, -1)

    cv2.putText(image, result.status_text, (8, 20), cv2.FONT_HERSHEY_SIMPLEX, 0.6,
                PATH_COLOR if result.detected else LOST_COLOR, 2)
    return image
