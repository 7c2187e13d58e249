"""
End-to-end watermark removal.

full image -> working copy + grayscale -> detection (in-process or via worker)
-> rect mapped back to full resolution -> stripe inpaint on a copy.
"""

import numpy as np
from typing import NamedTuple, Optional, Tuple

from detector import Match, WatermarkDetector
from errors import WatermarkError
from imaging import MAX_WORKING_WIDTH, Template, draw_to_size, round_half_up, to_gray
from inpainter import RegionInpainter
from worker import DetectionClient

RECT_MARGIN = 2


class Removal(NamedTuple):
    image: np.ndarray
    match: Match
    rect: Tuple[int, int, int, int]
    scale_to_full: float


def prepare_working_copy(rgba: np.ndarray,
                         max_width: int = MAX_WORKING_WIDTH) -> Tuple[np.ndarray, int, int, float]:
    """Returns (gray, width, height, scale_to_full) of the bounded-width working copy."""
    small, scale = draw_to_size(rgba, max_width)
    h, w = small.shape[:2]
    return to_gray(small), w, h, 1 / scale


def match_to_rect(match: Match, scale_to_full: float, full_w: int, full_h: int,
                  margin: int = RECT_MARGIN) -> Tuple[int, int, int, int]:
    """Map a working-copy match to a full-resolution rect, grown by margin on each side."""
    x = max(0, round_half_up(match.x * scale_to_full) - margin)
    y = max(0, round_half_up(match.y * scale_to_full) - margin)
    w = min(full_w, round_half_up(match.w * scale_to_full) + 2 * margin)
    h = min(full_h, round_half_up(match.h * scale_to_full) + 2 * margin)
    return x, y, w, h


def detect(rgba: np.ndarray, template: Template,
           client: Optional[DetectionClient] = None,
           detector: Optional[WatermarkDetector] = None,
           max_width: int = MAX_WORKING_WIDTH) -> Tuple[Optional[Match], float]:
    """
    Locate the watermark. With a client the search runs on the worker thread
    (array request first, raster request as fallback); without one it runs here.
    """
    gray, w, h, scale_to_full = prepare_working_copy(rgba, max_width)

    if client is None:
        detector = detector or WatermarkDetector()
        return detector.find(gray, w, h, template), scale_to_full

    try:
        future = client.detect_array(gray, w, h, template.gray.copy(),
                                     template.width, template.height, scale_to_full)
        result = future.result()
    except WatermarkError as e:
        if template.rgba is None:
            raise
        print(f"[PIPELINE] Array detection failed ({e}), falling back to raster request")
        result = client.detect_raster(rgba, template.rgba, max_width).result()

    return result.match, result.scale_to_full


def remove_watermark(rgba: np.ndarray, template: Template,
                     client: Optional[DetectionClient] = None,
                     detector: Optional[WatermarkDetector] = None,
                     inpainter: Optional[RegionInpainter] = None,
                     max_width: int = MAX_WORKING_WIDTH,
                     margin: int = RECT_MARGIN) -> Optional[Removal]:
    """
    Detect and erase the watermark. Returns None when nothing scored above the
    acceptance threshold; the input buffer is never modified.
    """
    full_h, full_w = rgba.shape[:2]
    print(f"[PIPELINE] Searching watermark in {full_w}x{full_h} image...")

    match, scale_to_full = detect(rgba, template, client, detector, max_width)
    if match is None:
        print("[PIPELINE] Watermark not found")
        return None

    rect = match_to_rect(match, scale_to_full, full_w, full_h, margin)
    print(f"[PIPELINE] Removing watermark at {rect} (scale_to_full={scale_to_full:.3f})")

    result = rgba.copy()
    (inpainter or RegionInpainter()).inpaint_rect(result, rect)
    return Removal(result, match, rect, scale_to_full)
