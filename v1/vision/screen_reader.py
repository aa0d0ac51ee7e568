from typing import Optional, Tuple

import cv2
import mss
import numpy as np

from vision.ocr_winmedia import WinMediaOCR


def rect_to_monitor(rect: Tuple[int, int, int, int]) -> dict:
    x1, y1, x2, y2 = [int(v) for v in rect]
    lx, rx = sorted((x1, x2))
    ty, by = sorted((y1, y2))
    return {
        "left": lx,
        "top": ty,
        "width": int(max(1, rx - lx)),
        "height": int(max(1, by - ty)),
    }


def color_within_tolerance(
    sample: Tuple[int, int, int],
    expected: Tuple[int, int, int],
    tolerance: int,
) -> bool:
    diff = np.abs(np.asarray(sample, dtype=np.int32) - np.asarray(expected, dtype=np.int32))
    return bool(int(diff.max()) <= int(tolerance))


class ScreenReader:
    """Text and color recognition over live screen grabs."""

    def __init__(self, ocr: WinMediaOCR, upscale: float = 2.0):
        self.ocr = ocr
        self.upscale = float(max(1.0, upscale))

    def _grab_bgr(self, rect: Tuple[int, int, int, int]) -> np.ndarray:
        # mss handles are thread-affine; one per grab keeps the heartbeat thread out of it.
        with mss.mss() as sct:
            raw = np.asarray(sct.grab(rect_to_monitor(rect)))
        return cv2.cvtColor(raw, cv2.COLOR_BGRA2BGR)

    def recognize(self, rect: Tuple[int, int, int, int]) -> str:
        img = self._grab_bgr(rect)
        if self.upscale > 1.0:
            img = cv2.resize(img, None, fx=self.upscale, fy=self.upscale, interpolation=cv2.INTER_CUBIC)
        return " ".join(self.ocr.read_lines(img))

    def sample_color(self, pos: Tuple[int, int]) -> Optional[Tuple[int, int, int]]:
        x, y = int(pos[0]), int(pos[1])
        img = self._grab_bgr((x, y, x + 1, y + 1))
        if img.size == 0:
            return None
        b, g, r = [int(v) for v in img[0, 0]]
        return (r, g, b)

    def close(self):
        self.ocr.close()
