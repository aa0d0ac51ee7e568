import asyncio
from typing import List

import cv2
import numpy as np

try:
    from winrt.windows.globalization import Language
    from winrt.windows.graphics.imaging import BitmapPixelFormat, SoftwareBitmap
    from winrt.windows.media.ocr import OcrEngine
    from winrt.windows.storage.streams import DataWriter
except Exception:
    Language = None
    BitmapPixelFormat = None
    SoftwareBitmap = None
    OcrEngine = None
    DataWriter = None

WINRT_PACKAGES = (
    "winrt-runtime winrt-Windows.Media.Ocr winrt-Windows.Graphics.Imaging "
    "winrt-Windows.Storage.Streams winrt-Windows.Globalization "
    "winrt-Windows.Foundation winrt-Windows.Foundation.Collections"
)

# Full-width punctuation the Chinese OCR model emits, folded to ASCII.
_FOLD = str.maketrans(
    {
        " ": None,
        "\n": None,
        "\t": None,
        "\r": None,
        "％": "%",
        "：": ":",
        "，": ",",
        "（": "(",
        "）": ")",
        "／": "/",
    }
)


def to_bgra(img: np.ndarray) -> np.ndarray:
    if img is None or img.size == 0:
        raise ValueError("empty image")
    if img.ndim == 2:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2BGRA)
    if img.shape[2] == 4:
        return np.ascontiguousarray(img)
    return cv2.cvtColor(img, cv2.COLOR_BGR2BGRA)


class WinMediaOCR:
    """Windows.Media.Ocr wrapper; one engine and one private event loop per instance."""

    def __init__(self, lang: str = "zh-Hans"):
        if OcrEngine is None or Language is None or SoftwareBitmap is None or DataWriter is None:
            raise RuntimeError(f"winmedia deps missing; install: {WINRT_PACKAGES}")
        self.lang = str(lang or "zh-Hans")
        engine = OcrEngine.try_create_from_language(Language(self.lang))
        if engine is None:
            print(f"[ocr] language {self.lang} unavailable, using user profile languages")
            engine = OcrEngine.try_create_from_user_profile_languages()
        if engine is None:
            raise RuntimeError(f"cannot create Windows.Media.Ocr engine lang={self.lang}")
        self.engine = engine
        self._loop = asyncio.new_event_loop()

    def close(self):
        if not self._loop.is_closed():
            self._loop.close()

    def _bitmap(self, img: np.ndarray):
        bgra = to_bgra(img)
        h, w = bgra.shape[:2]
        writer = DataWriter()
        writer.write_bytes(bgra.tobytes())
        return SoftwareBitmap.create_copy_from_buffer(writer.detach_buffer(), BitmapPixelFormat.BGRA8, int(w), int(h))

    async def _recognize(self, bitmap):
        return await self.engine.recognize_async(bitmap)

    def read_lines(self, img: np.ndarray) -> List[str]:
        result = self._loop.run_until_complete(self._recognize(self._bitmap(img)))
        lines = [str(getattr(ln, "text", "")).strip() for ln in (getattr(result, "lines", None) or [])]
        lines = [s for s in lines if s]
        if lines:
            return lines
        # Some engine builds only fill the flat text field.
        flat = str(getattr(result, "text", "") or "")
        return [s.strip() for s in flat.splitlines() if s.strip()]


def normalize_text(text: str) -> str:
    return str(text or "").strip().lower().translate(_FOLD)


def text_matches(recognized: str, expected: str) -> bool:
    """Containment match after normalization; OCR often adds stray glyphs around a label."""
    want = normalize_text(expected)
    if not want:
        return False
    return want in normalize_text(recognized)
