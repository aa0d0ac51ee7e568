import ctypes
import random
import time
from dataclasses import dataclass
from typing import Optional, Tuple

try:
    import pydirectinput
except Exception:
    pydirectinput = None


@dataclass
class ActionResult:
    ok: bool
    method: str
    error: str = ""


class POINT(ctypes.Structure):
    _fields_ = [("x", ctypes.c_long), ("y", ctypes.c_long)]


MOUSEEVENTF_WHEEL = 0x0800
MOVE_STEP_SEC = 0.012


def ease_in_out(t: float) -> float:
    t = min(1.0, max(0.0, float(t)))
    return t * t * (3.0 - 2.0 * t)


def humanized_path(
    start: Tuple[int, int],
    end: Tuple[int, int],
    steps: int,
    jitter_px: int = 1,
    rng: Optional[random.Random] = None,
):
    """Eased waypoints from start to end; the last point is always exactly `end`."""
    rng = rng or random
    sx, sy = int(start[0]), int(start[1])
    ex, ey = int(end[0]), int(end[1])
    steps = max(1, int(steps))
    out = []
    for i in range(1, steps + 1):
        k = ease_in_out(i / steps)
        x = sx + (ex - sx) * k
        y = sy + (ey - sy) * k
        if i < steps and jitter_px > 0:
            x += rng.randint(-jitter_px, jitter_px)
            y += rng.randint(-jitter_px, jitter_px)
        out.append((int(round(x)), int(round(y))))
    return out


class InputDriver:
    """Physical keyboard/mouse actuator backed by pydirectinput (scan-code input)."""

    def __init__(self, window_title: str = "", focus_before_input: bool = False):
        if pydirectinput is None:
            raise RuntimeError("pydirectinput missing; install: pip install pydirectinput (Windows only)")
        self.window_title = str(window_title or "").strip()
        self.focus_before_input = bool(focus_before_input)
        self.hwnd: Optional[int] = None
        self.last_heartbeat_ts = 0.0

        pydirectinput.FAILSAFE = False
        pydirectinput.PAUSE = 0.0

    def _resolve_hwnd(self) -> Optional[int]:
        if self.hwnd or not self.window_title:
            return self.hwnd
        hwnd = ctypes.windll.user32.FindWindowW(None, self.window_title)
        self.hwnd = int(hwnd) if hwnd else None
        return self.hwnd

    def _is_game_foreground(self) -> bool:
        hwnd = self._resolve_hwnd()
        if hwnd is None:
            return True
        fg = int(ctypes.windll.user32.GetForegroundWindow())
        return fg == int(hwnd)

    def _focus_if_needed(self):
        if not self.focus_before_input:
            return
        hwnd = self._resolve_hwnd()
        if hwnd is None:
            return
        ctypes.windll.user32.ShowWindow(hwnd, 5)
        ctypes.windll.user32.SetForegroundWindow(hwnd)

    @staticmethod
    def _cursor_pos() -> Tuple[int, int]:
        pt = POINT()
        ctypes.windll.user32.GetCursorPos(ctypes.byref(pt))
        return int(pt.x), int(pt.y)

    def move_to(self, x: int, y: int, duration: float = 0.4) -> ActionResult:
        self._focus_if_needed()
        target = (int(x), int(y))
        steps = max(1, int(float(duration) / MOVE_STEP_SEC))
        for px, py in humanized_path(self._cursor_pos(), target, steps):
            pydirectinput.moveTo(px, py)
            time.sleep(max(0.0, float(duration)) / steps)
        return ActionResult(ok=True, method="physical")

    def click(self, button: str = "left", count: int = 1) -> ActionResult:
        self._focus_if_needed()
        pydirectinput.click(button=str(button), clicks=max(1, int(count)), interval=0.06)
        return ActionResult(ok=True, method="physical")

    def key_down(self, key: str) -> ActionResult:
        pydirectinput.keyDown(str(key).strip().lower())
        return ActionResult(ok=True, method="physical")

    def key_up(self, key: str) -> ActionResult:
        pydirectinput.keyUp(str(key).strip().lower())
        return ActionResult(ok=True, method="physical")

    def key_click(self, key: str) -> ActionResult:
        self._focus_if_needed()
        pydirectinput.press(str(key).strip().lower())
        return ActionResult(ok=True, method="physical")

    def key_hold(self, key: str, seconds: float) -> ActionResult:
        self._focus_if_needed()
        k = str(key).strip().lower()
        pydirectinput.keyDown(k)
        try:
            time.sleep(max(0.0, float(seconds)))
        finally:
            pydirectinput.keyUp(k)
        return ActionResult(ok=True, method="physical")

    def scroll(self, delta: int) -> ActionResult:
        ctypes.windll.user32.mouse_event(MOUSEEVENTF_WHEEL, 0, 0, ctypes.c_long(int(delta)), 0)
        return ActionResult(ok=True, method="mouse_event")

    def heartbeat(self) -> ActionResult:
        self.last_heartbeat_ts = time.time()
        if not self._is_game_foreground():
            return ActionResult(ok=False, method="heartbeat", error="game_not_foreground")
        return ActionResult(ok=True, method="heartbeat")
