from dataclasses import dataclass
from typing import Tuple

from defense.strategy_data import MapMeta
from runtime.stop_manager import StopManager

ZOOM_BURSTS = 7
ZOOM_NOTCHES_PER_BURST = 12
ZOOM_NOTCH_DELTA = -120


@dataclass
class CameraState:
    offset_x: float = 0.0
    offset_y: float = 0.0


class ViewportTracker:
    """Maps world-grid cells to screen pixels and scrolls the camera to keep targets reachable.

    Camera motion is open loop: a hold of ``|delta| / speed`` seconds is assumed
    to move the view by exactly ``delta`` pixels, and the tracked offset is
    updated as soon as the hold is issued. Only the vertical axis is corrected.
    """

    def __init__(
        self,
        meta: MapMeta,
        device,
        stop_manager: StopManager,
        safe_zone: Tuple[int, int, int, int] = (200, 200, 1720, 880),
        viewport_h: float = 1080.0,
        speed_px_s: float = 720.0,
        min_motion_px: float = 5.0,
        settle_sec: float = 0.4,
        forward_key: str = "s",
        reverse_key: str = "w",
        left_key: str = "a",
        overview_key: str = "o",
        max_hold_sec: float = 1.5,
    ):
        self.meta = meta
        self.device = device
        self.stop_manager = stop_manager
        self.safe_zone = tuple(int(v) for v in safe_zone)
        self.viewport_h = float(viewport_h)
        self.speed_px_s = float(speed_px_s)
        self.min_motion_px = float(min_motion_px)
        self.settle_sec = float(settle_sec)
        self.forward_key = forward_key
        self.reverse_key = reverse_key
        self.left_key = left_key
        self.overview_key = overview_key
        self.max_hold_sec = max(0.05, float(max_hold_sec))
        self.state = CameraState()

    @property
    def max_offset_y(self) -> float:
        return max(0.0, self.meta.bottom - self.viewport_h)

    def to_absolute_pixel(self, grid_x: int, grid_y: int, width: int = 1, height: int = 1) -> Tuple[float, float]:
        cell = self.meta.grid_pixel_size
        px = self.meta.offset_x + (grid_x + width / 2.0) * cell
        py = self.meta.offset_y + (grid_y + height / 2.0) * cell
        return (px, py)

    def to_screen(self, abs_x: float, abs_y: float) -> Tuple[float, float]:
        return (abs_x - self.state.offset_x, abs_y - self.state.offset_y)

    def in_bottom_zone(self, target_y: float) -> bool:
        return target_y > self.meta.bottom - (self.viewport_h - self.safe_zone[1])

    def _inside_safe_rows(self, target_y: float) -> bool:
        rel_y = target_y - self.state.offset_y
        return self.safe_zone[1] <= rel_y <= self.safe_zone[3]

    def _hold(self, key: str, seconds: float) -> int:
        """Hold ``key`` for ``seconds`` total, split so no single hold outlasts ``max_hold_sec``."""
        chunks = 0
        remaining = float(seconds)
        while remaining > 1e-6:
            if chunks and self.stop_manager.should_stop():
                break
            step = min(remaining, self.max_hold_sec)
            self.device.key_hold(key, step)
            remaining -= step
            chunks += 1
        return chunks

    def ensure_visible(self, target_y: float) -> int:
        """Scroll until ``target_y`` sits within the safe rows. Returns the number of holds issued."""
        bottom = self.in_bottom_zone(target_y)
        holds = 0
        while not self._inside_safe_rows(target_y):
            if bottom:
                wanted = self.max_offset_y
            else:
                mid = (self.safe_zone[1] + self.safe_zone[3]) / 2.0
                rel_y = target_y - self.state.offset_y
                wanted = min(max(self.state.offset_y + (rel_y - mid), 0.0), self.max_offset_y)

            delta = wanted - self.state.offset_y
            if abs(delta) < self.min_motion_px:
                # The offset cannot move further toward the target, or already sits on it.
                if bottom:
                    self.state.offset_y = wanted
                break

            key = self.forward_key if delta > 0 else self.reverse_key
            seconds = abs(delta) / self.speed_px_s
            print(
                f"[camera] correct key={key} hold={seconds * 1000:.0f}ms "
                f"offset_y={self.state.offset_y:.0f}->{wanted:.0f}{' bottom' if bottom else ''}"
            )
            self._hold(key, seconds)
            self.state.offset_y = wanted
            holds += 1
            if self.stop_manager.wait(self.settle_sec) or bottom:
                break
        return holds

    def align_to_origin(self):
        """Zoom fully out and pin the camera into the top-left corner, then zero both offsets."""
        print("[camera] aligning to map origin")
        self.device.key_click(self.overview_key)
        if self.stop_manager.wait(2.0):
            return
        for _ in range(ZOOM_BURSTS):
            for _ in range(ZOOM_NOTCHES_PER_BURST):
                self.device.scroll(ZOOM_NOTCH_DELTA)
                if self.stop_manager.wait(0.03):
                    return
            if self.stop_manager.wait(0.3):
                return
        for _ in range(4):
            self.device.key_hold(self.reverse_key, 0.5)
            self.stop_manager.wait(0.05)
            self.device.key_hold(self.left_key, 0.5)
            if self.stop_manager.wait(0.05):
                return
        self.device.key_hold(self.reverse_key, 0.8)
        self.device.key_hold(self.left_key, 0.8)
        self.state.offset_x = 0.0
        self.state.offset_y = 0.0
        self.stop_manager.wait(0.5)
