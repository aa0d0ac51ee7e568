import re
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from runtime.stop_manager import StopManager
from vision.ocr_winmedia import normalize_text

# Matches "wave 3", "Wave:12", "第5波" and "波次：7" once normalized.
WAVE_PATTERN = re.compile(r"(?:wave|第|波次):?(\d+)")


def extract_wave_number(text: str) -> Optional[int]:
    s = normalize_text(text)
    if not s:
        return None
    m = WAVE_PATTERN.search(s)
    if m is None:
        return None
    return int(m.group(1))


@dataclass
class WaveState:
    last_confirmed: int = 0
    confirmed_at: float = 0.0


class WaveMonitor:
    def __init__(
        self,
        device,
        stop_manager: StopManager,
        reveal_key: str = "tab",
        reveal_settle_sec: float = 0.15,
        min_interval_sec: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        debug: bool = False,
    ):
        self.device = device
        self.stop_manager = stop_manager
        self.reveal_key = reveal_key
        self.reveal_settle_sec = float(reveal_settle_sec)
        self.min_interval_sec = float(min_interval_sec)
        self.clock = clock
        self.debug = bool(debug)
        self.state = WaveState()

    def sample(self, rect: Tuple[int, int, int, int], needs_toggle: bool = True) -> Optional[int]:
        """One HUD reading. None means no signal this cycle, never an error."""
        if needs_toggle:
            self.device.key_down(self.reveal_key)
            self.stop_manager.wait(self.reveal_settle_sec)
            try:
                text = self.device.read_text(rect)
            finally:
                self.device.key_up(self.reveal_key)
                # The HUD flips its toggle on release; one tap puts it back.
                self.device.key_click(self.reveal_key)
        else:
            text = self.device.read_text(rect)

        wave = extract_wave_number(text)
        if wave is None and self.debug:
            print(f"[wave] no reading text={text!r}")
        return wave

    def validate_transition(self, detected: Optional[int]) -> bool:
        if detected is None:
            return False
        last = self.state.last_confirmed
        if detected != last + 1:
            return False
        now = self.clock()
        if last != 0 and (now - self.state.confirmed_at) < self.min_interval_sec:
            return False
        self.state.last_confirmed = detected
        self.state.confirmed_at = now
        print(f"[wave] confirmed wave={detected}")
        return True
