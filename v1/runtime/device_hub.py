import threading
from contextlib import contextmanager
from typing import Optional, Protocol, Tuple

from runtime.input_driver import ActionResult
from runtime.stop_manager import StopManager


class ActuatorUnavailable(RuntimeError):
    """The shared device could not be acquired or refused a primitive."""


class ActuatorDevice(Protocol):
    def move_to(self, x: int, y: int, duration: float) -> ActionResult: ...

    def click(self, button: str, count: int) -> ActionResult: ...

    def key_down(self, key: str) -> ActionResult: ...

    def key_up(self, key: str) -> ActionResult: ...

    def key_click(self, key: str) -> ActionResult: ...

    def key_hold(self, key: str, seconds: float) -> ActionResult: ...

    def scroll(self, delta: int) -> ActionResult: ...

    def heartbeat(self) -> ActionResult: ...


class TextRecognizer(Protocol):
    def recognize(self, rect: Tuple[int, int, int, int]) -> str: ...

    def sample_color(self, pos: Tuple[int, int]) -> Optional[Tuple[int, int, int]]: ...


class SharedDevice:
    """The single actuator/recognizer pair, guarded by one lock.

    The lock is held for exactly one primitive. Multi-step sequences
    (move, then click, then key) re-acquire it per step so the heartbeat
    thread can interleave.
    """

    def __init__(
        self,
        actuator: ActuatorDevice,
        recognizer: TextRecognizer,
        lock_timeout_sec: float = 2.0,
        debug_ocr: bool = False,
    ):
        self.actuator = actuator
        self.recognizer = recognizer
        self.lock_timeout_sec = float(lock_timeout_sec)
        self.debug_ocr = bool(debug_ocr)
        self._lock = threading.Lock()

        self.total_actions = 0
        self.total_failures = 0
        self.last_error = ""

    @contextmanager
    def _guard(self, op: str):
        if not self._lock.acquire(timeout=self.lock_timeout_sec):
            raise ActuatorUnavailable(f"{op}: lock timeout after {self.lock_timeout_sec:.2f}s")
        try:
            yield
        finally:
            self._lock.release()

    def _run(self, op: str, fn, *args) -> ActionResult:
        try:
            with self._guard(op):
                res = fn(*args)
        except ActuatorUnavailable as e:
            return self._failed(op, "lock", str(e))
        except Exception as e:
            return self._failed(op, "device", f"{type(e).__name__}: {e}")
        self.total_actions += 1
        if isinstance(res, ActionResult):
            if not res.ok and op != "heartbeat":
                self._failed(op, res.method, res.error)
            return res
        return ActionResult(ok=True, method=op)

    def _failed(self, op: str, method: str, error: str) -> ActionResult:
        self.total_failures += 1
        self.last_error = f"{op}:{error}"
        print(f"[device] {op} skipped method={method} error={error}")
        return ActionResult(ok=False, method=method, error=error)

    def move_to(self, x: int, y: int, duration: float = 0.4) -> ActionResult:
        return self._run("move_to", self.actuator.move_to, int(x), int(y), float(duration))

    def click(self, button: str = "left", count: int = 1) -> ActionResult:
        return self._run("click", self.actuator.click, str(button), int(count))

    def double_click(self, button: str = "left") -> ActionResult:
        return self.click(button, 2)

    def key_down(self, key: str) -> ActionResult:
        return self._run("key_down", self.actuator.key_down, str(key))

    def key_up(self, key: str) -> ActionResult:
        return self._run("key_up", self.actuator.key_up, str(key))

    def key_click(self, key: str) -> ActionResult:
        return self._run("key_click", self.actuator.key_click, str(key))

    def key_hold(self, key: str, seconds: float) -> ActionResult:
        return self._run("key_hold", self.actuator.key_hold, str(key), float(seconds))

    def scroll(self, delta: int) -> ActionResult:
        return self._run("scroll", self.actuator.scroll, int(delta))

    def heartbeat(self) -> ActionResult:
        return self._run("heartbeat", self.actuator.heartbeat)

    def read_text(self, rect: Tuple[int, int, int, int]) -> str:
        """OCR one region. Any failure reads as empty text, i.e. no signal this cycle."""
        try:
            with self._guard("read_text"):
                text = self.recognizer.recognize(tuple(rect))
        except ActuatorUnavailable as e:
            self._failed("read_text", "lock", str(e))
            return ""
        except Exception as e:
            if self.debug_ocr:
                print(f"[ocr] read_text rect={tuple(rect)} error={type(e).__name__}: {e}")
            return ""
        text = str(text or "")
        if self.debug_ocr:
            print(f"[ocr] rect={tuple(rect)} text={text!r}")
        return text

    def read_color(self, pos: Tuple[int, int]) -> Optional[Tuple[int, int, int]]:
        try:
            with self._guard("read_color"):
                color = self.recognizer.sample_color(tuple(pos))
        except ActuatorUnavailable as e:
            self._failed("read_color", "lock", str(e))
            return None
        except Exception as e:
            if self.debug_ocr:
                print(f"[ocr] read_color pos={tuple(pos)} error={type(e).__name__}: {e}")
            return None
        if color is None:
            return None
        r, g, b = color
        return (int(r), int(g), int(b))


class HeartbeatWorker:
    """Keep-alive pulse through the shared device, independent of the control loop."""

    def __init__(self, device: SharedDevice, stop_manager: StopManager, interval_sec: float = 1.0):
        self.device = device
        self.stop_manager = stop_manager
        self.interval_sec = float(max(0.01, interval_sec))
        self._halt = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.beats = 0
        self.failures = 0

    def start(self):
        if self.is_running():
            return
        self._halt.clear()
        self._thread = threading.Thread(target=self._loop, name="heartbeat", daemon=True)
        self._thread.start()

    def stop(self):
        self._halt.set()
        if self._thread is not None:
            self._thread.join(timeout=max(0.8, self.interval_sec * 2))
            self._thread = None

    def is_running(self) -> bool:
        th = self._thread
        return bool(th is not None and th.is_alive())

    def _loop(self):
        while not self._halt.is_set() and not self.stop_manager.should_stop():
            res = self.device.heartbeat()
            self.beats += 1
            if not res.ok:
                self.failures += 1
                if self.failures == 1 or self.failures % 30 == 0:
                    print(f"[heartbeat] degraded failures={self.failures} error={res.error}")
            if self._halt.wait(self.interval_sec):
                break
