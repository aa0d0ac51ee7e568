import ctypes
import signal
import threading
from typing import Optional


class RunStopRequested(RuntimeError):
    """Raised from a wait once a global stop has been requested."""


class StopManager:
    """Process-wide cooperative stop flag. Every deliberate wait in the bot goes through `wait`."""

    def __init__(self):
        self._stopped = threading.Event()
        self._guard = threading.Lock()
        self._reason: Optional[str] = None

    def request_stop(self, reason: str) -> bool:
        """Set the flag. Only the first caller's reason is kept; returns True for that caller."""
        with self._guard:
            if self._stopped.is_set():
                return False
            self._reason = str(reason or "unknown")
            self._stopped.set()
        return True

    def should_stop(self) -> bool:
        return self._stopped.is_set()

    def reason(self) -> str:
        with self._guard:
            return self._reason or ""

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; True means a stop arrived and the caller should bail out."""
        if seconds <= 0:
            return self._stopped.is_set()
        return self._stopped.wait(timeout=float(seconds))

    def sleep_or_raise(self, seconds: float):
        if self.wait(seconds):
            raise RunStopRequested(self.reason() or "stop_requested")

    def raise_if_requested(self):
        if self._stopped.is_set():
            raise RunStopRequested(self.reason() or "stop_requested")


# Win32 console control codes.
_CTRL_EVENTS = {
    0: "CTRL_C_EVENT",
    1: "CTRL_BREAK_EVENT",
    2: "CTRL_CLOSE_EVENT",
    5: "CTRL_LOGOFF_EVENT",
    6: "CTRL_SHUTDOWN_EVENT",
}

# ctypes callbacks must outlive the registration or Windows calls freed memory.
_CONSOLE_HANDLER_REF = None


def _announce(stop_manager: StopManager, reason: str):
    if stop_manager.request_stop(reason):
        print(f"[control] stop requested ({reason})")


def _install_signal_handlers(stop_manager: StopManager):
    def _on_signal(signum, _frame):
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = f"SIG{signum}"
        _announce(stop_manager, name)

    wanted = [getattr(signal, n) for n in ("SIGINT", "SIGBREAK", "SIGTERM") if hasattr(signal, n)]
    for sig in wanted:
        try:
            signal.signal(sig, _on_signal)
        except (OSError, ValueError) as e:
            # Only the main thread may install handlers.
            print(f"[control] cannot install handler for {sig}: {e}")


def _install_console_handler(stop_manager: StopManager):
    global _CONSOLE_HANDLER_REF
    if not hasattr(ctypes, "windll"):
        return

    def _on_console_event(ctrl_type: int):
        _announce(stop_manager, _CTRL_EVENTS.get(int(ctrl_type), f"CTRL_{ctrl_type}"))
        return True

    handler_type = ctypes.WINFUNCTYPE(ctypes.c_bool, ctypes.c_uint)
    try:
        _CONSOLE_HANDLER_REF = handler_type(_on_console_event)
        ctypes.windll.kernel32.SetConsoleCtrlHandler(_CONSOLE_HANDLER_REF, True)
    except OSError as e:
        print(f"[control] console handler unavailable: {e}")
        _CONSOLE_HANDLER_REF = None


def install_stop_handlers(stop_manager: StopManager):
    """Route SIGINT/SIGBREAK/SIGTERM and Win32 console events into `stop_manager`.

    The console handler also fires while the main thread is blocked inside a
    long key hold, where Python-level signal handlers would be delayed.
    """
    _install_signal_handlers(stop_manager)
    _install_console_handler(stop_manager)
