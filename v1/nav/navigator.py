from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from nav.scene_graph import (
    ACTION_DOUBLE_CLICK,
    ACTION_KEY,
    LOGIC_ANY,
    Anchor,
    ColorAnchor,
    Scene,
    SceneGraph,
    TextAnchor,
    Transition,
)
from runtime.stop_manager import StopManager
from vision.ocr_winmedia import text_matches
from vision.screen_reader import color_within_tolerance

NAV_ARRIVED = "arrived"
NAV_NOT_FOUND = "not_found"
NAV_UNKNOWN_SCENE = "unknown_scene"
NAV_EXECUTION_FAILED = "execution_failed"
NAV_STOPPED = "stopped"


class NavigationNotFound(LookupError):
    """No path in the scene graph from the current scene to the target."""


@dataclass
class NavResult:
    status: str
    scene: Optional[str]
    reason: str = ""
    steps_done: int = 0
    path: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == NAV_ARRIVED


class _SampleCache:
    """Per-pass memo so anchors sharing a rect or point trigger one capture."""

    def __init__(self, device):
        self.device = device
        self.texts: Dict[Tuple[int, int, int, int], str] = {}
        self.colors: Dict[Tuple[int, int], Optional[Tuple[int, int, int]]] = {}

    def text(self, rect: Tuple[int, int, int, int]) -> str:
        if rect not in self.texts:
            self.texts[rect] = self.device.read_text(rect)
        return self.texts[rect]

    def color(self, pos: Tuple[int, int]) -> Optional[Tuple[int, int, int]]:
        if pos not in self.colors:
            self.colors[pos] = self.device.read_color(pos)
        return self.colors[pos]


class Navigator:
    def __init__(
        self,
        graph: SceneGraph,
        device,
        stop_manager: StopManager,
        confirm_retries: int = 5,
        confirm_interval_sec: float = 0.5,
        max_replans: int = 2,
        move_duration_sec: float = 0.4,
    ):
        self.graph = graph
        self.device = device
        self.stop_manager = stop_manager
        self.confirm_retries = int(max(1, confirm_retries))
        self.confirm_interval_sec = float(max(0.0, confirm_interval_sec))
        self.max_replans = int(max(0, max_replans))
        self.move_duration_sec = float(move_duration_sec)

    # --- perception ---

    @staticmethod
    def _anchor_matches(anchor: Anchor, cache: _SampleCache) -> bool:
        if isinstance(anchor, TextAnchor):
            return text_matches(cache.text(anchor.rect), anchor.text)
        if isinstance(anchor, ColorAnchor):
            sample = cache.color(anchor.pos)
            if sample is None:
                return False
            return color_within_tolerance(sample, anchor.color, anchor.tolerance)
        return False

    def scene_matches(self, scene: Scene, cache: Optional[_SampleCache] = None) -> bool:
        if not scene.anchors:
            return False
        cache = cache or _SampleCache(self.device)
        if scene.logic == LOGIC_ANY:
            return any(self._anchor_matches(a, cache) for a in scene.anchors)
        return all(self._anchor_matches(a, cache) for a in scene.anchors)

    def identify_current_scene(self) -> Optional[str]:
        """First scene, in declaration order, whose anchors match the live screen."""
        cache = _SampleCache(self.device)
        for scene in self.graph.scenes:
            if self.scene_matches(scene, cache):
                return scene.id
        return None

    # --- planning ---

    def find_path(self, start: str, target: str) -> Optional[List[Transition]]:
        return self.graph.find_path(start, target)

    def require_path(self, start: str, target: str) -> List[Transition]:
        path = self.graph.find_path(start, target)
        if path is None:
            raise NavigationNotFound(f"no path from '{start}' to '{target}'")
        return path

    # --- execution ---

    def _fire(self, t: Transition) -> bool:
        if t.action == ACTION_KEY:
            return bool(self.device.key_click(t.key).ok)
        x, y = t.coords
        moved = self.device.move_to(x, y, self.move_duration_sec)
        if not moved.ok:
            return False
        if t.action == ACTION_DOUBLE_CLICK:
            return bool(self.device.double_click().ok)
        return bool(self.device.click().ok)

    def _confirm(self, expected: str) -> Optional[str]:
        seen = None
        for attempt in range(self.confirm_retries):
            seen = self.identify_current_scene()
            if seen == expected:
                return seen
            if attempt + 1 < self.confirm_retries and self.stop_manager.wait(self.confirm_interval_sec):
                break
        return seen

    def execute_path(self, path: List[Transition]) -> NavResult:
        ids = [t.target for t in path]
        current = path[0].source if path else None
        for i, t in enumerate(path):
            if self.stop_manager.should_stop():
                return NavResult(NAV_STOPPED, current, self.stop_manager.reason(), i, ids)
            fired = self._fire(t)
            print(
                f"[nav] step {i + 1}/{len(path)} {t.source} -> {t.target} "
                f"{t.describe()} fired={'ok' if fired else 'fail'}"
            )
            if self.stop_manager.wait(t.post_delay_ms / 1000.0):
                return NavResult(NAV_STOPPED, current, self.stop_manager.reason(), i, ids)
            seen = self._confirm(t.target)
            if seen != t.target:
                reason = f"expected '{t.target}' after step {i + 1}, saw '{seen}'"
                print(f"[nav] confirmation failed: {reason}")
                return NavResult(NAV_EXECUTION_FAILED, seen, reason, i, ids)
            current = seen
        return NavResult(NAV_ARRIVED, current, "", len(path), ids)

    def navigate(self, target: str) -> NavResult:
        if target not in self.graph:
            return NavResult(NAV_NOT_FOUND, None, f"unknown target scene '{target}'")

        last: Optional[NavResult] = None
        for attempt in range(self.max_replans + 1):
            start = self.identify_current_scene()
            if start is None:
                print("[nav] current scene not recognized")
                return NavResult(NAV_UNKNOWN_SCENE, None, "no scene matched")
            path = self.graph.find_path(start, target)
            if path is None:
                print(f"[nav] no path {start} -> {target}")
                return NavResult(NAV_NOT_FOUND, start, f"no path from '{start}' to '{target}'")
            if not path:
                return NavResult(NAV_ARRIVED, start)
            print(f"[nav] plan attempt={attempt + 1} {start} -> {target} hops={len(path)}")
            last = self.execute_path(path)
            if last.status != NAV_EXECUTION_FAILED:
                return last
        return last
