import tomllib
from collections import deque
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from config.runtime_config import ConfigError

LOGIC_ALL = "and"
LOGIC_ANY = "or"

ACTION_CLICK = "click"
ACTION_DOUBLE_CLICK = "double_click"
ACTION_KEY = "key"
_ACTIONS = (ACTION_CLICK, ACTION_DOUBLE_CLICK, ACTION_KEY)


@dataclass(frozen=True)
class TextAnchor:
    rect: Tuple[int, int, int, int]
    text: str


@dataclass(frozen=True)
class ColorAnchor:
    pos: Tuple[int, int]
    color: Tuple[int, int, int]
    tolerance: int = 15


Anchor = Union[TextAnchor, ColorAnchor]


@dataclass(frozen=True)
class Transition:
    source: str
    target: str
    action: str = ACTION_CLICK
    coords: Optional[Tuple[int, int]] = None
    key: str = ""
    post_delay_ms: int = 500
    target_index: int = -1

    def describe(self) -> str:
        if self.action == ACTION_KEY:
            return f"key={self.key}"
        return f"{self.action}@{self.coords}"


@dataclass(frozen=True)
class Scene:
    id: str
    name: str
    anchors: Tuple[Anchor, ...] = ()
    logic: str = LOGIC_ALL
    transitions: Tuple[Transition, ...] = ()
    handler: Optional[str] = None


def parse_hex_color(raw: str, where: str) -> Tuple[int, int, int]:
    s = str(raw or "").strip().lstrip("#")
    if len(s) != 6:
        raise ConfigError(f"{where}: color must be #RRGGBB, got {raw!r}")
    try:
        return (int(s[0:2], 16), int(s[2:4], 16), int(s[4:6], 16))
    except ValueError as e:
        raise ConfigError(f"{where}: bad color {raw!r}") from e


def _int_tuple(raw, n: int, where: str) -> Tuple[int, ...]:
    if not isinstance(raw, (list, tuple)) or len(raw) != n:
        raise ConfigError(f"{where}: expected {n} integers, got {raw!r}")
    try:
        return tuple(int(v) for v in raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{where}: expected {n} integers, got {raw!r}") from e


def _int_field(item: dict, key: str, default: int, where: str) -> int:
    raw = item.get(key, default)
    if isinstance(raw, bool):
        raise ConfigError(f"{where}.{key}: expected an integer, got {raw!r}")
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{where}.{key}: expected an integer, got {raw!r}") from e


def _parse_rect(raw, where: str) -> Tuple[int, int, int, int]:
    x1, y1, x2, y2 = _int_tuple(raw, 4, where)
    lx, rx = sorted((x1, x2))
    ty, by = sorted((y1, y2))
    if rx <= lx or by <= ty:
        raise ConfigError(f"{where}: empty rect {raw!r}")
    return (lx, ty, rx, by)


def _parse_text_anchor(item: dict, where: str) -> TextAnchor:
    text = item.get("text", item.get("val"))
    if not isinstance(text, str) or not text.strip():
        raise ConfigError(f"{where}: text anchor needs a non-empty 'text' or 'val'")
    return TextAnchor(rect=_parse_rect(item.get("rect"), f"{where}.rect"), text=text.strip())


def _parse_color_anchor(item: dict, where: str) -> ColorAnchor:
    pos = _int_tuple(item.get("pos"), 2, f"{where}.pos")
    color = parse_hex_color(item.get("val", ""), f"{where}.val")
    tol = _int_field(item, "tol", 15, where)
    if tol < 0 or tol > 255:
        raise ConfigError(f"{where}.tol: must be within 0..255, got {tol}")
    return ColorAnchor(pos=(pos[0], pos[1]), color=color, tolerance=tol)


def _parse_anchors(raw, where: str) -> Tuple[Anchor, ...]:
    if raw is None:
        return ()
    anchors: List[Anchor] = []
    if isinstance(raw, list):
        # Flat form: [{rect, text}, ...]
        for i, item in enumerate(raw):
            if not isinstance(item, dict):
                raise ConfigError(f"{where}[{i}]: anchor must be a table")
            if "pos" in item:
                anchors.append(_parse_color_anchor(item, f"{where}[{i}]"))
            else:
                anchors.append(_parse_text_anchor(item, f"{where}[{i}]"))
        return tuple(anchors)
    if isinstance(raw, dict):
        # Grouped form: {text = [...], color = [...]}
        for i, item in enumerate(raw.get("text") or []):
            anchors.append(_parse_text_anchor(item, f"{where}.text[{i}]"))
        for i, item in enumerate(raw.get("color") or []):
            anchors.append(_parse_color_anchor(item, f"{where}.color[{i}]"))
        return tuple(anchors)
    raise ConfigError(f"{where}: anchors must be a list or a table")


def _parse_transition(source: str, item: dict, where: str) -> Transition:
    if not isinstance(item, dict):
        raise ConfigError(f"{where}: transition must be a table")
    target = str(item.get("target", "")).strip()
    if not target:
        raise ConfigError(f"{where}: transition without target")

    raw_coords = item.get("coords", item.get("trigger_btn"))
    key = str(item.get("key", "") or "").strip().lower()
    action = str(item.get("action", "") or "").strip().lower()
    if not action:
        action = ACTION_KEY if (key and raw_coords is None) else ACTION_CLICK
    if action not in _ACTIONS:
        raise ConfigError(f"{where}: unknown action {action!r}, expected one of {_ACTIONS}")

    coords = None
    if action == ACTION_KEY:
        if not key:
            raise ConfigError(f"{where}: key action needs 'key'")
    else:
        if raw_coords is None:
            raise ConfigError(f"{where}: {action} action needs 'coords'")
        cx, cy = _int_tuple(raw_coords, 2, f"{where}.coords")
        coords = (cx, cy)

    delay = _int_field(item, "post_delay", 500, where)
    if delay < 0:
        raise ConfigError(f"{where}.post_delay: must be >= 0, got {delay}")
    return Transition(source=source, target=target, action=action, coords=coords, key=key, post_delay_ms=delay)


def parse_scene(item: dict, where: str) -> Scene:
    if not isinstance(item, dict):
        raise ConfigError(f"{where}: scene must be a table")
    sid = str(item.get("id", "")).strip()
    if not sid:
        raise ConfigError(f"{where}: scene with empty id")
    logic = str(item.get("logic", LOGIC_ALL) or LOGIC_ALL).strip().lower()
    if logic not in (LOGIC_ALL, LOGIC_ANY):
        raise ConfigError(f"{where}: logic must be 'and' or 'or', got {logic!r}")
    handler = str(item.get("handler", "") or "").strip() or None
    transitions = tuple(
        _parse_transition(sid, t, f"{where}.transitions[{i}]")
        for i, t in enumerate(item.get("transitions") or [])
    )
    return Scene(
        id=sid,
        name=str(item.get("name", sid)).strip() or sid,
        anchors=_parse_anchors(item.get("anchors"), f"{where}.anchors"),
        logic=logic,
        transitions=transitions,
        handler=handler,
    )


class SceneGraph:
    """Immutable screen graph; transitions are resolved to scene indices once at load."""

    def __init__(self, scenes: Sequence[Scene]):
        order: List[str] = []
        by_id: Dict[str, Scene] = {}
        for scene in scenes:
            if scene.id in by_id:
                print(f"[config] WARNING: duplicate scene id '{scene.id}', later definition wins")
            else:
                order.append(scene.id)
            by_id[scene.id] = scene

        self.index: Dict[str, int] = {sid: i for i, sid in enumerate(order)}
        for scene in by_id.values():
            for t in scene.transitions:
                if t.target not in self.index:
                    raise ConfigError(f"scene '{scene.id}' has transition to unknown scene '{t.target}'")

        resolved: List[Scene] = []
        for sid in order:
            scene = by_id[sid]
            transitions = tuple(replace(t, target_index=self.index[t.target]) for t in scene.transitions)
            resolved.append(replace(scene, transitions=transitions))
        self.scenes: Tuple[Scene, ...] = tuple(resolved)

    @staticmethod
    def from_dict(payload: dict, source: str = "<dict>") -> "SceneGraph":
        rows = payload.get("scenes") if isinstance(payload, dict) else None
        if not isinstance(rows, list) or not rows:
            raise ConfigError(f"{source}: no [[scenes]] defined")
        return SceneGraph([parse_scene(row, f"{source}: scenes[{i}]") for i, row in enumerate(rows)])

    @staticmethod
    def load(path: Union[str, Path]) -> "SceneGraph":
        p = Path(path)
        try:
            payload = tomllib.loads(p.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ConfigError(f"scene graph not found: {p}") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"{p}: invalid TOML: {e}") from e
        graph = SceneGraph.from_dict(payload, source=str(p))
        n_edges = sum(len(s.transitions) for s in graph.scenes)
        print(f"[nav] loaded scene graph {p.name}: scenes={len(graph.scenes)} transitions={n_edges}")
        return graph

    def __len__(self) -> int:
        return len(self.scenes)

    def __contains__(self, scene_id: str) -> bool:
        return scene_id in self.index

    def get(self, scene_id: str) -> Scene:
        return self.scenes[self.index[scene_id]]

    def find_path(self, start: str, target: str) -> Optional[List[Transition]]:
        """Fewest-transition path, or None if target is unreachable.

        BFS visits each scene's transitions in declaration order, so the
        first-discovered parent is kept and equal-length ties resolve the same
        way every time.
        """
        if start not in self.index or target not in self.index:
            return None
        src = self.index[start]
        dst = self.index[target]
        if src == dst:
            return []

        parent: Dict[int, Transition] = {}
        seen = {src}
        queue = deque([src])
        while queue:
            cur = queue.popleft()
            for t in self.scenes[cur].transitions:
                nxt = t.target_index
                if nxt in seen:
                    continue
                seen.add(nxt)
                parent[nxt] = t
                if nxt == dst:
                    path: List[Transition] = []
                    node = dst
                    while node != src:
                        edge = parent[node]
                        path.append(edge)
                        node = self.index[edge.source]
                    path.reverse()
                    return path
                queue.append(nxt)
        return None
