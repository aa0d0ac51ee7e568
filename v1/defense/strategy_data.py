import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Set, Tuple, Union

from config.runtime_config import ConfigError


@dataclass(frozen=True)
class MapMeta:
    grid_pixel_size: float
    offset_x: float
    offset_y: float
    bottom: float


@dataclass(frozen=True)
class BuildingPlacement:
    uid: int
    name: str
    grid_x: int
    grid_y: int
    width: int = 1
    height: int = 1
    wave_num: int = 1
    is_late: bool = False


# Demolitions carry the same footprint and schedule fields as placements.
DemolishEvent = BuildingPlacement


@dataclass(frozen=True)
class UpgradeEvent:
    building_name: str
    wave_num: int = 1
    is_late: bool = False

    @property
    def key(self) -> Tuple[str, int, bool]:
        return (self.building_name, self.wave_num, self.is_late)


@dataclass(frozen=True)
class TrapConfigItem:
    name: str
    select_pos: Tuple[int, int] = (0, 0)


@dataclass
class StrategyTimeline:
    buildings: List[BuildingPlacement] = field(default_factory=list)
    upgrades: List[UpgradeEvent] = field(default_factory=list)
    demolishes: List[DemolishEvent] = field(default_factory=list)

    def placements_for(self, wave: int, late: bool) -> List[BuildingPlacement]:
        return [b for b in self.buildings if b.wave_num == wave and b.is_late == late]

    def upgrades_for(self, wave: int, late: bool) -> List[UpgradeEvent]:
        return [u for u in self.upgrades if u.wave_num == wave and u.is_late == late]

    def demolishes_for(self, wave: int, late: bool) -> List[DemolishEvent]:
        return [d for d in self.demolishes if d.wave_num == wave and d.is_late == late]

    def last_wave(self) -> int:
        waves = [e.wave_num for e in (*self.buildings, *self.upgrades, *self.demolishes)]
        return max(waves) if waves else 0


@dataclass
class ExecutionState:
    """Idempotency ledger for one run. Only the executor writes to it."""

    placed_ids: Set[int] = field(default_factory=set)
    completed_upgrades: Set[Tuple[str, int, bool]] = field(default_factory=set)
    demolished_ids: Set[int] = field(default_factory=set)
    skipped_ids: Set[int] = field(default_factory=set)
    placed_by_name: Dict[str, List[BuildingPlacement]] = field(default_factory=dict)


def _read_json(path: Union[str, Path], what: str):
    p = Path(path)
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"{what} not found: {p}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"{p}: invalid JSON: {e}") from e


def _require(row: dict, key: str, cast, where: str):
    if key not in row:
        raise ConfigError(f"{where}: missing field '{key}'")
    try:
        return cast(row[key])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{where}.{key}: bad value {row[key]!r}") from e


def _optional(row: dict, key: str, cast, default, where: str):
    if row.get(key) is None:
        return default
    try:
        return cast(row[key])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{where}.{key}: bad value {row[key]!r}") from e


def _parse_flag(row: dict, key: str, where: str) -> bool:
    raw = row.get(key)
    if raw is None:
        return False
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    raise ConfigError(f"{where}.{key}: expected true/false or 0/1, got {raw!r}")


def _parse_placement(row, where: str) -> BuildingPlacement:
    if not isinstance(row, dict):
        raise ConfigError(f"{where}: entry must be an object")
    b = BuildingPlacement(
        uid=_require(row, "uid", int, where),
        name=str(_require(row, "name", str, where)).strip(),
        grid_x=_require(row, "grid_x", int, where),
        grid_y=_require(row, "grid_y", int, where),
        width=_optional(row, "width", int, 1, where),
        height=_optional(row, "height", int, 1, where),
        wave_num=_optional(row, "wave_num", int, 1, where),
        is_late=_parse_flag(row, "is_late", where),
    )
    if not b.name:
        raise ConfigError(f"{where}: empty name")
    if b.width <= 0 or b.height <= 0:
        raise ConfigError(f"{where}: footprint must be positive, got {b.width}x{b.height}")
    if b.grid_x < 0 or b.grid_y < 0:
        raise ConfigError(f"{where}: grid position must be >= 0, got ({b.grid_x},{b.grid_y})")
    return b


def _parse_upgrade(row, where: str) -> UpgradeEvent:
    if not isinstance(row, dict):
        raise ConfigError(f"{where}: entry must be an object")
    name = str(_require(row, "building_name", str, where)).strip()
    if not name:
        raise ConfigError(f"{where}: empty building_name")
    return UpgradeEvent(
        building_name=name,
        wave_num=_optional(row, "wave_num", int, 1, where),
        is_late=_parse_flag(row, "is_late", where),
    )


def parse_map_meta(payload, source: str = "<terrain>") -> MapMeta:
    meta = payload.get("meta") if isinstance(payload, dict) else None
    if not isinstance(meta, dict):
        raise ConfigError(f"{source}: missing 'meta' object")
    where = f"{source}: meta"
    m = MapMeta(
        grid_pixel_size=_require(meta, "grid_pixel_size", float, where),
        offset_x=_require(meta, "offset_x", float, where),
        offset_y=_require(meta, "offset_y", float, where),
        bottom=_require(meta, "bottom", float, where),
    )
    if m.grid_pixel_size <= 0:
        raise ConfigError(f"{where}.grid_pixel_size: must be positive, got {m.grid_pixel_size}")
    return m


def parse_strategy(payload, source: str = "<strategy>") -> StrategyTimeline:
    if not isinstance(payload, dict):
        raise ConfigError(f"{source}: strategy must be an object")
    sections = {}
    for key in ("buildings", "upgrades", "demolishes"):
        rows = payload.get(key) or []
        if not isinstance(rows, list):
            raise ConfigError(f"{source}: '{key}' must be a list")
        sections[key] = rows

    buildings = [_parse_placement(r, f"{source}: buildings[{i}]") for i, r in enumerate(sections["buildings"])]
    seen: Set[int] = set()
    for b in buildings:
        if b.uid in seen:
            raise ConfigError(f"{source}: duplicate building uid {b.uid}")
        seen.add(b.uid)

    return StrategyTimeline(
        buildings=buildings,
        upgrades=[_parse_upgrade(r, f"{source}: upgrades[{i}]") for i, r in enumerate(sections["upgrades"])],
        demolishes=[_parse_placement(r, f"{source}: demolishes[{i}]") for i, r in enumerate(sections["demolishes"])],
    )


def parse_traps(payload, source: str = "<traps>") -> Dict[str, TrapConfigItem]:
    if not isinstance(payload, list):
        raise ConfigError(f"{source}: trap config must be a list")
    out: Dict[str, TrapConfigItem] = {}
    for i, row in enumerate(payload):
        where = f"{source}: [{i}]"
        if not isinstance(row, dict):
            raise ConfigError(f"{where}: entry must be an object")
        name = str(_require(row, "name", str, where)).strip()
        pos = row.get("select_pos") or [0, 0]
        if not isinstance(pos, (list, tuple)) or len(pos) != 2:
            raise ConfigError(f"{where}.select_pos: expected [x, y], got {pos!r}")
        try:
            x, y = int(pos[0]), int(pos[1])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{where}.select_pos: expected [x, y], got {pos!r}") from e
        out[name] = TrapConfigItem(name=name, select_pos=(x, y))
    return out


def load_map_meta(path: Union[str, Path]) -> MapMeta:
    payload = _read_json(path, "terrain file")
    meta = parse_map_meta(payload, source=str(path))
    map_name = payload.get("map_name", "?") if isinstance(payload, dict) else "?"
    print(f"[strategy] loaded map {map_name}: cell={meta.grid_pixel_size:g} bottom={meta.bottom:.1f}")
    return meta


def load_strategy(path: Union[str, Path]) -> StrategyTimeline:
    timeline = parse_strategy(_read_json(path, "strategy file"), source=str(path))
    print(
        f"[strategy] loaded strategy: buildings={len(timeline.buildings)} "
        f"upgrades={len(timeline.upgrades)} demolishes={len(timeline.demolishes)}"
    )
    return timeline


def load_traps(path: Union[str, Path]) -> Dict[str, TrapConfigItem]:
    traps = parse_traps(_read_json(path, "trap config"), source=str(path))
    print(f"[strategy] loaded {len(traps)} trap UI positions")
    return traps
