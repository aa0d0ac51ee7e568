import os
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple


class ConfigError(ValueError):
    """Malformed or missing configuration; fatal at startup."""


_DEFAULT_LOADOUT_HOTKEYS = ["4", "5", "6", "7"]


def _to_bool(v: str) -> bool:
    return str(v).strip().lower() in ("1", "true", "yes", "on")


def _parse_rect(raw: str, default: Tuple[int, int, int, int]) -> Tuple[int, int, int, int]:
    s = str(raw or "").strip()
    if not s:
        return default
    parts = [p.strip() for p in s.split(",")]
    if len(parts) != 4:
        return default
    try:
        x1, y1, x2, y2 = [int(v) for v in parts]
    except Exception:
        return default
    lx, rx = sorted((x1, x2))
    ty, by = sorted((y1, y2))
    if rx <= lx or by <= ty:
        return default
    return (lx, ty, rx, by)


def _parse_point(raw: str, default: Optional[Tuple[int, int]]) -> Optional[Tuple[int, int]]:
    s = str(raw or "").strip()
    if not s:
        return default
    if s.lower() in ("none", "off"):
        return None
    parts = [p.strip() for p in s.split(",")]
    if len(parts) != 2:
        return default
    try:
        x, y = int(parts[0]), int(parts[1])
    except Exception:
        return default
    if x < 0 or y < 0:
        return default
    return (x, y)


def _parse_name_list(raw: str, default: List[str]) -> List[str]:
    # Tower names may contain commas in some locales, so ';' is the separator.
    s = str(raw or "").strip()
    if not s:
        return list(default)
    out = [token.strip() for token in s.split(";") if token.strip()]
    return out if out else list(default)


def _parse_key_list(raw: str, default: List[str]) -> List[str]:
    s = str(raw or "").strip()
    if not s:
        return list(default)
    out = [token.strip().lower() for token in s.split(",") if token.strip()]
    return out if out else list(default)


@dataclass
class RuntimeConfig:
    screen_w: int
    screen_h: int

    ui_map_path: str
    terrain_path: str
    strategy_path: str
    traps_path: str
    loadout: List[str]

    target_scene: str
    window_title: str
    startup_delay_sec: float
    debug_ocr: bool

    ocr_lang: str
    device_lock_timeout_sec: float
    heartbeat_interval_sec: float
    move_duration_sec: float

    nav_confirm_retries: int
    nav_confirm_interval_sec: float
    nav_max_replans: int

    hud_check_rect: Tuple[int, int, int, int]
    wave_needs_toggle: bool
    wave_reveal_key: str
    wave_reveal_settle_sec: float
    wave_min_interval_sec: float
    wave_initial_poll_sec: float
    wave_poll_sec: float
    phase_advance_key: str
    phase_advance_settle_sec: float

    safe_zone: Tuple[int, int, int, int]
    camera_speed_px_s: float
    camera_min_motion_px: float
    camera_settle_sec: float
    camera_forward_key: str
    camera_reverse_key: str
    camera_left_key: str
    camera_overview_key: str

    loadout_hotkeys: List[str]
    fallback_hotkey: str
    loadout_open_key: str
    loadout_confirm_pos: Optional[Tuple[int, int]]
    prep_move_key: str
    prep_jump_key: str
    prep_jump_count: int
    prep_jump_interval_sec: float
    demolish_key: str
    upgrade_key: str
    upgrade_hold_sec: float
    action_settle_sec: float

    def __post_init__(self):
        if self.screen_w <= 0 or self.screen_h <= 0:
            raise ConfigError(f"screen size must be positive, got {self.screen_w}x{self.screen_h}")

        x1, y1, x2, y2 = self.safe_zone
        if x2 <= x1 or y2 <= y1:
            raise ConfigError(f"Invalid safe_zone: {self.safe_zone}")
        if x1 < 0 or y1 < 0 or x2 > self.screen_w or y2 > self.screen_h:
            raise ConfigError(
                f"safe_zone {self.safe_zone} exceeds screen {self.screen_w}x{self.screen_h}"
            )

        x1, y1, x2, y2 = self.hud_check_rect
        if x2 <= x1 or y2 <= y1:
            raise ConfigError(f"Invalid hud_check_rect: {self.hud_check_rect}")

        if self.camera_speed_px_s <= 0:
            raise ConfigError(f"camera_speed_px_s must be positive, got {self.camera_speed_px_s}")
        if self.camera_min_motion_px <= 0:
            raise ConfigError(f"camera_min_motion_px must be positive, got {self.camera_min_motion_px}")
        if self.wave_min_interval_sec < 0:
            raise ConfigError(f"wave_min_interval_sec must be >= 0, got {self.wave_min_interval_sec}")
        if self.wave_poll_sec <= 0 or self.wave_initial_poll_sec <= 0:
            raise ConfigError(
                f"wave poll intervals must be positive, got "
                f"initial={self.wave_initial_poll_sec} poll={self.wave_poll_sec}"
            )
        if not self.loadout_hotkeys:
            raise ConfigError("loadout_hotkeys must not be empty")

        if len(self.loadout) > len(self.loadout_hotkeys):
            print(
                f"[config] WARNING: loadout has {len(self.loadout)} towers but only "
                f"{len(self.loadout_hotkeys)} hotkeys; extra towers use fallback key {self.fallback_hotkey}"
            )


def _get_env(
    key: str,
    default,
    cast: Callable[[str], object],
    compat: Optional[List[str]] = None,
):
    compat = compat or []
    if key in os.environ:
        try:
            return cast(os.environ.get(key, ""))
        except ValueError as e:
            raise ConfigError(f"env {key}: {e}") from e
    for old in compat:
        if old in os.environ:
            val = os.environ.get(old, "")
            print(f"[config] deprecated env {old} -> {key}")
            try:
                return cast(val)
            except ValueError as e:
                raise ConfigError(f"env {old}: {e}") from e
    return default


def load_runtime_config() -> RuntimeConfig:
    screen_w = int(_get_env("TOWERPILOT_SCREEN_W", 1920, int))
    screen_h = int(_get_env("TOWERPILOT_SCREEN_H", 1080, int))

    ui_map_path = str(_get_env("TOWERPILOT_UI_MAP", "configs/ui_map.toml", str)).strip()
    terrain_path = str(_get_env("TOWERPILOT_TERRAIN", "configs/terrain.json", str)).strip()
    strategy_path = str(_get_env("TOWERPILOT_STRATEGY", "configs/strategy.json", str)).strip()
    traps_path = str(_get_env("TOWERPILOT_TRAPS", "configs/traps_config.json", str)).strip()
    loadout = _parse_name_list(str(_get_env("TOWERPILOT_LOADOUT", "", str)), [])

    target_scene = str(_get_env("TOWERPILOT_TARGET_SCENE", "", str)).strip()
    window_title = str(_get_env("TOWERPILOT_WINDOW_TITLE", "", str)).strip()
    startup_delay_sec = max(0.0, float(_get_env("TOWERPILOT_STARTUP_DELAY_SEC", 5.0, float)))
    debug_ocr = bool(_get_env("TOWERPILOT_DEBUG_OCR", False, _to_bool))

    ocr_lang = str(_get_env("TOWERPILOT_OCR_LANG", "zh-Hans", str))
    device_lock_timeout_sec = max(0.05, float(_get_env("TOWERPILOT_DEVICE_LOCK_TIMEOUT_SEC", 2.0, float)))
    heartbeat_interval_sec = max(0.1, float(_get_env("TOWERPILOT_HEARTBEAT_SEC", 1.0, float)))
    move_duration_sec = max(0.0, float(_get_env("TOWERPILOT_MOVE_DURATION_SEC", 0.4, float)))

    nav_confirm_retries = max(1, int(_get_env("TOWERPILOT_NAV_CONFIRM_RETRIES", 5, int)))
    nav_confirm_interval_sec = max(0.05, float(_get_env("TOWERPILOT_NAV_CONFIRM_INTERVAL_SEC", 0.5, float)))
    nav_max_replans = max(0, int(_get_env("TOWERPILOT_NAV_MAX_REPLANS", 2, int)))

    hud_check_rect = _parse_rect(
        str(_get_env("TOWERPILOT_HUD_RECT", "845,88,1098,175", str, ["TOWERPILOT_WAVE_RECT"])),
        (845, 88, 1098, 175),
    )
    wave_needs_toggle = bool(_get_env("TOWERPILOT_WAVE_NEEDS_TOGGLE", True, _to_bool))
    wave_reveal_key = str(_get_env("TOWERPILOT_WAVE_REVEAL_KEY", "tab", str)).strip().lower()
    wave_reveal_settle_sec = max(0.0, float(_get_env("TOWERPILOT_WAVE_REVEAL_SETTLE_SEC", 0.15, float)))
    wave_min_interval_sec = float(_get_env("TOWERPILOT_WAVE_MIN_INTERVAL_SEC", 10.0, float))
    wave_initial_poll_sec = float(_get_env("TOWERPILOT_WAVE_INITIAL_POLL_SEC", 0.5, float))
    wave_poll_sec = float(_get_env("TOWERPILOT_WAVE_POLL_SEC", 2.0, float))
    phase_advance_key = str(_get_env("TOWERPILOT_PHASE_ADVANCE_KEY", "g", str)).strip().lower()
    phase_advance_settle_sec = max(0.0, float(_get_env("TOWERPILOT_PHASE_ADVANCE_SETTLE_SEC", 1.0, float)))

    safe_zone = _parse_rect(
        str(_get_env("TOWERPILOT_SAFE_ZONE", "200,200,1720,880", str)),
        (200, 200, 1720, 880),
    )
    camera_speed_px_s = float(_get_env("TOWERPILOT_CAMERA_SPEED", 720.0, float))
    camera_min_motion_px = float(_get_env("TOWERPILOT_CAMERA_MIN_MOTION_PX", 5.0, float))
    camera_settle_sec = max(0.0, float(_get_env("TOWERPILOT_CAMERA_SETTLE_SEC", 0.4, float)))
    camera_forward_key = str(_get_env("TOWERPILOT_CAMERA_FORWARD_KEY", "s", str)).strip().lower()
    camera_reverse_key = str(_get_env("TOWERPILOT_CAMERA_REVERSE_KEY", "w", str)).strip().lower()
    camera_left_key = str(_get_env("TOWERPILOT_CAMERA_LEFT_KEY", "a", str)).strip().lower()
    camera_overview_key = str(_get_env("TOWERPILOT_CAMERA_OVERVIEW_KEY", "o", str)).strip().lower()

    loadout_hotkeys = _parse_key_list(
        str(_get_env("TOWERPILOT_LOADOUT_HOTKEYS", "", str)),
        _DEFAULT_LOADOUT_HOTKEYS,
    )
    fallback_hotkey = str(_get_env("TOWERPILOT_FALLBACK_HOTKEY", "1", str)).strip().lower()
    loadout_open_key = str(_get_env("TOWERPILOT_LOADOUT_OPEN_KEY", "n", str)).strip().lower()
    loadout_confirm_pos = _parse_point(
        str(_get_env("TOWERPILOT_LOADOUT_CONFIRM_POS", "212,294", str)),
        (212, 294),
    )
    prep_move_key = str(_get_env("TOWERPILOT_PREP_MOVE_KEY", "w", str)).strip().lower()
    prep_jump_key = str(_get_env("TOWERPILOT_PREP_JUMP_KEY", "space", str)).strip().lower()
    prep_jump_count = max(0, int(_get_env("TOWERPILOT_PREP_JUMP_COUNT", 3, int)))
    prep_jump_interval_sec = max(0.0, float(_get_env("TOWERPILOT_PREP_JUMP_INTERVAL_SEC", 0.6, float)))
    demolish_key = str(_get_env("TOWERPILOT_DEMOLISH_KEY", "x", str)).strip().lower()
    upgrade_key = str(_get_env("TOWERPILOT_UPGRADE_KEY", "e", str)).strip().lower()
    upgrade_hold_sec = max(0.05, float(_get_env("TOWERPILOT_UPGRADE_HOLD_SEC", 1.5, float)))
    action_settle_sec = max(0.0, float(_get_env("TOWERPILOT_ACTION_SETTLE_SEC", 0.3, float)))

    return RuntimeConfig(
        screen_w=screen_w,
        screen_h=screen_h,
        ui_map_path=ui_map_path,
        terrain_path=terrain_path,
        strategy_path=strategy_path,
        traps_path=traps_path,
        loadout=loadout,
        target_scene=target_scene,
        window_title=window_title,
        startup_delay_sec=startup_delay_sec,
        debug_ocr=debug_ocr,
        ocr_lang=ocr_lang,
        device_lock_timeout_sec=device_lock_timeout_sec,
        heartbeat_interval_sec=heartbeat_interval_sec,
        move_duration_sec=move_duration_sec,
        nav_confirm_retries=nav_confirm_retries,
        nav_confirm_interval_sec=nav_confirm_interval_sec,
        nav_max_replans=nav_max_replans,
        hud_check_rect=hud_check_rect,
        wave_needs_toggle=wave_needs_toggle,
        wave_reveal_key=wave_reveal_key,
        wave_reveal_settle_sec=wave_reveal_settle_sec,
        wave_min_interval_sec=wave_min_interval_sec,
        wave_initial_poll_sec=wave_initial_poll_sec,
        wave_poll_sec=wave_poll_sec,
        phase_advance_key=phase_advance_key,
        phase_advance_settle_sec=phase_advance_settle_sec,
        safe_zone=safe_zone,
        camera_speed_px_s=camera_speed_px_s,
        camera_min_motion_px=camera_min_motion_px,
        camera_settle_sec=camera_settle_sec,
        camera_forward_key=camera_forward_key,
        camera_reverse_key=camera_reverse_key,
        camera_left_key=camera_left_key,
        camera_overview_key=camera_overview_key,
        loadout_hotkeys=loadout_hotkeys,
        fallback_hotkey=fallback_hotkey,
        loadout_open_key=loadout_open_key,
        loadout_confirm_pos=loadout_confirm_pos,
        prep_move_key=prep_move_key,
        prep_jump_key=prep_jump_key,
        prep_jump_count=prep_jump_count,
        prep_jump_interval_sec=prep_jump_interval_sec,
        demolish_key=demolish_key,
        upgrade_key=upgrade_key,
        upgrade_hold_sec=upgrade_hold_sec,
        action_settle_sec=action_settle_sec,
    )
