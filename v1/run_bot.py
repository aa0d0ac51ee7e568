import argparse
from pathlib import Path
from typing import Callable, Dict, List, Optional

from config.runtime_config import ConfigError, RuntimeConfig, load_runtime_config
from defense.strategy_data import load_map_meta, load_strategy, load_traps
from defense.strategy_executor import StrategyExecutor
from defense.viewport import ViewportTracker
from defense.wave_monitor import WaveMonitor
from nav.navigator import Navigator
from nav.scene_graph import SceneGraph
from runtime.device_hub import HeartbeatWorker, SharedDevice
from runtime.input_driver import InputDriver
from runtime.stop_manager import RunStopRequested, StopManager, install_stop_handlers
from vision.ocr_winmedia import WinMediaOCR
from vision.screen_reader import ScreenReader

EXIT_OK = 0
EXIT_NAV_FAILED = 1
EXIT_CONFIG = 2

HANDLER_TOWER_DEFENSE = "tower_defense"


def resolve_path(raw: str, root: Path) -> Path:
    p = Path(raw)
    if p.is_absolute() or p.exists():
        return p
    return root / p


def camera_hold_limit(lock_timeout_sec: float) -> float:
    # A single hold must release the device lock before other waiters time out.
    return max(0.05, float(lock_timeout_sec) * 0.75)


def build_executor(cfg: RuntimeConfig, device: SharedDevice, stop_manager: StopManager, root: Path) -> StrategyExecutor:
    meta = load_map_meta(resolve_path(cfg.terrain_path, root))
    timeline = load_strategy(resolve_path(cfg.strategy_path, root))
    traps = load_traps(resolve_path(cfg.traps_path, root))

    viewport = ViewportTracker(
        meta,
        device,
        stop_manager,
        safe_zone=cfg.safe_zone,
        viewport_h=cfg.screen_h,
        speed_px_s=cfg.camera_speed_px_s,
        min_motion_px=cfg.camera_min_motion_px,
        settle_sec=cfg.camera_settle_sec,
        forward_key=cfg.camera_forward_key,
        reverse_key=cfg.camera_reverse_key,
        left_key=cfg.camera_left_key,
        overview_key=cfg.camera_overview_key,
        max_hold_sec=camera_hold_limit(cfg.device_lock_timeout_sec),
    )
    monitor = WaveMonitor(
        device,
        stop_manager,
        reveal_key=cfg.wave_reveal_key,
        reveal_settle_sec=cfg.wave_reveal_settle_sec,
        min_interval_sec=cfg.wave_min_interval_sec,
        debug=cfg.debug_ocr,
    )
    return StrategyExecutor(
        device,
        stop_manager,
        viewport,
        monitor,
        timeline,
        traps,
        cfg.loadout,
        hud_rect=cfg.hud_check_rect,
        wave_needs_toggle=cfg.wave_needs_toggle,
        screen_size=(cfg.screen_w, cfg.screen_h),
        safe_zone=cfg.safe_zone,
        loadout_hotkeys=cfg.loadout_hotkeys,
        fallback_hotkey=cfg.fallback_hotkey,
        loadout_open_key=cfg.loadout_open_key,
        loadout_confirm_pos=cfg.loadout_confirm_pos,
        approach_key=cfg.prep_move_key,
        jump_key=cfg.prep_jump_key,
        jump_count=cfg.prep_jump_count,
        jump_interval_sec=cfg.prep_jump_interval_sec,
        demolish_key=cfg.demolish_key,
        upgrade_key=cfg.upgrade_key,
        upgrade_hold_sec=cfg.upgrade_hold_sec,
        phase_advance_key=cfg.phase_advance_key,
        phase_advance_settle_sec=cfg.phase_advance_settle_sec,
        initial_poll_sec=cfg.wave_initial_poll_sec,
        poll_sec=cfg.wave_poll_sec,
        move_duration_sec=cfg.move_duration_sec,
        action_settle_sec=cfg.action_settle_sec,
    )


def run_tower_defense(executor: StrategyExecutor) -> int:
    print(f"[strategy] handover loadout={executor.loadout}")
    try:
        executor.run()
    finally:
        print(f"[strategy] ledger {executor.summary()}")
    return EXIT_OK


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="towerpilot", description="Scene navigator and wave-synced build bot.")
    ap.add_argument("--target-scene", default=None, help="scene id to navigate to before handing over")
    ap.add_argument("--skip-nav", action="store_true", help="start the strategy executor immediately")
    return ap.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        cfg = load_runtime_config()
    except ConfigError as e:
        print(f"[config] {e}")
        return EXIT_CONFIG

    stop_manager = StopManager()
    install_stop_handlers(stop_manager)
    root = Path(__file__).resolve().parent.parent

    try:
        graph = SceneGraph.load(resolve_path(cfg.ui_map_path, root))
    except ConfigError as e:
        print(f"[config] {e}")
        return EXIT_CONFIG

    reader = ScreenReader(WinMediaOCR(lang=cfg.ocr_lang))
    device = SharedDevice(
        InputDriver(window_title=cfg.window_title, focus_before_input=bool(cfg.window_title)),
        reader,
        lock_timeout_sec=cfg.device_lock_timeout_sec,
        debug_ocr=cfg.debug_ocr,
    )
    heartbeat = HeartbeatWorker(device, stop_manager, interval_sec=cfg.heartbeat_interval_sec)

    try:
        executor = build_executor(cfg, device, stop_manager, root)
    except ConfigError as e:
        print(f"[config] {e}")
        reader.close()
        return EXIT_CONFIG

    handlers: Dict[str, Callable[[], int]] = {
        HANDLER_TOWER_DEFENSE: lambda: run_tower_defense(executor),
    }

    heartbeat.start()
    code = EXIT_OK
    try:
        print(f"[control] starting in {cfg.startup_delay_sec:.1f}s, focus the game window")
        stop_manager.sleep_or_raise(cfg.startup_delay_sec)

        target = args.target_scene if args.target_scene is not None else cfg.target_scene
        if args.skip_nav or not target:
            code = run_tower_defense(executor)
        else:
            navigator = Navigator(
                graph,
                device,
                stop_manager,
                confirm_retries=cfg.nav_confirm_retries,
                confirm_interval_sec=cfg.nav_confirm_interval_sec,
                max_replans=cfg.nav_max_replans,
                move_duration_sec=cfg.move_duration_sec,
            )
            result = navigator.navigate(target)
            print(f"[nav] result status={result.status} scene={result.scene} reason={result.reason}")
            if not result.ok:
                code = EXIT_NAV_FAILED
            else:
                handler = graph.get(result.scene).handler
                if handler is None:
                    print(f"[nav] arrived at {result.scene}, no handler")
                elif handler in handlers:
                    code = handlers[handler]()
                else:
                    print(f"[nav] unknown handler '{handler}' on scene {result.scene}, ignored")
    except RunStopRequested as e:
        print(f"[control] stopped: {e}")
    except KeyboardInterrupt:
        print("[control] KeyboardInterrupt")
    finally:
        heartbeat.stop()
        print(f"[device] actions={device.total_actions} failures={device.total_failures}")
        reader.close()
    return code


if __name__ == "__main__":
    raise SystemExit(main())
