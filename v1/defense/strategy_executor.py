from typing import Dict, List, Optional, Sequence, Tuple

from defense.strategy_data import (
    BuildingPlacement,
    DemolishEvent,
    ExecutionState,
    StrategyTimeline,
    TrapConfigItem,
    UpgradeEvent,
)
from defense.viewport import ViewportTracker
from defense.wave_monitor import WaveMonitor
from runtime.stop_manager import RunStopRequested

MAX_LOADOUT_SLOTS = 4


class StrategyExecutor:
    """Drives the build timeline in lockstep with confirmed waves.

    Every device action is fire-and-forget: the ledger in ``state`` is updated
    right after an action is issued, without checking that the game applied it.
    """

    def __init__(
        self,
        device,
        stop_manager,
        viewport: ViewportTracker,
        wave_monitor: WaveMonitor,
        timeline: StrategyTimeline,
        traps: Dict[str, TrapConfigItem],
        loadout: Sequence[str],
        hud_rect: Tuple[int, int, int, int] = (845, 88, 1098, 175),
        wave_needs_toggle: bool = True,
        screen_size: Tuple[int, int] = (1920, 1080),
        safe_zone: Tuple[int, int, int, int] = (200, 200, 1720, 880),
        loadout_hotkeys: Sequence[str] = ("4", "5", "6", "7"),
        fallback_hotkey: str = "1",
        loadout_open_key: str = "n",
        loadout_confirm_pos: Optional[Tuple[int, int]] = (212, 294),
        approach_key: str = "w",
        jump_key: str = "space",
        jump_count: int = 3,
        jump_interval_sec: float = 0.6,
        demolish_key: str = "x",
        upgrade_key: str = "e",
        upgrade_hold_sec: float = 1.5,
        phase_advance_key: str = "g",
        phase_advance_settle_sec: float = 1.0,
        initial_poll_sec: float = 0.5,
        poll_sec: float = 2.0,
        move_duration_sec: float = 0.4,
        action_settle_sec: float = 0.3,
        state: Optional[ExecutionState] = None,
    ):
        self.device = device
        self.stop_manager = stop_manager
        self.viewport = viewport
        self.wave_monitor = wave_monitor
        self.timeline = timeline
        self.traps = dict(traps)
        self.loadout = list(loadout)
        self.hud_rect = tuple(hud_rect)
        self.wave_needs_toggle = bool(wave_needs_toggle)
        self.screen_w, self.screen_h = int(screen_size[0]), int(screen_size[1])
        self.safe_zone = tuple(int(v) for v in safe_zone)
        self.loadout_hotkeys = list(loadout_hotkeys)
        self.fallback_hotkey = fallback_hotkey
        self.loadout_open_key = loadout_open_key
        self.loadout_confirm_pos = loadout_confirm_pos
        self.approach_key = approach_key
        self.jump_key = jump_key
        self.jump_count = int(max(0, jump_count))
        self.jump_interval_sec = float(jump_interval_sec)
        self.demolish_key = demolish_key
        self.upgrade_key = upgrade_key
        self.upgrade_hold_sec = float(upgrade_hold_sec)
        self.phase_advance_key = phase_advance_key
        self.phase_advance_settle_sec = float(phase_advance_settle_sec)
        self.initial_poll_sec = float(initial_poll_sec)
        self.poll_sec = float(poll_sec)
        self.move_duration_sec = float(move_duration_sec)
        self.action_settle_sec = float(action_settle_sec)
        self.state = state if state is not None else ExecutionState()
        self._last_hotkey: Optional[str] = None
        self._prepared = False

    def _pause(self, seconds: float):
        if self.stop_manager.wait(seconds):
            raise RunStopRequested(self.stop_manager.reason() or "stop_requested")

    # --- lookups ---

    def hotkey_for(self, name: str) -> str:
        try:
            idx = self.loadout.index(name)
        except ValueError:
            # Names outside the loadout land on the first slot.
            return self.loadout_hotkeys[0]
        if idx < len(self.loadout_hotkeys):
            return self.loadout_hotkeys[idx]
        return self.fallback_hotkey

    def resolve_screen_point(self, item: BuildingPlacement) -> Optional[Tuple[int, int]]:
        """Scroll the item into view and return its clamped on-screen point, or None if off-screen."""
        abs_x, abs_y = self.viewport.to_absolute_pixel(item.grid_x, item.grid_y, item.width, item.height)
        self.viewport.ensure_visible(abs_y)
        sx, sy = self.viewport.to_screen(abs_x, abs_y)
        if sx < 0 or sx > self.screen_w or sy < 0 or sy > self.screen_h:
            print(f"[strategy] skip {item.name} uid={item.uid} off-screen=({sx:.0f},{sy:.0f})")
            return None
        x1, y1, x2, y2 = self.safe_zone
        x = int(round(min(max(sx, x1), x2)))
        y = int(round(min(max(sy, y1), y2)))
        return (x, y)

    # --- single actions ---

    def _place(self, b: BuildingPlacement):
        pt = self.resolve_screen_point(b)
        if pt is None:
            self.state.skipped_ids.add(b.uid)
            return
        key = self.hotkey_for(b.name)
        print(f"[strategy] place {b.name} uid={b.uid} key={key} screen={pt}")
        self.device.move_to(pt[0], pt[1], self.move_duration_sec)
        self._pause(self.action_settle_sec)
        if key != self._last_hotkey:
            self.device.key_click(key)
            self._last_hotkey = key
            self._pause(self.action_settle_sec)
        self.device.double_click()
        self.state.placed_ids.add(b.uid)
        self.state.placed_by_name.setdefault(b.name, []).append(b)
        self._pause(self.action_settle_sec)

    def _demolish(self, d: DemolishEvent):
        pt = self.resolve_screen_point(d)
        if pt is None:
            # Off-screen demolitions are dropped for the run as well.
            self.state.demolished_ids.add(d.uid)
            return
        print(f"[strategy] demolish {d.name} uid={d.uid} screen={pt}")
        self.device.move_to(pt[0], pt[1], self.move_duration_sec)
        self.device.click()
        self._pause(self.action_settle_sec)
        self.device.key_click(self.demolish_key)
        self.state.demolished_ids.add(d.uid)
        placed = self.state.placed_by_name.get(d.name)
        if placed:
            self.state.placed_by_name[d.name] = [b for b in placed if b.uid != d.uid]
        self._pause(self.action_settle_sec)

    def _upgrade(self, u: UpgradeEvent):
        targets = list(self.state.placed_by_name.get(u.building_name) or [])
        if not targets:
            print(f"[strategy] upgrade {u.building_name} wave={u.wave_num} has no placed target")
        for b in targets:
            pt = self.resolve_screen_point(b)
            if pt is None:
                continue
            print(f"[strategy] upgrade {b.name} uid={b.uid} screen={pt}")
            self.device.move_to(pt[0], pt[1], self.move_duration_sec)
            self._pause(self.action_settle_sec)
            self.device.key_hold(self.upgrade_key, self.upgrade_hold_sec)
            self._pause(self.action_settle_sec)
        self.state.completed_upgrades.add(u.key)

    # --- phases ---

    def execute_wave_phase(self, wave: int, late: bool) -> int:
        """Run the demolish, place and upgrade steps scheduled for ``(wave, late)``.

        Entries already in the ledger are not repeated. Returns how many entries were handled.
        """
        demolishes = [
            d for d in self.timeline.demolishes_for(wave, late) if d.uid not in self.state.demolished_ids
        ]
        placements = [
            b
            for b in self.timeline.placements_for(wave, late)
            if b.uid not in self.state.placed_ids and b.uid not in self.state.skipped_ids
        ]
        upgrades = [u for u in self.timeline.upgrades_for(wave, late) if u.key not in self.state.completed_upgrades]

        handled = len(demolishes) + len(placements) + len(upgrades)
        if handled:
            print(
                f"[strategy] wave={wave} phase={'late' if late else 'early'} "
                f"demolish={len(demolishes)} place={len(placements)} upgrade={len(upgrades)}"
            )
        for d in demolishes:
            self._demolish(d)
        for b in placements:
            self._place(b)
        for u in upgrades:
            self._upgrade(u)
        return handled

    def select_loadout(self) -> List[str]:
        picked: List[str] = []
        for name in self.loadout[:MAX_LOADOUT_SLOTS]:
            item = self.traps.get(name)
            if item is None:
                print(f"[strategy] loadout {name} has no UI position, skipped")
                continue
            x, y = item.select_pos
            if x == 0 and y == 0:
                continue
            self.device.move_to(x, y, self.move_duration_sec)
            self.device.click()
            picked.append(name)
            self._pause(0.4)
        print(f"[strategy] loadout selected: {picked}")
        return picked

    def approach(self):
        """Walk forward onto the build floor, hopping over the spawn ledge on the way."""
        self.device.key_down(self.approach_key)
        try:
            for _ in range(self.jump_count):
                self._pause(self.jump_interval_sec)
                self.device.key_click(self.jump_key)
            self._pause(0.2)
        finally:
            self.device.key_up(self.approach_key)
        self._pause(0.8)

    def prepare(self):
        """Walk in, pick the loadout and align the camera. Runs at most once per executor."""
        if self._prepared:
            return
        self.approach()
        self.device.key_click(self.loadout_open_key)
        self._pause(1.2)
        if self.loadout_confirm_pos is not None:
            cx, cy = self.loadout_confirm_pos
            self.device.move_to(cx, cy, self.move_duration_sec)
            self.device.click()
            self._pause(0.4)
        self.select_loadout()
        self.device.key_click(self.loadout_open_key)
        self._pause(0.5)
        self.viewport.align_to_origin()
        self._last_hotkey = None
        self._prepared = True

    def wait_for_start(self) -> int:
        while True:
            wave = self.wave_monitor.sample(self.hud_rect, self.wave_needs_toggle)
            if wave is not None and wave > 0:
                print(f"[strategy] sub-game started wave={wave}")
                return wave
            self._pause(self.initial_poll_sec)

    def run(self, max_waves: Optional[int] = None) -> int:
        """Main loop. Without ``max_waves`` it only ends through a stop request."""
        start = self.wait_for_start()
        self.prepare()
        expected = self.wave_monitor.state.last_confirmed + 1
        if start > expected:
            print(
                f"[wave] WARNING: started at wave={start}, expected wave={expected}; "
                f"earlier waves are not replayed"
            )
        handled = 0
        while True:
            wave = self.wave_monitor.sample(self.hud_rect, self.wave_needs_toggle)
            if self.wave_monitor.validate_transition(wave):
                self.execute_wave_phase(wave, False)
                self.device.key_click(self.phase_advance_key)
                self._pause(self.phase_advance_settle_sec)
                self.execute_wave_phase(wave, True)
                handled += 1
                if max_waves is not None and handled >= max_waves:
                    return handled
            self._pause(self.poll_sec)

    def summary(self) -> str:
        s = self.state
        return (
            f"placed={len(s.placed_ids)} demolished={len(s.demolished_ids)} "
            f"upgrades={len(s.completed_upgrades)} skipped={len(s.skipped_ids)}"
        )
