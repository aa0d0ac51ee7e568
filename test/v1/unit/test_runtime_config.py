import os
import unittest
import sys
from pathlib import Path
from unittest import mock

PROJECT_ROOT = Path(__file__).resolve().parents[3]
sys.path.insert(0, str(PROJECT_ROOT / "v1"))

from config.runtime_config import ConfigError, load_runtime_config


class RuntimeConfigTests(unittest.TestCase):
    def test_defaults_match_reference_layout(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            cfg = load_runtime_config()
        self.assertEqual((cfg.screen_w, cfg.screen_h), (1920, 1080))
        self.assertEqual(cfg.safe_zone, (200, 200, 1720, 880))
        self.assertEqual(cfg.hud_check_rect, (845, 88, 1098, 175))
        self.assertEqual(cfg.camera_speed_px_s, 720.0)
        self.assertEqual(cfg.camera_min_motion_px, 5.0)
        self.assertEqual(cfg.camera_settle_sec, 0.4)
        self.assertEqual(cfg.loadout_hotkeys, ["4", "5", "6", "7"])
        self.assertEqual(cfg.fallback_hotkey, "1")
        self.assertEqual(cfg.loadout_confirm_pos, (212, 294))
        self.assertEqual(cfg.loadout, [])
        self.assertEqual(cfg.ui_map_path, "configs/ui_map.toml")
        self.assertEqual((cfg.prep_move_key, cfg.prep_jump_key), ("w", "space"))
        self.assertEqual((cfg.prep_jump_count, cfg.prep_jump_interval_sec), (3, 0.6))

    def test_env_overrides_are_parsed(self):
        env = {
            "TOWERPILOT_LOADOUT": "破坏者; 自修复磁暴塔 ;防空导弹",
            "TOWERPILOT_LOADOUT_HOTKEYS": "F1, F2",
            "TOWERPILOT_SAFE_ZONE": "1700,880,220,210",
            "TOWERPILOT_DEBUG_OCR": "yes",
            "TOWERPILOT_LOADOUT_CONFIRM_POS": "none",
            "TOWERPILOT_NAV_CONFIRM_RETRIES": "0",
            "TOWERPILOT_TARGET_SCENE": " td_battle ",
            "TOWERPILOT_PREP_JUMP_COUNT": "0",
            "TOWERPILOT_PREP_MOVE_KEY": "Up",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            cfg = load_runtime_config()
        self.assertEqual(cfg.loadout, ["破坏者", "自修复磁暴塔", "防空导弹"])
        self.assertEqual(cfg.loadout_hotkeys, ["f1", "f2"])
        self.assertEqual(cfg.safe_zone, (220, 210, 1700, 880))
        self.assertTrue(cfg.debug_ocr)
        self.assertIsNone(cfg.loadout_confirm_pos)
        self.assertEqual(cfg.nav_confirm_retries, 1)
        self.assertEqual(cfg.target_scene, "td_battle")
        self.assertEqual(cfg.prep_jump_count, 0)
        self.assertEqual(cfg.prep_move_key, "up")

    def test_deprecated_hud_rect_name_is_still_read(self):
        with mock.patch.dict(os.environ, {"TOWERPILOT_WAVE_RECT": "10,10,200,60"}, clear=True):
            cfg = load_runtime_config()
        self.assertEqual(cfg.hud_check_rect, (10, 10, 200, 60))

    def test_malformed_rect_falls_back_to_default(self):
        with mock.patch.dict(os.environ, {"TOWERPILOT_HUD_RECT": "1,2,3"}, clear=True):
            cfg = load_runtime_config()
        self.assertEqual(cfg.hud_check_rect, (845, 88, 1098, 175))

    def test_invalid_values_raise_config_error(self):
        cases = [
            {"TOWERPILOT_SCREEN_W": "wide"},
            {"TOWERPILOT_SCREEN_H": "0"},
            {"TOWERPILOT_SAFE_ZONE": "0,0,2000,900"},
            {"TOWERPILOT_CAMERA_SPEED": "0"},
            {"TOWERPILOT_CAMERA_MIN_MOTION_PX": "-1"},
            {"TOWERPILOT_WAVE_MIN_INTERVAL_SEC": "-5"},
            {"TOWERPILOT_WAVE_POLL_SEC": "0"},
        ]
        for env in cases:
            with mock.patch.dict(os.environ, env, clear=True):
                with self.assertRaises(ConfigError, msg=repr(env)):
                    load_runtime_config()


if __name__ == "__main__":
    unittest.main()
