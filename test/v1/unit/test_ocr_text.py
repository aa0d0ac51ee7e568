import random
import unittest
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[3]
sys.path.insert(0, str(PROJECT_ROOT / "v1"))

from runtime.input_driver import ease_in_out, humanized_path
from vision.ocr_winmedia import normalize_text, text_matches
from vision.screen_reader import color_within_tolerance, rect_to_monitor


class TextMatchTests(unittest.TestCase):
    def test_normalize_folds_width_and_spacing(self):
        self.assertEqual(normalize_text(" 波次：3 / 20 "), "波次:3/20")
        self.assertEqual(normalize_text("Start\tGame\n"), "startgame")
        self.assertEqual(normalize_text(None), "")

    def test_match_is_normalized_containment(self):
        self.assertTrue(text_matches("» START GAME «", "Start Game"))
        self.assertTrue(text_matches("模式选择 ", "模式选择"))
        self.assertFalse(text_matches("Lobby", "Main Menu"))
        self.assertFalse(text_matches("", "Lobby"))
        self.assertFalse(text_matches("anything", "  "))


class ColorTests(unittest.TestCase):
    def test_tolerance_is_per_channel_max(self):
        self.assertTrue(color_within_tolerance((100, 100, 100), (110, 95, 100), 10))
        self.assertFalse(color_within_tolerance((100, 100, 100), (111, 100, 100), 10))
        self.assertTrue(color_within_tolerance((0, 0, 0), (0, 0, 0), 0))

    def test_rect_to_monitor_normalizes_corners(self):
        self.assertEqual(
            rect_to_monitor((200, 150, 100, 50)),
            {"left": 100, "top": 50, "width": 100, "height": 100},
        )


class HumanizedPathTests(unittest.TestCase):
    def test_path_ends_exactly_on_target(self):
        path = humanized_path((0, 0), (300, 120), steps=20, jitter_px=2, rng=random.Random(7))
        self.assertEqual(len(path), 20)
        self.assertEqual(path[-1], (300, 120))
        for x, y in path:
            self.assertTrue(-2 <= x <= 302)
            self.assertTrue(-2 <= y <= 122)

    def test_easing_is_monotonic_and_bounded(self):
        vals = [ease_in_out(i / 10) for i in range(11)]
        self.assertEqual(vals[0], 0.0)
        self.assertEqual(vals[-1], 1.0)
        self.assertEqual(vals, sorted(vals))
        self.assertEqual(ease_in_out(2.0), 1.0)


if __name__ == "__main__":
    unittest.main()
