import tempfile
import unittest
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[3]
sys.path.insert(0, str(PROJECT_ROOT / "v1"))

from config.runtime_config import ConfigError
from nav.scene_graph import ACTION_DOUBLE_CLICK, ACTION_KEY, ColorAnchor, SceneGraph, TextAnchor


def scene(sid, *targets, **extra):
    row = {
        "id": sid,
        "name": sid,
        "anchors": [{"rect": [0, 0, 10, 10], "text": sid}],
        "transitions": [{"target": t, "coords": [1, 1]} for t in targets],
    }
    row.update(extra)
    return row


def graph(*rows):
    return SceneGraph.from_dict({"scenes": list(rows)})


class SceneGraphLoadTests(unittest.TestCase):
    def test_loads_flat_and_grouped_anchors_from_toml(self):
        text = """
[[scenes]]
id = "menu"
name = "Main"
anchors = [{ rect = [10, 20, 110, 60], text = "Start" }]

[[scenes.transitions]]
target = "lobby"
trigger_btn = [50, 40]
post_delay = 1200

[[scenes]]
id = "lobby"
name = "Lobby"
logic = "or"

[scenes.anchors]
text = [{ rect = [0, 0, 100, 30], val = "Lobby" }]
color = [{ pos = [5, 6], val = "#FF8000", tol = 12 }]

[[scenes.transitions]]
target = "menu"
key = "esc"
"""
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "ui_map.toml"
            path.write_text(text, encoding="utf-8")
            g = SceneGraph.load(path)

        self.assertEqual(len(g), 2)
        menu = g.get("menu")
        self.assertEqual(menu.anchors, (TextAnchor(rect=(10, 20, 110, 60), text="Start"),))
        self.assertEqual(menu.transitions[0].coords, (50, 40))
        self.assertEqual(menu.transitions[0].post_delay_ms, 1200)

        lobby = g.get("lobby")
        self.assertEqual(lobby.logic, "or")
        self.assertIn(TextAnchor(rect=(0, 0, 100, 30), text="Lobby"), lobby.anchors)
        self.assertIn(ColorAnchor(pos=(5, 6), color=(255, 128, 0), tolerance=12), lobby.anchors)
        back = lobby.transitions[0]
        self.assertEqual(back.action, ACTION_KEY)
        self.assertEqual(back.key, "esc")
        self.assertEqual(back.post_delay_ms, 500)

    def test_shipped_ui_map_is_valid(self):
        g = SceneGraph.load(PROJECT_ROOT / "configs" / "ui_map.toml")
        path = g.find_path("main_menu", "td_battle")
        self.assertEqual([t.target for t in path], ["mode_select", "td_lobby", "td_battle"])
        self.assertEqual(path[-1].action, ACTION_DOUBLE_CLICK)
        self.assertEqual(g.get("td_battle").handler, "tower_defense")

    def test_dangling_target_is_rejected_at_load(self):
        with self.assertRaises(ConfigError):
            graph(scene("a", "b"), scene("b", "ghost"))

    def test_missing_file_and_bad_fields_raise_config_error(self):
        with self.assertRaises(ConfigError):
            SceneGraph.load(PROJECT_ROOT / "configs" / "does_not_exist.toml")
        with self.assertRaises(ConfigError):
            graph(scene("a", logic="xor"))
        with self.assertRaises(ConfigError):
            graph({"id": "a", "anchors": {"color": [{"pos": [1, 1], "val": "#GG0000"}]}})
        with self.assertRaises(ConfigError):
            graph({"id": "a", "transitions": [{"target": "a"}]})
        with self.assertRaises(ConfigError):
            graph({"id": "a", "transitions": [{"target": "a", "coords": [10, 10], "post_delay": "slow"}]})
        with self.assertRaises(ConfigError):
            graph({"id": "a", "anchors": {"color": [{"pos": [1, 1], "val": "#FF0000", "tol": "loose"}]}})
        with self.assertRaises(ConfigError):
            SceneGraph.from_dict({"scenes": []})

    def test_duplicate_id_last_definition_wins_and_keeps_first_position(self):
        g = graph(
            scene("a", "b"),
            scene("b"),
            scene("a", "b", name="second"),
        )
        self.assertEqual([s.id for s in g.scenes], ["a", "b"])
        self.assertEqual(g.get("a").name, "second")

    def test_transitions_are_resolved_to_indices(self):
        g = graph(scene("a", "c"), scene("b"), scene("c", "a"))
        self.assertEqual(g.get("a").transitions[0].target_index, 2)
        self.assertEqual(g.get("c").transitions[0].target_index, 0)


class FindPathTests(unittest.TestCase):
    def test_returns_shortest_path(self):
        g = graph(
            scene("a", "b", "c"),
            scene("b", "c"),
            scene("c", "d"),
            scene("d"),
        )
        path = g.find_path("a", "d")
        self.assertEqual([(t.source, t.target) for t in path], [("a", "c"), ("c", "d")])

    def test_tie_break_follows_transition_declaration_order(self):
        g = graph(
            scene("a", "c", "b"),
            scene("b", "d"),
            scene("c", "d"),
            scene("d"),
        )
        first = g.find_path("a", "d")
        self.assertEqual([t.source for t in first], ["a", "c"])
        for _ in range(5):
            self.assertEqual(g.find_path("a", "d"), first)

    def test_same_start_and_target_gives_empty_path(self):
        g = graph(scene("a", "a"))
        self.assertEqual(g.find_path("a", "a"), [])

    def test_unreachable_or_unknown_gives_none(self):
        g = graph(scene("a", "b"), scene("b", "a"), scene("island"))
        self.assertIsNone(g.find_path("a", "island"))
        self.assertIsNone(g.find_path("a", "nowhere"))
        self.assertIsNone(g.find_path("nowhere", "a"))

    def test_cycles_and_self_loops_terminate(self):
        g = graph(scene("a", "a", "b"), scene("b", "b", "a", "c"), scene("c", "a"))
        path = g.find_path("a", "c")
        self.assertEqual([t.target for t in path], ["b", "c"])


if __name__ == "__main__":
    unittest.main()
