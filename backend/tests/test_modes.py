import unittest

from engagement_timeline.core.modes import (
    ModeEvent,
    ModeTimeline,
    SessionMode,
    build_mode_timeline,
    coerce_mode,
    mode_label,
    parse_mode,
    resolve_mode,
)


class TestParseMode(unittest.TestCase):

    def test_known_modes_are_case_insensitive(self):
        self.assertIs(parse_mode("Teaching"), SessionMode.TEACHING)
        self.assertIs(parse_mode(" group_work "), SessionMode.GROUP_WORK)

    def test_unknown_mode_is_kept_verbatim(self):
        self.assertEqual(parse_mode("unknown_mode"), "unknown_mode")

    def test_empty_mode_uses_default(self):
        self.assertIsNone(parse_mode(""))
        self.assertIs(coerce_mode(None, SessionMode.TEACHING), SessionMode.TEACHING)

    def test_mode_label(self):
        self.assertEqual(mode_label(SessionMode.BREAK), "break")
        self.assertEqual(mode_label("custom"), "custom")


class TestModeTimeline(unittest.TestCase):

    def setUp(self):
        self.timeline = build_mode_timeline(
            {"300": {"mode": "exam"}, "100": {"mode": "teaching"}, "200": {"mode": "discussion"}}
        )

    def test_sorted_ascending(self):
        self.assertEqual([event.time for event in self.timeline], [100, 200, 300])

    def test_step_function(self):
        cases = [
            (50, SessionMode.TEACHING),
            (150, SessionMode.TEACHING),
            (200, SessionMode.DISCUSSION),
            (250, SessionMode.DISCUSSION),
            (1000, SessionMode.EXAM),
        ]
        for t, expected in cases:
            with self.subTest(t=t):
                self.assertIs(self.timeline.mode_at(t), expected)

    def test_empty_timeline_uses_default(self):
        timeline = build_mode_timeline({}, default_mode=SessionMode.TEACHING)
        self.assertFalse(timeline)
        self.assertIs(timeline.mode_at(12345), SessionMode.TEACHING)
        self.assertIs(resolve_mode(5, timeline, SessionMode.BREAK), SessionMode.BREAK)

    def test_ties_resolve_to_later_event(self):
        timeline = ModeTimeline(
            [ModeEvent(100, SessionMode.TEACHING), ModeEvent(100, SessionMode.BREAK), ModeEvent(50, SessionMode.EXAM)]
        )
        self.assertEqual([event.mode for event in timeline], [SessionMode.EXAM, SessionMode.TEACHING, SessionMode.BREAK])
        self.assertIs(timeline.mode_at(100), SessionMode.BREAK)
        self.assertIs(timeline.mode_at(99), SessionMode.EXAM)

    def test_invalid_keys_are_dropped(self):
        timeline = build_mode_timeline({"garbage": {"mode": "exam"}, "10": {"mode": "break"}})
        self.assertEqual(len(timeline), 1)
        self.assertIs(timeline.mode_at(0), SessionMode.BREAK)

    def test_bare_string_payload_and_empty_mode(self):
        timeline = build_mode_timeline({"10": "exam", "20": {"mode": ""}}, default_mode=SessionMode.DISCUSSION)
        self.assertIs(timeline.mode_at(15), SessionMode.EXAM)
        self.assertIs(timeline.mode_at(25), SessionMode.DISCUSSION)

    def test_to_list(self):
        self.assertEqual(self.timeline.to_list()[0], {"time": 100, "mode": "teaching"})


if __name__ == "__main__":
    unittest.main()
