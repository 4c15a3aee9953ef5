import unittest

from batchhopper.aggregate import best_keyboard, keyboard_rows, render_keyboard
from batchhopper.models import Key, Keyboard

LETTERS = "abcdefghijklmnopqrstuvwxyz0123456789,./;'[]-=`\\"


def make_keyboard(score: float) -> Keyboard:
    return Keyboard(score=score, keys=tuple(Key(lower=c, upper=c.upper()) for c in LETTERS[:47]))


class BestKeyboardTest(unittest.TestCase):
    def test_lowest_score_wins(self) -> None:
        results = [make_keyboard(3.1), make_keyboard(1.2), make_keyboard(5.0)]
        best = best_keyboard(results)
        assert best is not None
        self.assertEqual(best.score, 1.2)
        self.assertIs(best, results[1])

    def test_empty_results(self) -> None:
        self.assertIsNone(best_keyboard([]))
        self.assertEqual(render_keyboard(None), "")

    def test_ties_keep_first(self) -> None:
        first = make_keyboard(1.0)
        second = make_keyboard(1.0)
        self.assertIs(best_keyboard([first, second]), first)


class KeyboardRowsTest(unittest.TestCase):
    def test_row_lengths(self) -> None:
        keyboard = make_keyboard(0.5)
        rows = keyboard_rows(keyboard)
        self.assertEqual([len(row) for row in rows], [13, 13, 11, 10])
        self.assertEqual(rows[1][0], keyboard.keys[13])
        self.assertEqual(rows[3][-1], keyboard.keys[46])

    def test_render_uses_upper(self) -> None:
        lines = render_keyboard(make_keyboard(0.5)).splitlines()
        self.assertEqual(len(lines), 4)
        self.assertTrue(lines[0].startswith("A B C"))


if __name__ == "__main__":
    unittest.main()
