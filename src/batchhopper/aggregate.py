from __future__ import annotations

from typing import Iterable

from .models import KEYBOARD_KEY_COUNT, Key, Keyboard

ROW_LENGTHS = (13, 13, 11, 10)


def best_keyboard(results: Iterable[Keyboard]) -> Keyboard | None:
    """Return the lowest-scoring keyboard, or None when there are no results.

    Equal scores resolve to whichever came first in `results`.
    """
    ranked = sorted(results, key=lambda keyboard: keyboard.score)
    if not ranked:
        return None
    return ranked[0]


def keyboard_rows(keyboard: Keyboard) -> list[list[Key]]:
    if len(keyboard.keys) != KEYBOARD_KEY_COUNT:
        raise ValueError(f"keyboard must have {KEYBOARD_KEY_COUNT} keys, got {len(keyboard.keys)}")
    rows: list[list[Key]] = []
    start = 0
    for length in ROW_LENGTHS:
        rows.append(list(keyboard.keys[start : start + length]))
        start += length
    return rows


def render_keyboard(keyboard: Keyboard | None) -> str:
    if keyboard is None:
        return ""
    lines = [" ".join(key.upper for key in row) for row in keyboard_rows(keyboard)]
    # indent each row a little further, like a physical staggered layout
    return "\n".join(" " * idx + line for idx, line in enumerate(lines))
