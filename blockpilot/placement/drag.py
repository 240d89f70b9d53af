"""Pointer gesture synthesis for dragging blocks.

The runtime's gesture recognizer needs enough intermediate moves to leave
click mode and a pause before release to evaluate its snap candidate; the
settings below those minimums are rejected.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from ..config import DragConfig
from ..errors import GestureError, GestureErrorKind, RemoteError
from ..remote import Pointer
from .geometry import Point

LOGGER = logging.getLogger("blockpilot.drag")

MIN_STEPS = 10
MIN_STEP_DELAY_MS = 10
MIN_PRE_PRESS_MS = 50
MIN_PRE_RELEASE_MS = 150


@dataclass(frozen=True)
class DragTrace:
    points: Tuple[Point, ...]
    highlighted: Optional[bool]


def interpolate(start: Point, end: Point, steps: int) -> List[Point]:
    """``steps`` evenly spaced points after ``start``, the last one being ``end``."""
    return [
        Point(start.x + (end.x - start.x) * i / steps, start.y + (end.y - start.y) * i / steps)
        for i in range(1, steps + 1)
    ]


class DragSimulator:
    def __init__(
        self,
        pointer: Pointer,
        config: Optional[DragConfig] = None,
        *,
        highlight_probe: Optional[Callable[[], bool]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.pointer = pointer
        self.config = config or DragConfig()
        self.highlight_probe = highlight_probe
        self._sleep = sleep
        self._check_minimums()

    def _check_minimums(self) -> None:
        cfg = self.config
        problems = []
        if cfg.steps < MIN_STEPS:
            problems.append(f"steps={cfg.steps} < {MIN_STEPS}")
        if cfg.step_delay_ms < MIN_STEP_DELAY_MS:
            problems.append(f"step_delay_ms={cfg.step_delay_ms} < {MIN_STEP_DELAY_MS}")
        if cfg.pre_press_ms < MIN_PRE_PRESS_MS:
            problems.append(f"pre_press_ms={cfg.pre_press_ms} < {MIN_PRE_PRESS_MS}")
        if cfg.pre_release_ms < MIN_PRE_RELEASE_MS:
            problems.append(f"pre_release_ms={cfg.pre_release_ms} < {MIN_PRE_RELEASE_MS}")
        if problems:
            raise ValueError("drag timing below recognizer minimums: " + ", ".join(problems))

    def simulate_drag(self, start: Point, end: Point) -> DragTrace:
        cfg = self.config
        points = interpolate(start, end, cfg.steps)
        highlighted: Optional[bool] = None
        try:
            self.pointer.move(start.x, start.y)
            self._sleep(cfg.pre_press_ms / 1000)
            self.pointer.down()
            try:
                for point in points:
                    self.pointer.move(point.x, point.y)
                    self._sleep(cfg.step_delay_ms / 1000)
                self._sleep(cfg.pre_release_ms / 1000)
                if self.highlight_probe is not None:
                    highlighted = bool(self.highlight_probe())
            finally:
                self.pointer.up()
        except RemoteError as exc:
            raise GestureError(GestureErrorKind.POINTER_FAILED, str(exc)) from exc

        LOGGER.debug("Drag %s -> %s in %d steps (highlight=%s)", start, end, cfg.steps, highlighted)
        if cfg.require_highlight and highlighted is False:
            raise GestureError(GestureErrorKind.NO_SNAP_HIGHLIGHT, f"no connection preview at {end}")
        return DragTrace(points=tuple(points), highlighted=highlighted)
