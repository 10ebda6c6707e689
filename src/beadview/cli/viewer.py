"""Interactive live viewer — key handling on top of rich.live.Live."""

from __future__ import annotations

import logging
import os
import select
import sys
from contextlib import contextmanager
from typing import Iterator

from rich.console import Console, Group
from rich.live import Live
from rich.text import Text

from beadview.refresh import RefreshReconciler
from beadview.render import DEFAULT_THEME, Theme, render_detail, render_view
from beadview.search import ViewMode
from beadview.store import StoreError

logger = logging.getLogger(__name__)

KEY_UP = "up"
KEY_DOWN = "down"
KEY_ENTER = "enter"
KEY_ESCAPE = "escape"
KEY_BACKSPACE = "backspace"

_ARROWS = {"[A": KEY_UP, "[B": KEY_DOWN, "OA": KEY_UP, "OB": KEY_DOWN}

_VIEW_CYCLE = [ViewMode.ALL, ViewMode.ACTIVE, ViewMode.READY]

HELP_LINE = (
    "j/k move  g/G top/bottom  space toggle  h/l collapse/expand  "
    "e/c expand/collapse all  / filter  v view  d detail  n new  r refresh  q quit"
)


@contextmanager
def cbreak(stream=None) -> Iterator[None]:
    """Put the terminal in cbreak mode for single-key reads; no-op when not a TTY."""
    stream = stream or sys.stdin
    if not stream.isatty():
        yield
        return
    import termios
    import tty

    fd = stream.fileno()
    old = termios.tcgetattr(fd)
    try:
        tty.setcbreak(fd)
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, old)


def read_key(timeout: float, stream=None) -> str | None:
    """Read one key press, waiting at most ``timeout`` seconds."""
    stream = stream or sys.stdin
    ready, _, _ = select.select([stream], [], [], timeout)
    if not ready:
        return None
    fd = stream.fileno()
    ch = os.read(fd, 1).decode(errors="ignore")
    if ch == "\x1b":
        more, _, _ = select.select([stream], [], [], 0.01)
        if not more:
            return KEY_ESCAPE
        seq = os.read(fd, 2).decode(errors="ignore")
        return _ARROWS.get(seq, KEY_ESCAPE)
    if ch in ("\r", "\n"):
        return KEY_ENTER
    if ch in ("\x7f", "\x08"):
        return KEY_BACKSPACE
    return ch


class ViewerController:
    """Maps key presses onto navigation operations."""

    def __init__(self, reconciler: RefreshReconciler) -> None:
        self.reconciler = reconciler
        self.editing_filter = False
        self.filter_buffer = ""
        self.editing_create = False
        self.create_buffer = ""
        self.create_parent: str | None = None
        self.show_detail = False

    @property
    def state(self):
        return self.reconciler.state

    def handle_key(self, key: str) -> bool:
        """Apply one key. Returns False when the viewer should exit."""
        if self.editing_filter:
            self._handle_filter_key(key)
            return True
        if self.editing_create:
            self._handle_create_key(key)
            return True

        state = self.state
        if key in ("q", "\x03"):
            return False
        if key in ("j", KEY_DOWN):
            state.move_cursor(1)
        elif key in ("k", KEY_UP):
            state.move_cursor(-1)
        elif key == "g":
            state.cursor_to_top()
        elif key == "G":
            state.cursor_to_bottom()
        elif key in (" ", KEY_ENTER):
            state.toggle_current()
        elif key == "l":
            if state.selected_id:
                state.expand(state.selected_id)
        elif key == "h":
            if state.selected_id:
                state.collapse(state.selected_id)
        elif key == "e":
            state.expand_all()
        elif key == "c":
            state.collapse_all()
        elif key == "/":
            self.editing_filter = True
            self.filter_buffer = state.filter_text
        elif key == KEY_ESCAPE:
            if self.show_detail:
                self.show_detail = False
            else:
                state.clear_filter()
        elif key == "v":
            idx = _VIEW_CYCLE.index(state.view_mode)
            state.set_view_mode(_VIEW_CYCLE[(idx + 1) % len(_VIEW_CYCLE)])
        elif key == "d":
            self.show_detail = not self.show_detail
        elif key == "n":
            # New issues go under the selected row.
            self.editing_create = True
            self.create_buffer = ""
            self.create_parent = state.selected_id
        elif key == "r":
            if not self.reconciler.request_refresh(force=True):
                self.reconciler.notify("Refresh already in progress", "warning")
        return True

    def _handle_filter_key(self, key: str) -> None:
        if key == KEY_ENTER:
            self.editing_filter = False
        elif key == KEY_ESCAPE:
            self.editing_filter = False
            self.filter_buffer = ""
            self.state.clear_filter()
        elif key == KEY_BACKSPACE:
            self.filter_buffer = self.filter_buffer[:-1]
            self.state.set_filter(self.filter_buffer)
        elif len(key) == 1 and key.isprintable():
            self.filter_buffer += key
            self.state.set_filter(self.filter_buffer)

    def _handle_create_key(self, key: str) -> None:
        if key == KEY_ENTER:
            self.editing_create = False
            self._create(self.create_buffer)
        elif key == KEY_ESCAPE:
            self.editing_create = False
        elif key == KEY_BACKSPACE:
            self.create_buffer = self.create_buffer[:-1]
        elif len(key) == 1 and key.isprintable():
            self.create_buffer += key

    def _create(self, title: str) -> None:
        parent_id = self.create_parent
        try:
            record = self.reconciler.store.create(title, parent_id=parent_id)
        except (ValueError, StoreError) as exc:
            logger.warning("Create failed: %s", exc)
            self.reconciler.notify(f"Create failed: {exc}", "error")
            return
        self.reconciler.inject_created(record, parent_id)

    def frame(self, theme: Theme, height: int | None):
        state = self.state
        parts = [
            render_view(
                state,
                delta=self.reconciler.last_delta,
                notifications=self.reconciler.notifications(),
                theme=theme,
                height=None if height is None else height - 2,
            )
        ]
        if self.show_detail and state.selected_id:
            parts.insert(0, render_detail(state.forest, state.selected_id, theme))
        if self.editing_filter:
            parts.append(Text(f"/{self.filter_buffer}▏", style="yellow"))
        elif self.editing_create:
            under = f" under {self.create_parent}" if self.create_parent else ""
            parts.append(Text(f"new{under}: {self.create_buffer}▏", style="yellow"))
        else:
            parts.append(Text(HELP_LINE, style=theme.dim_style))
        return Group(*parts)


def run_viewer(
    reconciler: RefreshReconciler,
    console: Console,
    theme: Theme = DEFAULT_THEME,
    poll_seconds: float = 0.2,
) -> None:
    """Drive the live viewer until the user quits.

    Ctrl+C exits immediately; an in-flight fetch thread is abandoned.
    """
    controller = ViewerController(reconciler)
    with cbreak(), Live(console=console, auto_refresh=False, screen=True) as live:
        live.update(controller.frame(theme, console.height), refresh=True)
        try:
            while True:
                key = read_key(poll_seconds)
                if key is not None and not controller.handle_key(key):
                    break
                reconciler.tick()
                live.update(controller.frame(theme, console.height), refresh=True)
        except KeyboardInterrupt:
            logger.info("Viewer interrupted")
