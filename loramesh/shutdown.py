"""Low-battery warning and shutdown checks."""

from __future__ import annotations

from typing import Callable, Optional

CHECK_INTERVAL = 10_000_000  # microseconds
SHUTDOWN_PERCENT = 1
WARNING_PERCENT = 10


class ShutdownService:
    """Checks the battery periodically, warning once when low and shutting down when empty."""

    def __init__(
        self,
        battery: Callable[[], int],
        on_warning: Callable[[], None],
        on_shutdown: Callable[[], None],
        game_started: Callable[[], bool] = lambda: False,
        stop_game: Optional[Callable[[], None]] = None,
        reset_activity: Optional[Callable[[], None]] = None,
    ):
        self.battery = battery
        self.on_warning = on_warning
        self.on_shutdown = on_shutdown
        self.game_started = game_started
        self.stop_game = stop_game
        self.reset_activity = reset_activity
        self.warning_shown = False
        self.shutdown_started = False
        self._check_timer = 0

    def begin(self) -> None:
        """Arrange for the battery to be checked on the next loop."""
        self._check_timer = CHECK_INTERVAL

    def loop(self, micros: int) -> None:
        self._check_timer += micros
        if self._check_timer < CHECK_INTERVAL:
            return
        self._check_timer = 0

        percentage = self.battery()
        if percentage <= SHUTDOWN_PERCENT and not self.shutdown_started:
            self.shutdown_started = True
            self._show_shutdown()
        elif percentage <= WARNING_PERCENT and not self.warning_shown:
            self.warning_shown = True
            self._show_warning()

    def _show_warning(self) -> None:
        if self.game_started():
            return
        if self.reset_activity is not None:
            self.reset_activity()
        self.on_warning()

    def _show_shutdown(self) -> None:
        if self.game_started() and self.stop_game is not None:
            self.stop_game()
        if self.reset_activity is not None:
            self.reset_activity()
        self.on_shutdown()