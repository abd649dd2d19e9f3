"""Key clicks and the new-message melody played on the piezo buzzer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Protocol

NOTE_C4 = 262
NOTE_D4 = 294
NOTE_E4 = 330
NOTE_F4 = 349
NOTE_G4 = 392
NOTE_A4 = 440
NOTE_B4 = 494
NOTE_C5 = 523
NOTE_D5 = 587
NOTE_E5 = 659
NOTE_F5 = 698
NOTE_G5 = 784
NOTE_B5 = 988

CLICK_DURATION = 25  # milliseconds


class Piezo(Protocol):
    def tone(self, freq: int, duration: int = 0) -> None: ...

    def no_tone(self) -> None: ...


class Button(Enum):
    ONE = auto()
    TWO = auto()
    THREE = auto()
    FOUR = auto()
    FIVE = auto()
    SIX = auto()
    SEVEN = auto()
    EIGHT = auto()
    NINE = auto()
    L = auto()
    ZERO = auto()
    R = auto()
    LEFT = auto()
    RIGHT = auto()
    ENTER = auto()
    BACK = auto()


@dataclass(frozen=True)
class Note:
    """A tone frequency in Hz (0 for silence) held for ``duration`` microseconds."""

    freq: int
    duration: int


NOTE_MAP: dict[Button, int] = {
    Button.ONE: NOTE_C4,
    Button.TWO: NOTE_D4,
    Button.THREE: NOTE_E4,
    Button.FOUR: NOTE_F4,
    Button.FIVE: NOTE_G4,
    Button.SIX: NOTE_A4,
    Button.SEVEN: NOTE_B4,
    Button.EIGHT: NOTE_C5,
    Button.NINE: NOTE_D5,
    Button.L: NOTE_E5,
    Button.ZERO: NOTE_F5,
    Button.R: NOTE_G5,
    Button.LEFT: NOTE_B4,
    Button.RIGHT: NOTE_B4,
    Button.ENTER: NOTE_C5,
    Button.BACK: NOTE_A4,
}

MELODY = (
    Note(NOTE_B5, 100_000),
    Note(0, 50_000),
    Note(NOTE_B4, 100_000),
)


class BuzzerService:
    """Clicks on button presses and plays a short melody when a message arrives."""

    def __init__(
        self,
        piezo: Piezo,
        own_uid: int = 0,
        sound: Callable[[], bool] = lambda: True,
        game_started: Callable[[], bool] = lambda: False,
    ):
        self.piezo = piezo
        self.own_uid = own_uid
        self.sound = sound
        self.game_started = game_started
        self.no_buzz_uid = own_uid
        self.mute_enter = False
        self.playing = False
        self._note_index = 0
        self._note_time = 0

    def message_received(self, message: Any) -> None:
        """Start the melody unless sound is off or the message's conversation is open."""
        if not self.sound():
            return
        if message.convo == self.no_buzz_uid and self.no_buzz_uid != self.own_uid:
            return
        self.playing = True
        self._note_index = 0
        self._note_time = 0
        self.piezo.tone(MELODY[0].freq)

    def button_pressed(self, button: Button) -> None:
        if self.game_started():
            return
        if button is Button.ENTER and self.mute_enter:
            return
        if not self.sound():
            return
        self.piezo.tone(NOTE_MAP[button], CLICK_DURATION)

    def loop(self, micros: int) -> None:
        """Advance the melody by ``micros`` microseconds."""
        if not self.playing:
            return
        if not self.sound():
            self.piezo.no_tone()
            self.playing = False
            return

        self._note_time += micros
        if self._note_time < MELODY[self._note_index].duration:
            return

        self._note_index += 1
        self._note_time = 0
        if self._note_index >= len(MELODY):
            self.playing = False
            self.piezo.no_tone()
            return

        note = MELODY[self._note_index]
        if note.freq == 0:
            self.piezo.no_tone()
            return
        self.piezo.tone(note.freq)