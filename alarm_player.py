"""Plays the connectivity-lost alarm through the pygame mixer."""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")

import pygame  # noqa: E402

DEFAULT_ALARM_PATH = Path("./alarm.wav")


class AlarmError(Exception):
    """The alarm could not be loaded or played."""


@dataclass
class Alarm:
    path: Path
    sound: Any
    duration: float


class AlarmPlayer:
    """Loads ``alarm.wav`` on demand and plays it once per call.

    The file is re-read every time the alarm is needed, so replacing it while
    the program runs takes effect at the next outage.
    """

    def __init__(self, path: Union[str, Path] = DEFAULT_ALARM_PATH, mixer: Any = None) -> None:
        self.path = Path(path)
        self.mixer = mixer if mixer is not None else pygame.mixer
        self._current: Optional[Alarm] = None
        self._opened = False

    def open(self) -> None:
        if self._opened:
            return
        try:
            self.mixer.init()
        except pygame.error as exc:
            raise AlarmError(f"could not open audio output: {exc}") from exc
        self._opened = True

    def close(self) -> None:
        if not self._opened:
            return
        if self._current is not None:
            self._current.sound.stop()
            self._current = None
        self.mixer.quit()
        self._opened = False

    def load(self) -> Alarm:
        if not self.path.is_file():
            raise AlarmError(f"alarm file not found: {self.path.resolve()}")
        try:
            sound = self.mixer.Sound(str(self.path))
        except pygame.error as exc:
            raise AlarmError(f"could not decode {self.path}: {exc}") from exc
        duration = sound.get_length()
        if not duration or duration <= 0:
            raise AlarmError(f"could not get duration of {self.path}")
        return Alarm(path=self.path, sound=sound, duration=duration)

    def play(self) -> float:
        """Start the alarm and return how long it plays, in seconds."""
        self.open()
        alarm = self.load()
        alarm.sound.play()
        self._current = alarm
        return alarm.duration

    def __enter__(self) -> "AlarmPlayer":
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
