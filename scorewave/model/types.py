from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from scorewave.util.limits import MAX_NOTES_PER_TRACK, MAX_TRACKS

logger = logging.getLogger(__name__)


class ScoreValidationError(ValueError):
    """A structurally invalid score. ``field`` names the offending path."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field


class Instrument(str, Enum):
    PIANO = "piano"
    SYNTH = "synth"
    BASS = "bass"
    PAD = "pad"
    BELLS = "bells"
    GUITAR = "guitar"
    DRUMS = "drums"

    @staticmethod
    def parse(value: Any, *, field: str = "instrument") -> "Instrument":
        try:
            return Instrument(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(i.value for i in Instrument)
            raise ScoreValidationError(field, f"unknown instrument {value!r} (expected one of: {allowed})") from None


def _number(d: dict[str, Any], key: str, path: str) -> float:
    if key not in d:
        raise ScoreValidationError(f"{path}{key}", "missing required field")
    raw = d[key]
    if isinstance(raw, bool):
        raise ScoreValidationError(f"{path}{key}", f"expected a number, got {raw!r}")
    try:
        v = float(raw)
    except (TypeError, ValueError):
        raise ScoreValidationError(f"{path}{key}", f"expected a number, got {raw!r}") from None
    if not math.isfinite(v):
        raise ScoreValidationError(f"{path}{key}", f"expected a finite number, got {raw!r}")
    return v


def _required(d: dict[str, Any], key: str, path: str) -> Any:
    if key not in d or d[key] is None:
        raise ScoreValidationError(f"{path}{key}", "missing required field")
    return d[key]


@dataclass(frozen=True)
class Note:
    """A single note. Times are in beats, relative to the start of the score."""

    pitch: str
    start_time: float
    duration: float
    velocity: float = 0.8

    def __post_init__(self) -> None:
        for value, key in ((self.start_time, "startTime"), (self.duration, "duration"), (self.velocity, "velocity")):
            if not math.isfinite(value):
                raise ScoreValidationError(key, f"must be finite, got {value}")
        if self.start_time < 0:
            raise ScoreValidationError("startTime", f"must be >= 0, got {self.start_time}")
        if self.duration <= 0:
            raise ScoreValidationError("duration", f"must be > 0, got {self.duration}")
        if not (0.0 <= self.velocity <= 1.0):
            raise ScoreValidationError("velocity", f"must be within [0, 1], got {self.velocity}")

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def to_dict(self) -> dict[str, Any]:
        return {
            "pitch": self.pitch,
            "startTime": self.start_time,
            "duration": self.duration,
            "velocity": self.velocity,
        }

    @staticmethod
    def from_dict(d: dict[str, Any], *, path: str = "") -> "Note":
        if not isinstance(d, dict):
            raise ScoreValidationError(path.rstrip(".") or "note", "expected an object")
        pitch = str(_required(d, "pitch", path))
        start = _number(d, "startTime", path)
        duration = _number(d, "duration", path)
        velocity = _number(d, "velocity", path)
        try:
            return Note(pitch=pitch, start_time=start, duration=duration, velocity=velocity)
        except ScoreValidationError as e:
            raise ScoreValidationError(f"{path}{e.field}", str(e).split(": ", 1)[1]) from None


@dataclass(frozen=True)
class Track:
    id: str
    instrument: Instrument
    notes: tuple[Note, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not isinstance(self.instrument, Instrument):
            object.__setattr__(self, "instrument", Instrument.parse(self.instrument))
        object.__setattr__(self, "notes", tuple(self.notes))
        if len(self.notes) > MAX_NOTES_PER_TRACK:
            raise ScoreValidationError("notes", f"too many notes ({len(self.notes)} > {MAX_NOTES_PER_TRACK})")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "instrument": self.instrument.value,
            "notes": [n.to_dict() for n in self.notes],
        }

    @staticmethod
    def from_dict(d: dict[str, Any], *, path: str = "") -> "Track":
        if not isinstance(d, dict):
            raise ScoreValidationError(path.rstrip(".") or "track", "expected an object")
        track_id = str(_required(d, "id", path))
        instrument = Instrument.parse(_required(d, "instrument", path), field=f"{path}instrument")
        raw_notes = _required(d, "notes", path)
        if not isinstance(raw_notes, list):
            raise ScoreValidationError(f"{path}notes", "expected a list")
        if len(raw_notes) > MAX_NOTES_PER_TRACK:
            raise ScoreValidationError(f"{path}notes", f"too many notes ({len(raw_notes)} > {MAX_NOTES_PER_TRACK})")
        notes = tuple(Note.from_dict(x, path=f"{path}notes[{i}].") for i, x in enumerate(raw_notes))
        return Track(id=track_id, instrument=instrument, notes=notes)


@dataclass(frozen=True)
class Score:
    """The complete declarative musical input. Never mutated once built."""

    bpm: float
    mood: str
    key: str
    tracks: tuple[Track, ...]
    total_duration_beats: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "tracks", tuple(self.tracks))
        if not (math.isfinite(self.bpm) and self.bpm > 0):
            raise ScoreValidationError("bpm", f"must be > 0, got {self.bpm}")
        if not (math.isfinite(self.total_duration_beats) and self.total_duration_beats > 0):
            raise ScoreValidationError("totalDurationBeats", f"must be > 0, got {self.total_duration_beats}")
        if len(self.tracks) > MAX_TRACKS:
            raise ScoreValidationError("tracks", f"too many tracks ({len(self.tracks)} > {MAX_TRACKS})")
        last = self.last_note_end()
        if last > self.total_duration_beats:
            # The producer owns musical content; keep going but make it visible.
            logger.warning(
                "score notes run to beat %.3f, past totalDurationBeats=%.3f",
                last,
                self.total_duration_beats,
            )

    @property
    def seconds_per_beat(self) -> float:
        return 60.0 / float(self.bpm)

    @property
    def total_seconds(self) -> float:
        return self.total_duration_beats * self.seconds_per_beat

    def last_note_end(self) -> float:
        return max([0.0] + [n.end_time for t in self.tracks for n in t.notes])

    def note_count(self) -> int:
        return sum(len(t.notes) for t in self.tracks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "bpm": self.bpm,
            "mood": self.mood,
            "key": self.key,
            "tracks": [t.to_dict() for t in self.tracks],
            "totalDurationBeats": self.total_duration_beats,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "Score":
        if not isinstance(d, dict):
            raise ScoreValidationError("score", "expected an object")
        bpm = _number(d, "bpm", "")
        if bpm <= 0:
            raise ScoreValidationError("bpm", f"must be > 0, got {d['bpm']!r}")
        total = _number(d, "totalDurationBeats", "")
        if total <= 0:
            raise ScoreValidationError("totalDurationBeats", f"must be > 0, got {d['totalDurationBeats']!r}")
        mood = str(_required(d, "mood", ""))
        key = str(_required(d, "key", ""))
        raw_tracks = _required(d, "tracks", "")
        if not isinstance(raw_tracks, list):
            raise ScoreValidationError("tracks", "expected a list")
        if len(raw_tracks) > MAX_TRACKS:
            raise ScoreValidationError("tracks", f"too many tracks ({len(raw_tracks)} > {MAX_TRACKS})")
        tracks = tuple(Track.from_dict(x, path=f"tracks[{i}].") for i, x in enumerate(raw_tracks))
        return Score(bpm=bpm, mood=mood, key=key, tracks=tracks, total_duration_beats=total)
