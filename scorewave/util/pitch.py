from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

SEMITONES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")

# Flat spellings resolve through one fixed table (no chained string rewrites).
ENHARMONIC_FLATS = {
    "Db": "C#",
    "Eb": "D#",
    "Gb": "F#",
    "Ab": "G#",
    "Bb": "A#",
}

FALLBACK_MIDI = 60
FALLBACK_HZ = 440.0

_PITCH_RE = re.compile(r"([A-G])([#b]?)(\d)")


def midi_to_hz(pitch: int) -> float:
    return 440.0 * (2.0 ** ((pitch - 69) / 12.0))


def parse_pitch(pitch: str) -> int | None:
    """Parse scientific pitch notation ("C4", "F#3", "Bb2") to a MIDI number.

    Returns None when no pitch can be found in the string.
    """
    m = _PITCH_RE.search(str(pitch))
    if not m:
        return None
    letter, accidental, octave_s = m.groups()
    octave = int(octave_s)
    name = letter + accidental
    if accidental == "b":
        if name in ENHARMONIC_FLATS:
            name = ENHARMONIC_FLATS[name]
        else:
            # Cb / Fb: one semitone below the natural, possibly in the octave below.
            return SEMITONES.index(letter) - 1 + (octave + 1) * 12
    if name not in SEMITONES:
        # E# / B#
        return SEMITONES.index(letter) + 1 + (octave + 1) * 12
    return SEMITONES.index(name) + (octave + 1) * 12


def pitch_to_midi(pitch: str) -> int:
    midi = parse_pitch(pitch)
    if midi is None:
        logger.warning("unparseable pitch %r, using MIDI %d", pitch, FALLBACK_MIDI)
        return FALLBACK_MIDI
    return midi


def pitch_to_frequency(pitch: str) -> float:
    midi = parse_pitch(pitch)
    if midi is None:
        logger.warning("unparseable pitch %r, using %.1f Hz", pitch, FALLBACK_HZ)
        return FALLBACK_HZ
    return midi_to_hz(midi)
