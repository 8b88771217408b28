from __future__ import annotations

"""Standard MIDI File (format 1) export.

Events are built as ``mido`` messages; chunks are assembled here so every
channel event carries its own status byte (no running status) and the byte
layout is fixed:

    MThd | tempo MTrk | one MTrk per score track
"""

import logging
import math
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import mido

from scorewave.model.types import Score, Track
from scorewave.util.fileio import atomic_write_bytes
from scorewave.util.limits import MAX_VLQ
from scorewave.util.pitch import pitch_to_midi

logger = logging.getLogger(__name__)

TICKS_PER_BEAT = 480
MAX_TEMPO = 0xFFFFFF  # set_tempo carries 3 bytes


class MidiEncodeError(ValueError):
    pass


@dataclass
class MidiExportResult:
    path: str
    ticks_per_beat: int
    tracks: int
    size: int


def encode_vlq(value: int) -> bytes:
    """Variable-length quantity: 7 bits per byte, MSB set on all but the last."""
    value = int(value)
    if value < 0 or value > MAX_VLQ:
        raise MidiEncodeError(f"VLQ value out of range: {value}")
    out = [value & 0x7F]
    value >>= 7
    while value:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    return bytes(reversed(out))


def decode_vlq(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode one VLQ at ``offset``. Returns ``(value, next_offset)``."""
    value = 0
    for i in range(4):
        try:
            b = data[offset + i]
        except IndexError:
            raise MidiEncodeError("truncated VLQ") from None
        value = (value << 7) | (b & 0x7F)
        if not b & 0x80:
            return value, offset + i + 1
    raise MidiEncodeError("VLQ longer than 4 bytes")


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def tempo_for_bpm(bpm: float) -> int:
    tempo = _round_half_up(60_000_000 / float(bpm))
    if not (0 < tempo <= MAX_TEMPO):
        raise MidiEncodeError(f"bpm {bpm} gives tempo {tempo}us, outside the 24-bit range")
    return tempo


def note_velocity(velocity: float) -> int:
    return max(0, min(127, _round_half_up(velocity * 127)))


def _chunk(tag: bytes, body: bytes) -> bytes:
    return tag + struct.pack(">I", len(body)) + body


def _track_body(events: Iterable[tuple[int, mido.Message | mido.MetaMessage]]) -> bytes:
    body = bytearray()
    last = 0
    for tick, msg in events:
        body += encode_vlq(tick - last)
        body += bytes(msg.bytes())
        last = tick
    body += encode_vlq(0) + bytes(mido.MetaMessage("end_of_track").bytes())
    return bytes(body)


def track_events(track: Track, track_index: int) -> list[tuple[int, mido.Message | mido.MetaMessage]]:
    """Absolute-tick events for one score track, stably sorted by tick."""
    channel = track_index % 16
    events: list[tuple[int, mido.Message | mido.MetaMessage]] = []
    for n in track.notes:
        note = max(0, min(127, pitch_to_midi(n.pitch)))
        start = _round_half_up(n.start_time * TICKS_PER_BEAT)
        end = _round_half_up((n.start_time + n.duration) * TICKS_PER_BEAT)
        events.append((start, mido.Message("note_on", note=note, velocity=note_velocity(n.velocity), channel=channel)))
        events.append((end, mido.Message("note_off", note=note, velocity=0, channel=channel)))
    events.sort(key=lambda e: e[0])
    return events


def encode_midi(score: Score) -> bytes:
    header = _chunk(b"MThd", struct.pack(">HHH", 1, len(score.tracks) + 1, TICKS_PER_BEAT))

    tempo = mido.MetaMessage("set_tempo", tempo=tempo_for_bpm(score.bpm))
    chunks = [header, _chunk(b"MTrk", _track_body([(0, tempo)]))]

    for idx, track in enumerate(score.tracks):
        name = mido.MetaMessage("track_name", name=track.instrument.value)
        events = [(0, name)] + track_events(track, idx)
        chunks.append(_chunk(b"MTrk", _track_body(events)))

    return b"".join(chunks)


def export_midi(score: Score, path: str | Path) -> MidiExportResult:
    data = encode_midi(score)
    out = atomic_write_bytes(path, data)
    logger.info("wrote MIDI %s (%d tracks, %d bytes)", out, len(score.tracks) + 1, len(data))
    return MidiExportResult(path=str(out), ticks_per_beat=TICKS_PER_BEAT, tracks=len(score.tracks) + 1, size=len(data))
