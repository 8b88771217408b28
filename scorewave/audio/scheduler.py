from __future__ import annotations

import logging

from scorewave.audio.context import AudioContext
from scorewave.instruments.patches import patch_for
from scorewave.instruments.voice import VoiceHandle, build_voice
from scorewave.model.types import Score
from scorewave.util.pitch import pitch_to_frequency

logger = logging.getLogger(__name__)

TAIL_SECONDS = 2.0  # envelope release + reverb tail appended to offline renders


class RenderSession:
    """A scheduling session bound to one context.

    Owns the stop handles of every voice it scheduled. ``start_time`` is the
    context clock when the session was opened: the device clock for live
    contexts, 0 for a fresh offline context.
    """

    def __init__(self, context: AudioContext) -> None:
        self.context = context
        self.start_time = context.current_time
        self._voices: list[VoiceHandle] = []

    @property
    def voice_count(self) -> int:
        return len(self._voices)

    @property
    def handles(self) -> tuple[VoiceHandle, ...]:
        return tuple(self._voices)

    def register(self, handle: VoiceHandle) -> None:
        self._voices.append(handle)

    def stop_all(self) -> int:
        """Stop every registered voice and release the handles.

        Voices that already stopped or finished are skipped; returns how many
        were actually cut short.
        """
        handles, self._voices = self._voices, []
        stopped = 0
        for h in handles:
            if h.stop():
                stopped += 1
        logger.debug("session stop: %d/%d voices cut", stopped, len(handles))
        return stopped


def schedule_score(session: RenderSession, score: Score) -> int:
    """Build one voice per note of ``score`` on the session's master bus.

    Returns the number of voices scheduled.
    """
    spb = score.seconds_per_beat
    t0 = session.start_time
    ctx = session.context
    count = 0
    for track in score.tracks:
        patch = patch_for(track.instrument)
        for note in track.notes:
            handle = build_voice(
                ctx,
                patch,
                pitch_to_frequency(note.pitch),
                t0 + note.start_time * spb,
                note.duration * spb,
                note.velocity,
                destination=ctx.master,
            )
            session.register(handle)
            count += 1
    logger.debug("scheduled %d voices at t0=%.3fs (%.1f bpm)", count, t0, score.bpm)
    return count


def offline_seconds(score: Score) -> float:
    return score.total_seconds + TAIL_SECONDS


def offline_frame_count(score: Score, sample_rate: int) -> int:
    return int(round(offline_seconds(score) * sample_rate))
