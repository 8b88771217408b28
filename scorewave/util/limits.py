from __future__ import annotations

"""Hard limits to keep scores and renders within sane bounds.

They are enforced when a score is validated and before an offline buffer is
allocated.
"""

# SMF header stores the track count in 16 bits (one slot is the tempo track).
MAX_TRACKS = 0xFFFF - 1
MAX_NOTES_PER_TRACK = 50000

# Offline buffers are allocated up front; cap them (~2.5 GB of float64 stereo at 44.1k).
MAX_RENDER_SECONDS = 60 * 60

# SMF delta times are at most four VLQ bytes.
MAX_VLQ = 0x0FFFFFFF
