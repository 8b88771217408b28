"""Audio rendering.

Everything is synthesized in-process on a small signal graph rendered in
128-frame quanta:
- ``context``: offline (virtual clock) and live (sounddevice output) contexts
- ``scheduler``: score -> voices, shared by both contexts
- ``playback`` / ``render``: the real-time controller and the offline renderer
- ``wav``: 16-bit PCM encoding
"""
