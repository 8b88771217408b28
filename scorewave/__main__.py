from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from scorewave.model.types import Score, ScoreValidationError
from scorewave.util.config import AppConfig, load_config
from scorewave.util.fileio import export_basename
from scorewave.util.logging_utils import setup_logging

logger = logging.getLogger("scorewave.cli")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="scorewave",
        add_help=True,
        formatter_class=argparse.RawTextHelpFormatter,
        description=(
            "scorewave: synthesize declarative scores to live audio, WAV and MIDI\n\n"
            "A score is the JSON (or YAML) document {bpm, mood, key, tracks, totalDurationBeats}.\n"
        ),
    )

    p.add_argument("--version", action="store_true", help="Print version and exit.")
    p.add_argument("--config", default=None, help="Path to config JSON (default: ~/.config/scorewave/config.json)")
    p.add_argument("--log-level", default=None, dest="log_level", help="DEBUG|INFO|WARNING|ERROR (overrides config)")

    sub = p.add_subparsers(dest="cmd")

    info = sub.add_parser("info", help="Validate a score and print a summary.")
    info.add_argument("input", help="Path to a score (.json/.yaml)")

    midi = sub.add_parser("midi", help="Export a score as a format-1 MIDI file.")
    midi.add_argument("input", help="Path to a score (.json/.yaml)")
    midi.add_argument("--out", default=None, help="Output .mid (default: <mood>_score.mid in output_dir)")

    render = sub.add_parser("render", help="Render a score offline to a 16-bit PCM WAV.")
    render.add_argument("input", help="Path to a score (.json/.yaml)")
    render.add_argument("--out", default=None, help="Output .wav (default: <mood>_audio.wav in output_dir)")
    render.add_argument("--seed", type=int, default=None, help="Reverb seed for reproducible renders")
    render.add_argument("--sample-rate", type=int, default=None, dest="sample_rate", help="Sample rate in Hz")

    play = sub.add_parser("play", help="Play a score on the default audio output (real-time).")
    play.add_argument("input", help="Path to a score (.json/.yaml)")

    sub.add_parser("devices", help="List audio output devices.")

    return p


def _load(path: str) -> Score:
    from scorewave.io.score_json import load_score

    try:
        return load_score(path)
    except FileNotFoundError:
        raise SystemExit(f"ERROR: score not found: {path}")
    except ScoreValidationError as e:
        raise SystemExit(f"ERROR: invalid score ({e})")


def _default_out(cfg: AppConfig, score: Score, suffix: str) -> Path:
    return Path(cfg.output_dir).expanduser() / f"{export_basename(score.mood)}{suffix}"


def main(argv: list[str] | None = None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)

    parser = build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "version", False):
        try:
            from importlib.metadata import version

            v = version("scorewave")
        except Exception:
            v = "0.0.0"
        print(f"scorewave {v}")
        return

    cfg = load_config(Path(args.config).expanduser() if args.config else None)
    setup_logging(args.log_level or cfg.log_level)

    if args.cmd == "info":
        score = _load(args.input)
        print(f"mood: {score.mood}")
        print(f"key: {score.key}")
        print(f"bpm: {score.bpm:g}")
        print(f"length: {score.total_duration_beats:g} beats ({score.total_seconds:.1f}s)")
        for i, t in enumerate(score.tracks):
            print(f"- [{i}] {t.id}: {t.instrument.value}, {len(t.notes)} notes")
        return

    if args.cmd == "midi":
        from scorewave.io.midi import MidiEncodeError, export_midi

        score = _load(args.input)
        out = Path(args.out) if args.out else _default_out(cfg, score, "_score.mid")
        try:
            res = export_midi(score, out)
        except MidiEncodeError as e:
            raise SystemExit(f"ERROR: MIDI export failed ({e})")
        print(res.path)
        return

    if args.cmd == "render":
        from scorewave.audio.render import RenderError, render_score_wav

        score = _load(args.input)
        out = Path(args.out) if args.out else _default_out(cfg, score, "_audio.wav")
        seed = args.seed if args.seed is not None else cfg.reverb_seed
        try:
            path = render_score_wav(score, out, sample_rate=args.sample_rate or cfg.sample_rate, seed=seed)
        except RenderError as e:
            raise SystemExit(f"ERROR: rendering failed ({e})")
        print(path)
        return

    if args.cmd == "play":
        from scorewave.audio.playback import PlaybackController, live_context_factory

        score = _load(args.input)
        ctl = PlaybackController(score, context_factory=live_context_factory(cfg))
        print(f"playing: {score.mood} ({score.total_seconds:.1f}s), Ctrl-C to stop")
        try:
            ctl.play()
            ctl.wait()
        except KeyboardInterrupt:
            pass
        finally:
            ctl.stop()
        return

    if args.cmd == "devices":
        try:
            import sounddevice as sd

            devices = sd.query_devices()
        except Exception as e:
            raise SystemExit(f"ERROR: Could not list audio devices ({e}). Is PortAudio installed?")

        outs = [(i, d) for i, d in enumerate(devices) if int(d.get("max_output_channels", 0)) > 0]
        if not outs:
            print("(no audio output devices found)")
        else:
            for i, d in outs:
                print(f"{i}: {d['name']}")
        return

    parser.print_help()


if __name__ == "__main__":
    main()
