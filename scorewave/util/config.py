from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any


def default_config_dir() -> Path:
    return Path.home() / ".config" / "scorewave"


def default_config_path() -> Path:
    return default_config_dir() / "config.json"


@dataclass
class AppConfig:
    sample_rate: int = 44100
    channels: int = 2
    block_size: int = 512  # live output stream frames per callback
    output_device: str | None = None  # sounddevice name or index; None = system default
    reverb_seed: int | None = None  # fixed seed for reproducible reverb tails
    output_dir: str = "."
    log_level: str = "INFO"

    def to_dict(self) -> dict[str, Any]:
        return {
            "sample_rate": self.sample_rate,
            "channels": self.channels,
            "block_size": self.block_size,
            "output_device": self.output_device,
            "reverb_seed": self.reverb_seed,
            "output_dir": self.output_dir,
            "log_level": self.log_level,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "AppConfig":
        seed = d.get("reverb_seed", None)
        return AppConfig(
            sample_rate=int(d.get("sample_rate", 44100) or 44100),
            channels=int(d.get("channels", 2) or 2),
            block_size=int(d.get("block_size", 512) or 512),
            output_device=(str(d.get("output_device")) if d.get("output_device") else None),
            reverb_seed=(int(seed) if seed is not None else None),
            output_dir=str(d.get("output_dir", ".") or "."),
            log_level=str(d.get("log_level", "INFO") or "INFO").upper(),
        )


def load_config(path: Path | None = None) -> AppConfig:
    p = path or default_config_path()
    if not p.exists():
        return AppConfig()
    data = json.loads(p.read_text(encoding="utf-8"))
    return AppConfig.from_dict(data)


def save_config(cfg: AppConfig, path: Path | None = None) -> Path:
    p = path or default_config_path()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(cfg.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return p
