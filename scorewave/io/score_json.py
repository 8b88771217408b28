from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from scorewave.model.types import Score, ScoreValidationError

_YAML_SUFFIXES = {".yaml", ".yml"}


def parse_score_text(text: str, *, fmt: str = "json") -> Score:
    """Parse a score document (the generator's JSON contract, or YAML)."""
    try:
        if fmt == "yaml":
            data: Any = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ScoreValidationError("score", f"not valid {fmt}: {e}") from e
    return Score.from_dict(data)


def load_score(path: str | Path) -> Score:
    p = Path(path).expanduser()
    fmt = "yaml" if p.suffix.lower() in _YAML_SUFFIXES else "json"
    return parse_score_text(p.read_text(encoding="utf-8"), fmt=fmt)


def save_score(score: Score, path: str | Path) -> str:
    out_path = Path(path).expanduser()
    out_path.parent.mkdir(parents=True, exist_ok=True)
    payload = score.to_dict()
    if out_path.suffix.lower() in _YAML_SUFFIXES:
        out_path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    else:
        out_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    return str(out_path)
