from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path


def atomic_write_bytes(path: str | Path, data: bytes) -> Path:
    """Write ``data`` to ``path`` via a temp file in the same directory.

    The target only appears once the whole payload is on disk; the temp file is
    removed if anything fails.
    """
    out = Path(path).expanduser()
    out.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{out.name}.", suffix=".part", dir=str(out.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, out)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise
    return out


def export_basename(mood: str) -> str:
    """File stem for exports: the mood with whitespace runs replaced by ``_``."""
    return re.sub(r"\s+", "_", str(mood))
