from __future__ import annotations

from collections import deque
from pathlib import Path


def tail_lines(path: Path, n: int) -> list[str]:
    """Read last N lines of a regular file; missing or unreadable gives []."""
    if n <= 0:
        return []
    try:
        if path.is_symlink() or not path.is_file():
            return []
        with path.open("r", encoding="utf-8", errors="replace") as f:
            return [line.rstrip("\n") for line in deque(f, maxlen=n)]
    except OSError:
        return []
