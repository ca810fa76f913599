from __future__ import annotations

from pathlib import Path
from typing import Optional

from agent_runtime import config


def data_dir() -> Path:
    p = Path(config.data_dir())
    p.mkdir(parents=True, exist_ok=True)
    return p


def sessions_dir(base: Optional[str] = None) -> Path:
    p = Path(base) if base else data_dir() / "sessions"
    p.mkdir(parents=True, exist_ok=True)
    return p
