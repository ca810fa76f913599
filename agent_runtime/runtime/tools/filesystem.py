from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from agent_runtime.errors import ToolExecutionError
from agent_runtime.runtime.tools.sandbox import ToolScope


def _entry(p: Path) -> Dict[str, Any]:
    is_dir = p.is_dir()
    return {
        "name": p.name,
        "path": str(p),
        "is_dir": is_dir,
        "size": None if is_dir else p.stat().st_size,
    }


async def read_file(scope: ToolScope, path: str, *, encoding: str = "utf-8") -> str:
    p = scope.resolve_path(path)
    if not p.exists():
        raise ToolExecutionError(f"File not found: {path}")
    if not p.is_file():
        raise ToolExecutionError(f"Not a file: {path}")
    size = p.stat().st_size
    if size > scope.max_file_size:
        raise ToolExecutionError(f"File too large: {size} bytes (limit {scope.max_file_size})")
    try:
        return p.read_text(encoding=encoding or "utf-8")
    except (OSError, UnicodeDecodeError, LookupError) as e:
        raise ToolExecutionError(f"Failed to read file: {e}") from e


async def write_file(scope: ToolScope, path: str, content: str, *, append: bool = False) -> Dict[str, Any]:
    p = scope.resolve_path(path)
    data = str(content)
    if len(data.encode("utf-8")) > scope.max_file_size:
        raise ToolExecutionError(f"Content too large (limit {scope.max_file_size} bytes)")
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        if append:
            with p.open("a", encoding="utf-8") as f:
                f.write(data)
        else:
            p.write_text(data, encoding="utf-8")
    except OSError as e:
        raise ToolExecutionError(f"Failed to write file: {e}") from e
    return {"path": str(p), "bytes_written": len(data.encode("utf-8")), "append": bool(append)}


async def list_directory(scope: ToolScope, path: str, *, recursive: bool = False) -> List[Dict[str, Any]]:
    p = scope.resolve_path(path)
    if not p.exists():
        raise ToolExecutionError(f"Directory not found: {path}")
    if not p.is_dir():
        raise ToolExecutionError(f"Not a directory: {path}")
    try:
        if recursive:
            entries = []
            for dirpath, dirnames, filenames in os.walk(p):
                for name in dirnames + filenames:
                    entries.append(_entry(Path(dirpath) / name))
        else:
            entries = [_entry(c) for c in p.iterdir()]
    except OSError as e:
        raise ToolExecutionError(f"Failed to list directory: {e}") from e
    entries.sort(key=lambda e: (e["name"], e["path"]))
    return entries


async def search_files(scope: ToolScope, pattern: str, *, path: Optional[str] = ".", limit: int = 1000) -> List[str]:
    """
    Glob under a base directory (``**`` recurses). Matches that resolve outside
    the sandbox are dropped.
    """
    pat = str(pattern or "").strip()
    if not pat:
        raise ToolExecutionError("pattern is required")
    if Path(pat).is_absolute():
        raise ToolExecutionError("pattern must be relative to path")
    base = scope.resolve_path(path or ".")
    if not base.is_dir():
        raise ToolExecutionError(f"Directory not found: {path}")

    matches: List[str] = []
    try:
        for m in base.glob(pat):
            resolved = m.resolve()
            try:
                scope.resolve_path(str(resolved))
            except ToolExecutionError:
                continue
            matches.append(str(m))
    except (OSError, ValueError) as e:
        raise ToolExecutionError(f"Invalid pattern: {e}") from e
    matches.sort()
    return matches[: max(1, int(limit))]
