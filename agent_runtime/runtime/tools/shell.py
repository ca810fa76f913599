from __future__ import annotations

import asyncio
import json
import os
from typing import Dict, Optional

from agent_runtime.errors import ToolExecutionError
from agent_runtime.runtime.tools.sandbox import ToolScope


async def execute_shell(
    scope: ToolScope,
    command: str,
    *,
    working_dir: Optional[str] = None,
    timeout_ms: Optional[int] = None,
    env: Optional[Dict[str, str]] = None,
) -> dict:
    """
    Run a shell command inside the sandbox root.

    A non-zero exit is reported as a tool error carrying the full output; the
    command's own timeout is capped by the scope's per-call timeout.
    """
    scope.check_shell()
    cwd = scope.resolve_path(working_dir or ".")
    if not cwd.is_dir():
        raise ToolExecutionError(f"Working directory not found: {working_dir}")

    timeout_s = scope.timeout_s
    if timeout_ms is not None:
        timeout_s = min(timeout_s, max(0.001, int(timeout_ms) / 1000.0))

    proc_env = dict(os.environ)
    proc_env.update({str(k): str(v) for k, v in (env or {}).items()})

    proc = await asyncio.create_subprocess_shell(
        command,
        cwd=str(cwd),
        env=proc_env,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise ToolExecutionError(f"Command timed out after {int(timeout_s * 1000)}ms")

    result = {
        "exit_code": proc.returncode,
        "stdout": scope.truncate((out or b"").decode("utf-8", errors="replace")),
        "stderr": scope.truncate((err or b"").decode("utf-8", errors="replace")),
        "success": proc.returncode == 0,
    }
    if proc.returncode != 0:
        raise ToolExecutionError(json.dumps(result, ensure_ascii=False))
    return result
