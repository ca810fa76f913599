from __future__ import annotations

import os
import platform
import sys

from agent_runtime.runtime.tools.sandbox import ToolScope


async def get_system_info(scope: ToolScope) -> dict:
    return {
        "os": {
            "name": sys.platform,
            "arch": platform.machine(),
            "family": os.name,
            "release": platform.release(),
        },
        "process": {
            "current_dir": str(scope.root),
            "exe_path": sys.executable,
            "pid": os.getpid(),
            "python": platform.python_version(),
        },
        "env": {
            "home": os.getenv("HOME") or os.getenv("USERPROFILE"),
            "user": os.getenv("USER") or os.getenv("USERNAME"),
            "path": os.getenv("PATH"),
        },
    }
