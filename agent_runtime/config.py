from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional


def config_path() -> str:
    return os.getenv("AGENT_RUNTIME_CONFIG", "agent_runtime.json")


@lru_cache(maxsize=1)
def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    return load_config_uncached(path)


def load_config_uncached(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Uncached config read. Use this when changes must take effect without restarting.
    """
    p = Path(path or config_path())
    if not p.exists():
        return {}
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def _get(cfg: Dict[str, Any], *path: str, default: Any = None) -> Any:
    cur: Any = cfg
    for k in path:
        if not isinstance(cur, dict) or k not in cur:
            return default
        cur = cur[k]
    return cur


def _int(*path: str, default: int) -> int:
    try:
        return int(_get(load_config(), *path, default=default))
    except (TypeError, ValueError):
        return default


def _float(*path: str, default: Optional[float]) -> Optional[float]:
    v = _get(load_config(), *path, default=default)
    if v is None:
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


def _str_list(*path: str) -> List[str]:
    v = _get(load_config(), *path, default=[])
    return [str(x) for x in v] if isinstance(v, list) else []


def _opt_str(*path: str) -> Optional[str]:
    v = _get(load_config(), *path, default=None)
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def llm_model_name() -> str:
    cfg = load_config()
    return str(_get(cfg, "llm", "model_name", default="gpt-4o-mini"))


def llm_temperature() -> float:
    return _float("llm", "temperature", default=0.7) or 0.0


def llm_max_tokens() -> Optional[int]:
    v = _get(load_config(), "llm", "max_tokens", default=None)
    try:
        return int(v) if v is not None else None
    except (TypeError, ValueError):
        return None


def llm_base_url() -> Optional[str]:
    return _opt_str("llm", "base_url")


def agent_name() -> str:
    return str(_get(load_config(), "agent", "name", default="assistant"))


def agent_system_prompt() -> str:
    return str(_get(load_config(), "agent", "system_prompt", default="") or "")


def agent_max_iterations() -> int:
    return max(1, _int("agent", "max_iterations", default=10))


def agent_max_duration_s() -> Optional[float]:
    return _float("agent", "max_duration_s", default=300.0)


def agent_max_context_messages() -> Optional[int]:
    v = _get(load_config(), "agent", "max_context_messages", default=None)
    try:
        return int(v) if v is not None else None
    except (TypeError, ValueError):
        return None


def agent_checkpoint_each_message() -> bool:
    return bool(_get(load_config(), "agent", "checkpoint_each_message", default=True))


def agent_max_parallel_tools() -> int:
    return max(1, _int("agent", "max_parallel_tools", default=4))


def agent_confirmation_blocks_batch() -> bool:
    return bool(_get(load_config(), "agent", "confirmation_blocks_batch", default=False))


def agent_tools_enabled() -> bool:
    return bool(_get(load_config(), "agent", "tools_enabled", default=True))


def tool_timeout_s() -> float:
    return _float("tools", "timeout_s", default=60.0) or 60.0


def confirmation_timeout_s() -> Optional[float]:
    return _float("tools", "confirmation_timeout_s", default=None)


def sandbox_root() -> str:
    return _opt_str("sandbox", "root") or os.getcwd()


def sandbox_denied_paths() -> List[str]:
    return _str_list("sandbox", "denied_paths")


def sandbox_allow_network() -> bool:
    return bool(_get(load_config(), "sandbox", "allow_network", default=True))


def sandbox_allowed_hosts() -> List[str]:
    return _str_list("sandbox", "allowed_hosts")


def sandbox_denied_hosts() -> List[str]:
    return _str_list("sandbox", "denied_hosts")


def sandbox_allow_shell() -> bool:
    return bool(_get(load_config(), "sandbox", "allow_shell", default=True))


def sandbox_max_file_size() -> int:
    return _int("sandbox", "max_file_size", default=10 * 1024 * 1024)


def sandbox_max_output_size() -> int:
    return _int("sandbox", "max_output_size", default=1024 * 1024)


def data_dir() -> str:
    return os.getenv("DATA_DIR") or str(_get(load_config(), "data", "dir", default="./data"))


def gateway_host() -> str:
    return str(_get(load_config(), "gateway", "host", default="127.0.0.1"))


def gateway_port() -> int:
    return _int("gateway", "port", default=3336)


def log_level() -> str:
    return str(_get(load_config(), "logging", "level", default="INFO")).upper()
