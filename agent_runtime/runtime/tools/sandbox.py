from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from agent_runtime import config
from agent_runtime.errors import SandboxViolation


def _within_root(p: Path, root: Path) -> bool:
    try:
        p.relative_to(root)
        return True
    except ValueError:
        return False


@dataclass
class SandboxConfig:
    root: str = field(default_factory=os.getcwd)
    denied_paths: List[str] = field(default_factory=list)
    allow_network: bool = True
    allowed_hosts: List[str] = field(default_factory=list)
    denied_hosts: List[str] = field(default_factory=list)
    allow_shell: bool = True
    max_file_size: int = 10 * 1024 * 1024
    max_output_size: int = 1024 * 1024

    @classmethod
    def from_config(cls) -> "SandboxConfig":
        return cls(
            root=config.sandbox_root(),
            denied_paths=config.sandbox_denied_paths(),
            allow_network=config.sandbox_allow_network(),
            allowed_hosts=config.sandbox_allowed_hosts(),
            denied_hosts=config.sandbox_denied_hosts(),
            allow_shell=config.sandbox_allow_shell(),
            max_file_size=config.sandbox_max_file_size(),
            max_output_size=config.sandbox_max_output_size(),
        )

    def scope_for(self, *, dangerous: bool, network: bool, timeout_s: float) -> "ToolScope":
        """
        Build the capability object handed to one invocation. Dangerous tools only
        get network access when they declare it.
        """
        allow_network = self.allow_network and (network or not dangerous)
        return ToolScope(
            root=Path(self.root).resolve(),
            denied_paths=[Path(d) if Path(d).is_absolute() else Path(self.root) / d for d in self.denied_paths],
            allow_network=allow_network,
            allowed_hosts=list(self.allowed_hosts),
            denied_hosts=list(self.denied_hosts),
            allow_shell=self.allow_shell,
            max_file_size=self.max_file_size,
            max_output_size=self.max_output_size,
            timeout_s=timeout_s,
        )


@dataclass
class ToolScope:
    """
    Confinement for a single tool call. Tools resolve every path and URL through
    it; a breach raises SandboxViolation.
    """

    root: Path
    denied_paths: List[Path] = field(default_factory=list)
    allow_network: bool = False
    allowed_hosts: List[str] = field(default_factory=list)
    denied_hosts: List[str] = field(default_factory=list)
    allow_shell: bool = False
    max_file_size: int = 10 * 1024 * 1024
    max_output_size: int = 1024 * 1024
    timeout_s: float = 60.0

    def resolve_path(self, path: Optional[str]) -> Path:
        p = Path(path) if path else self.root
        if not p.is_absolute():
            p = self.root / p
        p = p.resolve()
        if not _within_root(p, self.root):
            raise SandboxViolation(f"Access denied (outside sandbox root {self.root}): {p}")
        for denied in self.denied_paths:
            if _within_root(p, denied.resolve()):
                raise SandboxViolation(f"Access denied (path is blocked): {p}")
        return p

    def check_url(self, url: str) -> str:
        parsed = urlparse(str(url or "").strip())
        if parsed.scheme not in ("http", "https"):
            raise SandboxViolation("URL must start with http:// or https://")
        host = (parsed.hostname or "").lower()
        if not self.allow_network:
            raise SandboxViolation(f"Network access is not allowed for this tool: {host}")
        if host in {h.lower() for h in self.denied_hosts}:
            raise SandboxViolation(f"Host is blocked: {host}")
        if self.allowed_hosts and host not in {h.lower() for h in self.allowed_hosts}:
            raise SandboxViolation(f"Host is not in the allow list: {host}")
        return parsed.geturl()

    def check_shell(self) -> None:
        if not self.allow_shell:
            raise SandboxViolation("Shell execution is not allowed in this sandbox")

    def truncate(self, text: str) -> str:
        if len(text) <= self.max_output_size:
            return text
        return text[: self.max_output_size] + f"\n[truncated {len(text) - self.max_output_size} chars]"
