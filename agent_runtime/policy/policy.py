from __future__ import annotations

import fnmatch
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from agent_runtime import config


class Decision:
    AUTO_APPROVE = "allow"
    REQUIRE_CONFIRMATION = "ask"
    AUTO_DENY = "deny"

    ALL = (AUTO_APPROVE, REQUIRE_CONFIRMATION, AUTO_DENY)


@dataclass(frozen=True)
class PolicyDecision:
    decision: str  # "allow" | "ask" | "deny"
    matched: Optional[str] = None


@dataclass
class Policy:
    """
    Safety policy for dangerous tools, keyed by tool name patterns (fnmatch).

    Precedence is always deny > ask > allow; a dangerous tool no pattern matches
    requires confirmation.
    """

    allow: List[str] = field(default_factory=list)
    ask: List[str] = field(default_factory=list)
    deny: List[str] = field(default_factory=list)

    @staticmethod
    def load(path: Optional[str] = None) -> "Policy":
        data = config.load_config_uncached(path)
        perm = data.get("permissions")
        if not isinstance(perm, dict):
            # sensible defaults
            return Policy(ask=["write_file", "execute_shell"])
        return Policy(
            allow=list(perm.get("allow") or []),
            ask=list(perm.get("ask") or []),
            deny=list(perm.get("deny") or []),
        )

    @classmethod
    def auto_approve(cls) -> "Policy":
        return cls(allow=["*"])

    @classmethod
    def auto_deny(cls) -> "Policy":
        return cls(deny=["*"])

    @classmethod
    def require_confirmation(cls) -> "Policy":
        return cls(ask=["*"])

    @staticmethod
    def persist_decision(*, tool_name: str, decision: str, path: Optional[str] = None) -> None:
        """
        Persist a decision for one tool into the config file.

        We store exact tool names (no pattern synthesis).
        """
        name = str(tool_name or "").strip()
        dec = str(decision or "").strip().lower()
        if not name or dec not in Decision.ALL:
            return

        p = Path(path or config.config_path())
        data = config.load_config_uncached(str(p))

        perm = data.get("permissions")
        if not isinstance(perm, dict):
            perm = {}
            data["permissions"] = perm

        for key in Decision.ALL:
            perm[key] = [x for x in (perm.get(key) or []) if x != name]
        perm[dec].append(name)

        p.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        config.load_config.cache_clear()

    def check(self, tool_name: str) -> PolicyDecision:
        # deny > ask > allow
        for pat in self.deny:
            if fnmatch.fnmatch(tool_name, pat):
                return PolicyDecision(Decision.AUTO_DENY, pat)
        for pat in self.ask:
            if fnmatch.fnmatch(tool_name, pat):
                return PolicyDecision(Decision.REQUIRE_CONFIRMATION, pat)
        for pat in self.allow:
            if fnmatch.fnmatch(tool_name, pat):
                return PolicyDecision(Decision.AUTO_APPROVE, pat)
        return PolicyDecision(Decision.REQUIRE_CONFIRMATION, None)
