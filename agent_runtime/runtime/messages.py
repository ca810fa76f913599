from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, Optional, Sequence, Tuple, Union
from uuid import uuid4


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Role:
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"

    ALL = (USER, ASSISTANT, TOOL, SYSTEM)


@dataclass(frozen=True)
class TextPart:
    type: ClassVar[str] = "text"
    text: str


@dataclass(frozen=True)
class ImagePart:
    type: ClassVar[str] = "image"
    ref: str
    media_type: str = "image/png"
    alt: Optional[str] = None


@dataclass(frozen=True)
class AudioPart:
    type: ClassVar[str] = "audio"
    ref: str
    media_type: str = "audio/wav"
    duration_ms: Optional[int] = None
    transcript: Optional[str] = None


@dataclass(frozen=True)
class VideoPart:
    type: ClassVar[str] = "video"
    ref: str
    media_type: str = "video/mp4"
    duration_ms: Optional[int] = None


@dataclass(frozen=True)
class FilePart:
    type: ClassVar[str] = "file"
    ref: str
    media_type: str = "application/octet-stream"
    filename: Optional[str] = None
    size: Optional[int] = None


ContentPart = Union[TextPart, ImagePart, AudioPart, VideoPart, FilePart]

_PART_TYPES = {cls.type: cls for cls in (TextPart, ImagePart, AudioPart, VideoPart, FilePart)}


def part_to_dict(part: ContentPart) -> Dict[str, Any]:
    out: Dict[str, Any] = {"type": part.type}
    for k, v in part.__dict__.items():
        if v is not None:
            out[k] = v
    return out


def part_from_dict(data: Dict[str, Any]) -> ContentPart:
    d = dict(data)
    kind = d.pop("type", None)
    cls = _PART_TYPES.get(kind)
    if cls is None:
        raise ValueError(f"Unknown content part type: {kind!r}")
    return cls(**d)


@dataclass(frozen=True)
class ToolCallRequest:
    id: str
    tool_name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "tool_name": self.tool_name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolCallRequest":
        return cls(id=str(data["id"]), tool_name=str(data["tool_name"]), arguments=dict(data.get("arguments") or {}))


class ToolStatus:
    OK = "ok"
    ERROR = "error"
    DENIED = "denied"


@dataclass(frozen=True)
class ToolCallResult:
    tool_call_id: str
    status: str
    payload: Any = None
    error_message: Optional[str] = None
    tool_name: str = ""
    duration_ms: int = 0

    @classmethod
    def ok(cls, call: ToolCallRequest, payload: Any, duration_ms: int = 0) -> "ToolCallResult":
        return cls(call.id, ToolStatus.OK, payload=payload, tool_name=call.tool_name, duration_ms=duration_ms)

    @classmethod
    def error(cls, call: ToolCallRequest, message: str, duration_ms: int = 0) -> "ToolCallResult":
        return cls(call.id, ToolStatus.ERROR, error_message=message, tool_name=call.tool_name, duration_ms=duration_ms)

    @classmethod
    def denied(cls, call: ToolCallRequest, message: str) -> "ToolCallResult":
        return cls(call.id, ToolStatus.DENIED, error_message=message, tool_name=call.tool_name)

    @property
    def is_ok(self) -> bool:
        return self.status == ToolStatus.OK

    def content(self) -> str:
        """Text form of the result as the model sees it."""
        if self.status == ToolStatus.OK:
            if isinstance(self.payload, str):
                return self.payload
            return json.dumps(self.payload, ensure_ascii=False, default=str)
        return json.dumps({"status": self.status, "error": self.error_message}, ensure_ascii=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool_call_id": self.tool_call_id,
            "tool_name": self.tool_name,
            "status": self.status,
            "payload": self.payload,
            "error_message": self.error_message,
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolCallResult":
        return cls(
            tool_call_id=str(data["tool_call_id"]),
            status=str(data["status"]),
            payload=data.get("payload"),
            error_message=data.get("error_message"),
            tool_name=str(data.get("tool_name") or ""),
            duration_ms=int(data.get("duration_ms") or 0),
        )


@dataclass(frozen=True)
class Message:
    """
    Immutable conversation unit.

    - tool messages carry the tool_call_id they answer and the full result
    - assistant messages that request tools carry the requests in tool_calls and
      are the only messages allowed to have no parts
    """

    role: str
    parts: Tuple[ContentPart, ...]
    id: str = field(default_factory=lambda: new_id("msg"))
    created_at: str = field(default_factory=utc_now)
    tool_call_id: Optional[str] = None
    tool_calls: Tuple[ToolCallRequest, ...] = ()
    result: Optional[ToolCallResult] = None

    def __post_init__(self):
        if self.role not in Role.ALL:
            raise ValueError(f"Invalid role: {self.role!r}")
        object.__setattr__(self, "parts", tuple(self.parts))
        object.__setattr__(self, "tool_calls", tuple(self.tool_calls))
        if not self.parts and not (self.role == Role.ASSISTANT and self.tool_calls):
            raise ValueError("Message parts must not be empty")
        if self.role == Role.TOOL and not self.tool_call_id:
            raise ValueError("Tool messages must carry a tool_call_id")

    @classmethod
    def user(cls, content: Union[str, Sequence[ContentPart]]) -> "Message":
        return cls(Role.USER, _as_parts(content))

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(Role.SYSTEM, (TextPart(text),))

    @classmethod
    def assistant(cls, text: str = "", tool_calls: Sequence[ToolCallRequest] = ()) -> "Message":
        parts: Tuple[ContentPart, ...] = (TextPart(text),) if (text or not tool_calls) else ()
        return cls(Role.ASSISTANT, parts, tool_calls=tuple(tool_calls))

    @classmethod
    def tool(cls, result: ToolCallResult) -> "Message":
        return cls(Role.TOOL, (TextPart(result.content()),), tool_call_id=result.tool_call_id, result=result)

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "parts": [part_to_dict(p) for p in self.parts],
            "created_at": self.created_at,
        }
        if self.tool_call_id:
            out["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            out["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.result is not None:
            out["result"] = self.result.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        result = data.get("result")
        return cls(
            role=str(data["role"]),
            parts=tuple(part_from_dict(p) for p in data.get("parts") or []),
            id=str(data.get("id") or new_id("msg")),
            created_at=str(data.get("created_at") or utc_now()),
            tool_call_id=data.get("tool_call_id"),
            tool_calls=tuple(ToolCallRequest.from_dict(tc) for tc in data.get("tool_calls") or []),
            result=ToolCallResult.from_dict(result) if isinstance(result, dict) else None,
        )


def _as_parts(content: Union[str, Sequence[ContentPart]]) -> Tuple[ContentPart, ...]:
    if isinstance(content, str):
        return (TextPart(content),)
    return tuple(content)
