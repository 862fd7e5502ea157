"""Structured result type for the tool-invocation boundary.

Every tool returns a ToolResult; this is the only place where failures turn
into payloads instead of exceptions.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional

ERROR_INVALID_ARGUMENTS = "invalid_arguments"
ERROR_NOT_FOUND = "not_found"
ERROR_UNKNOWN_TOOL = "unknown_tool"
ERROR_UPSTREAM = "upstream_error"


@dataclass
class ToolResult:
    """Result container for one tool call.

    Attributes:
        status: "success" or "error"
        tool: Name of the tool that produced the result
        data: Payload for success results
        error_code: One of the ERROR_* codes for error results
        message: Human readable error description
    """

    status: Literal["success", "error"]
    tool: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def as_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        if self.ok:
            return {"status": self.status, "tool": self.tool, "data": self.data}
        return {
            "status": self.status,
            "tool": self.tool,
            "error": {"code": self.error_code, "message": self.message},
        }

    @classmethod
    def success(cls, data: Optional[Dict[str, Any]] = None, tool: Optional[str] = None) -> "ToolResult":
        return cls(status="success", tool=tool, data=data or {})

    @classmethod
    def error(cls, code: str, message: str, tool: Optional[str] = None) -> "ToolResult":
        return cls(status="error", tool=tool, error_code=code, message=message)

    @classmethod
    def not_found(cls, message: str, tool: Optional[str] = None) -> "ToolResult":
        return cls.error(ERROR_NOT_FOUND, message, tool)
