"""Pydantic models matching the viewer's JSON payloads."""
from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

SUMMARY_TYPE = "summary"
UNTITLED_SESSION = "Untitled Session"


def _coerce_optional_str(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float, bool)):
        return str(value)
    return None


# ── Log entries ─────────────────────────────────────────────────────

class EntryMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: str = ""
    content: Union[str, list[Any]] = ""
    id: Optional[str] = None
    model: Optional[str] = None

    @field_validator("role", mode="before")
    @classmethod
    def _role(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""

    @field_validator("content", mode="before")
    @classmethod
    def _content(cls, value: Any) -> Any:
        if isinstance(value, (str, list)):
            return value
        return ""

    @field_validator("id", "model", mode="before")
    @classmethod
    def _optional_str(cls, value: Any) -> Any:
        return _coerce_optional_str(value)


class LogEntry(BaseModel):
    """One parsed JSONL line.

    Unknown keys are kept so a round trip through the model loses nothing.
    """

    model_config = ConfigDict(extra="allow")

    type: str = ""
    uuid: Optional[str] = None
    parentUuid: Optional[str] = None
    sessionId: Optional[str] = None
    timestamp: str = ""
    cwd: Optional[str] = None
    isSidechain: bool = False
    userType: Optional[str] = None
    version: Optional[str] = None
    requestId: Optional[str] = None
    message: Optional[EntryMessage] = None
    summary: Optional[str] = None
    leafUuid: Optional[str] = None

    @field_validator("type", "timestamp", mode="before")
    @classmethod
    def _required_str(cls, value: Any) -> str:
        coerced = _coerce_optional_str(value)
        return coerced or ""

    @field_validator(
        "uuid", "parentUuid", "sessionId", "cwd", "userType", "version", "requestId", "summary", "leafUuid",
        mode="before",
    )
    @classmethod
    def _optional_str(cls, value: Any) -> Any:
        return _coerce_optional_str(value)

    @field_validator("isSidechain", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> bool:
        return bool(value)

    @field_validator("message", mode="before")
    @classmethod
    def _message(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @property
    def is_summary(self) -> bool:
        return self.type == SUMMARY_TYPE


# ── Files and threads ───────────────────────────────────────────────

class SessionFile(BaseModel):
    id: str
    project: str
    filepath: str
    messages: list[LogEntry] = Field(default_factory=list)
    summaries: list[LogEntry] = Field(default_factory=list)
    rootSessionId: str
    isRoot: bool = True
    continuationOf: Optional[str] = None
    failedLines: int = 0


class SessionThread(BaseModel):
    rootSessionId: str
    files: list[SessionFile] = Field(default_factory=list)
    messages: list[LogEntry] = Field(default_factory=list)
    summaries: list[LogEntry] = Field(default_factory=list)
    title: str = UNTITLED_SESSION

    @property
    def project(self) -> str:
        return self.files[0].project if self.files else "unknown"

    @property
    def last_timestamp(self) -> str:
        return self.messages[-1].timestamp if self.messages else ""


class SessionMessageView(BaseModel):
    role: str
    content: Union[str, list[Any]] = ""
    timestamp: str = ""


# ── Tree ────────────────────────────────────────────────────────────

class SessionSummary(BaseModel):
    id: str
    title: str = UNTITLED_SESSION
    messageCount: int = 0
    fileCount: int = 0
    lastUpdated: str = ""
    firstMessage: str = ""
    summaries: list[str] = Field(default_factory=list)


class FileTreeNode(BaseModel):
    name: str
    path: str = ""
    type: Literal["folder", "project"] = "folder"
    children: list[FileTreeNode] = Field(default_factory=list)
    sessions: list[SessionSummary] = Field(default_factory=list)
    sessionCount: int = 0


class ProjectTreeResponse(BaseModel):
    fileTree: list[FileTreeNode] = Field(default_factory=list)
    totalSessions: int = 0
    error: Optional[str] = None


# ── Live updates ────────────────────────────────────────────────────

class LiveEvent(BaseModel):
    type: Literal["heartbeat", "new_messages", "new_session"]
    timestamp: str
    sessionId: Optional[str] = None
    fullSessionId: Optional[str] = None
    project: Optional[str] = None
    messages: Optional[list[dict[str, Any]]] = None
    messageCount: Optional[int] = None


# ── Summary reconciliation ──────────────────────────────────────────

class SummaryFix(BaseModel):
    summary: str = ""
    leafUuid: str
    fromFile: str
    toFile: str


class OrphanedSummary(BaseModel):
    summary: str = ""
    leafUuid: str
    file: str


class ReconcileReport(BaseModel):
    totalMessages: int = 0
    totalSummaries: int = 0
    misplaced: int = 0
    orphaned: int = 0
    fixes: list[SummaryFix] = Field(default_factory=list)
    fixesByFile: dict[str, list[str]] = Field(default_factory=dict)
    orphans: list[OrphanedSummary] = Field(default_factory=list)
    applied: bool = False
    rewrittenFiles: list[str] = Field(default_factory=list)
