"""
Pydantic schemas for knowledge records, store entries, and pipeline reports.

Records are immutable once extracted; the stored text of a record is always
produced by ``format_entry_text`` so that indexing and retrieval agree on it.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lkb.errors import SchemaViolation

# Hyphen followed by two spaces.
ENTRY_SEPARATOR = " -  "


def format_entry_text(topic: str, content: str) -> str:
    """Format a (topic, content) pair as stored entry text."""
    return f"{topic}{ENTRY_SEPARATOR}{content}"


class SourceKind(str, Enum):
    """Classification of an input document; governs extraction arity."""
    TRANSCRIPT = "transcript"  # many records
    NOTES = "notes"  # exactly one record


class SourceDocument(BaseModel):
    source: str = Field(..., description="File name or caller-supplied label")
    kind: SourceKind
    text: str


class KnowledgeRecord(BaseModel):
    """A structured (topic, content) unit extracted from one source document."""

    model_config = ConfigDict(frozen=True)

    topic: str = Field(..., description="Short human-readable title")
    content: str = Field(..., description="Extracted factual/explanatory text")

    @field_validator("topic", "content")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must be non-empty")
        return v

    def entry_text(self) -> str:
        return format_entry_text(self.topic, self.content)


class IndexedEntry(BaseModel):
    """A stored row of a collection."""

    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    vector: list[float] | None = Field(default=None, description="Only populated on request")
    ordinal: int = Field(default=0, ge=0, description="Store-assigned insertion order")


class SearchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    entry: IndexedEntry
    relevance_score: float = Field(..., ge=0.0, le=1.0)


# ============================================================
# Extraction result (tagged)
# ============================================================


class ExtractionOk(BaseModel):
    status: Literal["ok"] = "ok"
    records: list[KnowledgeRecord] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> list[KnowledgeRecord]:
        return self.records


class ExtractionErr(BaseModel):
    status: Literal["error"] = "error"
    source: str
    reason: str
    raw: str = ""

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self) -> list[KnowledgeRecord]:
        raise SchemaViolation(self.source, self.reason, self.raw)


ExtractionResult = Union[ExtractionOk, ExtractionErr]


# ============================================================
# Reports
# ============================================================


class DocumentFailure(BaseModel):
    source: str
    kind: SourceKind
    stage: Literal["extract", "embed", "store"]
    error_type: str
    message: str


class IndexReport(BaseModel):
    collection: str
    written: int = 0
    documents: int = Field(default=0, description="Documents fully indexed")
    failures: list[DocumentFailure] = Field(default_factory=list)
    cancelled: bool = False
    first_id: str | None = None
    last_id: str | None = None

    @property
    def success(self) -> bool:
        return not self.failures and not self.cancelled


class Answer(BaseModel):
    entry_id: str
    relevance_score: float
    context: str = Field(..., description="Entry text the answer was synthesized from")
    text: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
