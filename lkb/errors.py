"""
Exception hierarchy for the knowledge pipeline.

Transient provider errors are retried where the call is issued (see
``lkb.llm``); everything else propagates to the orchestrating pipeline.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lkb.schemas import IndexReport


class KnowledgeError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class ConfigurationError(KnowledgeError):
    """Missing or invalid configuration. Fatal, never retried."""


# ── Provider (LLM / embedding service) ────────────────────


class ProviderError(KnowledgeError):
    """The completion or embedding service failed."""


class TransientError(ProviderError):
    """A provider failure worth retrying."""


class ProviderUnavailable(TransientError):
    """Service unreachable or returned a server error."""


class RateLimited(TransientError):
    """Service rejected the call due to rate limits."""


class Timeout(TransientError):
    """No response within the configured wait."""


class ContentFiltered(ProviderError):
    """Service refused to produce output for this input."""


# ── Extraction ────────────────────────────────────────────


class SchemaViolation(KnowledgeError):
    """Generated output did not parse into knowledge records."""

    def __init__(self, source: str, reason: str, raw: str = ""):
        self.source = source
        self.reason = reason
        self.raw = raw
        super().__init__(f"Schema violation in {source}: {reason}", detail=raw[:500] or None)


# ── Store ─────────────────────────────────────────────────


class StoreError(KnowledgeError):
    """Knowledge store failure."""


class StoreUnavailable(StoreError):
    """The backing store cannot be reached."""


class CollectionNotFound(StoreError):
    """Search against a collection that was never written to."""

    def __init__(self, collection: str):
        self.collection = collection
        super().__init__(f"Collection not found: {collection}")


class EmbeddingFailure(KnowledgeError):
    """Vectorization failed or produced a vector of the wrong size."""


# ── Pipelines ─────────────────────────────────────────────


class SynthesisFailure(KnowledgeError):
    """Answer synthesis failed for one retrieved entry."""

    def __init__(self, entry_id: str, message: str):
        self.entry_id = entry_id
        self.reason = message
        super().__init__(f"Synthesis failed for {entry_id}: {message}")


class IndexingAborted(KnowledgeError):
    """Indexing stopped on the first failed document (``on_error: abort``)."""

    def __init__(self, report: IndexReport):
        self.report = report
        failure = report.failures[-1] if report.failures else None
        reason = f"{failure.source}: {failure.message}" if failure else "unknown failure"
        super().__init__(f"Indexing aborted after {report.written} entries ({reason})")
