"""
Knowledge extraction from raw source documents.

A transcript is segmented into zero or more records; a note is summarized into
exactly one. Generation output is validated strictly and reported as an
``ExtractionResult`` rather than trusted to parse.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import TypeAdapter, ValidationError

from lkb.llm import TextGenerator
from lkb.prompts import EXTRACT_NOTES, EXTRACT_TRANSCRIPT
from lkb.schemas import (
    ExtractionErr,
    ExtractionOk,
    ExtractionResult,
    KnowledgeRecord,
    SourceKind,
)

logger = logging.getLogger(__name__)

_records_adapter = TypeAdapter(list[KnowledgeRecord])

TEMPLATE_FOR_KIND = {
    SourceKind.TRANSCRIPT: EXTRACT_TRANSCRIPT,
    SourceKind.NOTES: EXTRACT_NOTES,
}


def strip_code_fence(content: str) -> str:
    """Return the body of the first fenced block, or the content itself."""
    if "```json" in content:
        return content.split("```json", 1)[1].split("```", 1)[0].strip()
    if "```" in content:
        parts = content.split("```")
        if len(parts) >= 3:
            return parts[1].strip()
    return content.strip()


def parse_records(raw: str, kind: SourceKind, source: str = "<input>") -> ExtractionResult:
    """
    Parse generation output into knowledge records.

    Transcripts accept a JSON array of ``{topic, content}`` objects or an object
    with a ``records`` array. Notes accept a single object or a one-element
    array.

    Returns:
        ExtractionOk with the records, or ExtractionErr describing the violation
    """
    try:
        payload: Any = json.loads(strip_code_fence(raw))
    except json.JSONDecodeError as e:
        return ExtractionErr(source=source, reason=f"malformed JSON: {e}", raw=raw)

    if kind == SourceKind.TRANSCRIPT:
        if isinstance(payload, dict) and "records" in payload:
            payload = payload["records"]
        if not isinstance(payload, list):
            return ExtractionErr(
                source=source,
                reason=f"expected a JSON array, got {type(payload).__name__}",
                raw=raw,
            )
    else:
        if isinstance(payload, dict):
            payload = [payload]
        if not isinstance(payload, list) or len(payload) != 1:
            count = len(payload) if isinstance(payload, list) else type(payload).__name__
            return ExtractionErr(
                source=source,
                reason=f"notes must yield exactly one record, got {count}",
                raw=raw,
            )

    try:
        records = _records_adapter.validate_python(payload)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        return ExtractionErr(source=source, reason=f"invalid record: {errors}", raw=raw)

    return ExtractionOk(records=records)


class KnowledgeExtractor:
    """
    Extracts knowledge records from transcripts and notes.

    Usage:
        extractor = KnowledgeExtractor(llm)
        records = extractor.extract(text, SourceKind.TRANSCRIPT)
    """

    def __init__(self, generator: TextGenerator):
        self.generator = generator

    def try_extract(
        self,
        source_text: str,
        source_kind: SourceKind,
        source: str = "<input>",
    ) -> ExtractionResult:
        """
        Extract records, reporting schema problems as a value.

        Provider failures (after retries) still raise.
        """
        if not source_text.strip():
            if source_kind == SourceKind.TRANSCRIPT:
                return ExtractionOk(records=[])
            return ExtractionErr(source=source, reason="notes document is empty")

        raw = self.generator.generate(TEMPLATE_FOR_KIND[source_kind], source_text)
        result = parse_records(raw, source_kind, source=source)

        if result.ok:
            logger.debug(f"Extracted {len(result.records)} records from {source}")
        else:
            logger.warning(f"Extraction output rejected for {source}: {result.reason}")
        return result

    def extract(
        self,
        source_text: str,
        source_kind: SourceKind,
        source: str = "<input>",
    ) -> list[KnowledgeRecord]:
        """
        Extract records from one document.

        Raises:
            SchemaViolation: generation output did not match the record schema
        """
        return self.try_extract(source_text, source_kind, source=source).unwrap()
