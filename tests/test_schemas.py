"""Tests for lkb/schemas.py Pydantic models."""

import pytest
from pydantic import ValidationError

from lkb.errors import SchemaViolation
from lkb.schemas import (
    Answer,
    DocumentFailure,
    ExtractionErr,
    ExtractionOk,
    IndexReport,
    KnowledgeRecord,
    SearchResult,
    IndexedEntry,
    SourceKind,
    format_entry_text,
)


class TestKnowledgeRecord:
    def test_valid_record(self):
        record = KnowledgeRecord(topic="Entropy", content="A measure of disorder")
        assert record.topic == "Entropy"
        assert record.content == "A measure of disorder"

    def test_strips_whitespace(self):
        record = KnowledgeRecord(topic="  Entropy \n", content=" text ")
        assert record.topic == "Entropy"
        assert record.content == "text"

    def test_blank_topic_rejected(self):
        with pytest.raises(ValidationError):
            KnowledgeRecord(topic="   ", content="text")

    def test_empty_content_rejected(self):
        with pytest.raises(ValidationError):
            KnowledgeRecord(topic="Entropy", content="")

    def test_missing_field_rejected(self):
        with pytest.raises(ValidationError):
            KnowledgeRecord(topic="Entropy")

    def test_immutable(self):
        record = KnowledgeRecord(topic="Entropy", content="text")
        with pytest.raises(ValidationError):
            record.topic = "Other"

    def test_entry_text_format(self):
        record = KnowledgeRecord(topic="Entropy", content="A measure of disorder")
        assert record.entry_text() == "Entropy -  A measure of disorder"


class TestFormatEntryText:
    def test_two_spaces_after_hyphen(self):
        assert format_entry_text("T", "C") == "T -  C"

    def test_deterministic(self):
        assert format_entry_text("Topic", "Body") == format_entry_text("Topic", "Body")


class TestExtractionResult:
    def test_ok_unwrap(self):
        records = [KnowledgeRecord(topic="A", content="B")]
        result = ExtractionOk(records=records)
        assert result.ok
        assert result.unwrap() == records

    def test_err_unwrap_raises(self):
        result = ExtractionErr(source="lecture1.txt", reason="malformed JSON", raw="{oops")
        assert not result.ok
        with pytest.raises(SchemaViolation) as exc_info:
            result.unwrap()
        assert exc_info.value.source == "lecture1.txt"
        assert exc_info.value.reason == "malformed JSON"


class TestSearchResult:
    def test_score_bounds(self):
        entry = IndexedEntry(id="index1", text="t")
        with pytest.raises(ValidationError):
            SearchResult(entry=entry, relevance_score=1.5)
        with pytest.raises(ValidationError):
            SearchResult(entry=entry, relevance_score=-0.1)


class TestIndexReport:
    def test_success_without_failures(self):
        assert IndexReport(collection="c", written=3).success

    def test_failure_marks_unsuccessful(self):
        report = IndexReport(collection="c")
        report.failures.append(
            DocumentFailure(
                source="a.txt",
                kind=SourceKind.NOTES,
                stage="extract",
                error_type="SchemaViolation",
                message="bad",
            )
        )
        assert not report.success

    def test_cancelled_marks_unsuccessful(self):
        assert not IndexReport(collection="c", cancelled=True).success


class TestAnswer:
    def test_ok(self):
        answer = Answer(entry_id="index1", relevance_score=0.9, context="ctx", text="an answer")
        assert answer.ok

    def test_error(self):
        answer = Answer(entry_id="index1", relevance_score=0.9, context="ctx", error="boom")
        assert not answer.ok
