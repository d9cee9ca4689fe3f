"""Tests for lkb/run.py exit codes."""

import sys

import pytest

from conftest import FakeGenerator, LECTURE_TOPICS
from lkb import run
from lkb.prompts import SUMMARY
from lkb.query import AnswerSynthesizer, QueryPipeline
from lkb.schemas import DocumentFailure, IndexReport, SourceKind, format_entry_text


@pytest.fixture
def patched(store, monkeypatch):
    """Replace credentials, indexing and pipeline construction with local fakes."""
    for i, (topic, content) in enumerate(LECTURE_TOPICS, 1):
        store.add("knowledge", f"index{i}", format_entry_text(topic, content))
    pipeline = QueryPipeline(store, AnswerSynthesizer(FakeGenerator({SUMMARY: "An answer."})))

    monkeypatch.setattr(run.Settings, "from_env", lambda: None)
    monkeypatch.setattr(run, "create_query_pipeline", lambda config, settings: pipeline)

    def main(report, *args):
        monkeypatch.setattr(run, "run_indexing", lambda *a, **kw: report)
        monkeypatch.setattr(sys, "argv", ["lkb-run", *args])
        return run.main()

    return main


def failed_report():
    report = IndexReport(collection="knowledge", written=2, documents=1)
    report.failures.append(
        DocumentFailure(
            source="broken.txt",
            kind=SourceKind.TRANSCRIPT,
            stage="extract",
            error_type="SchemaViolation",
            message="malformed JSON",
        )
    )
    return report


class TestRunMain:
    def test_clean_run(self, patched):
        report = IndexReport(collection="knowledge", written=3, documents=1)
        assert patched(report, LECTURE_TOPICS[0][1]) == 0

    def test_failed_documents_exit_nonzero(self, patched, capsys):
        assert patched(failed_report()) == 1
        assert "broken.txt" in capsys.readouterr().out

    def test_invalid_limit_exits_nonzero(self, patched):
        report = IndexReport(collection="knowledge")
        assert patched(report, "--skip-index", "--limit", "0", "question") == 1
