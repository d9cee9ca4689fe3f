"""
Index transcripts and notes into the knowledge store.

Usage:
    lkb-index
    lkb-index --transcripts ./data/transcripts --notes ./data/notes
    lkb-index --force                 # Drop the collection first
    lkb-index --on-error abort        # Stop at the first failed document
"""

from __future__ import annotations

import argparse
import logging
import re
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Sequence

from pydantic import BaseModel, Field
from tqdm import tqdm

from lkb.config import Settings, load_config
from lkb.errors import (
    ConfigurationError,
    EmbeddingFailure,
    IndexingAborted,
    KnowledgeError,
    ProviderError,
    StoreError,
)
from lkb.extract import KnowledgeExtractor
from lkb.llm import EmbeddingProvider, LLMClient
from lkb.schemas import DocumentFailure, IndexReport, SourceDocument, SourceKind
from lkb.store import KnowledgeStore

logger = logging.getLogger(__name__)

ID_PREFIX = "index"
_ID_PATTERN = re.compile(rf"^{ID_PREFIX}(\d+)$")

ON_ERROR_POLICIES = ("skip", "abort")
ID_POLICIES = ("append", "overwrite")


class IdCounter:
    """Run-scoped, thread-safe ``index1``, ``index2``, ... generator."""

    def __init__(self, start: int = 0, prefix: str = ID_PREFIX):
        self.prefix = prefix
        self._value = start
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        """Last number handed out (0 if none)."""
        return self._value

    def next(self) -> str:
        with self._lock:
            self._value += 1
            return f"{self.prefix}{self._value}"


def highest_index(ids: Sequence[str]) -> int:
    """Largest N among ids of the form ``indexN`` (0 if none)."""
    numbers = [int(m.group(1)) for m in map(_ID_PATTERN.match, ids) if m]
    return max(numbers, default=0)


def load_documents(
    transcripts_dir: Path | None = None,
    notes_dir: Path | None = None,
) -> list[SourceDocument]:
    """
    Load every file in each directory as one document of that kind.

    Files are read in sorted name order, transcripts first.
    """
    documents = []
    for directory, kind in ((transcripts_dir, SourceKind.TRANSCRIPT), (notes_dir, SourceKind.NOTES)):
        if directory is None:
            continue
        directory = Path(directory)
        if not directory.is_dir():
            raise ConfigurationError(f"{kind.value} directory not found: {directory}")

        files = sorted(p for p in directory.iterdir() if p.is_file())
        for path in files:
            documents.append(
                SourceDocument(
                    source=path.name,
                    kind=kind,
                    text=path.read_text(encoding="utf-8"),
                )
            )
        logger.info(f"Found {len(files)} {kind.value} documents in {directory}")

    return documents


class PreparedDocument(BaseModel):
    """A document after extraction and embedding, ready to write."""
    document: SourceDocument
    texts: list[str] = Field(default_factory=list)
    vectors: list[list[float]] = Field(default_factory=list)
    failure: DocumentFailure | None = None


def _is_set(cancel: threading.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


def _failure(document: SourceDocument, stage: str, error: Exception) -> DocumentFailure:
    message = error.message if isinstance(error, KnowledgeError) else str(error)
    return DocumentFailure(
        source=document.source,
        kind=document.kind,
        stage=stage,
        error_type=type(error).__name__,
        message=message,
    )


class IndexingPipeline:
    """
    Extracts, embeds and stores knowledge records for a batch of documents.

    Extraction and embedding run on a bounded worker pool; results are
    collected in submission order so ids follow document order. Only the
    collecting thread writes to the store.

    Usage:
        pipeline = IndexingPipeline(extractor, llm, store, collection="knowledge")
        report = pipeline.index_all(load_documents(transcripts_dir, notes_dir))
    """

    def __init__(
        self,
        extractor: KnowledgeExtractor,
        embedder: EmbeddingProvider,
        store: KnowledgeStore,
        collection: str = "knowledge",
        concurrency: int = 4,
        on_error: str = "skip",
        id_policy: str = "append",
        counter: IdCounter | None = None,
        progress_bar: bool = False,
    ):
        if on_error not in ON_ERROR_POLICIES:
            raise ConfigurationError(f"on_error must be one of {ON_ERROR_POLICIES}, got {on_error!r}")
        if id_policy not in ID_POLICIES:
            raise ConfigurationError(f"id_policy must be one of {ID_POLICIES}, got {id_policy!r}")

        self.extractor = extractor
        self.embedder = embedder
        self.store = store
        self.collection = collection
        self.concurrency = max(1, concurrency)
        self.on_error = on_error
        self.id_policy = id_policy
        self.counter = counter
        self.progress_bar = progress_bar

    @classmethod
    def from_config(
        cls,
        config: dict[str, Any],
        llm: LLMClient,
        store: KnowledgeStore,
    ) -> IndexingPipeline:
        icfg = config.get("indexing", {})
        return cls(
            extractor=KnowledgeExtractor(llm),
            embedder=llm,
            store=store,
            collection=config.get("store", {}).get("collection", "knowledge"),
            concurrency=icfg.get("concurrency", 4),
            on_error=icfg.get("on_error", "skip"),
            id_policy=icfg.get("id_policy", "append"),
            progress_bar=config.get("processing", {}).get("progress_bar", True),
        )

    def _start_counter(self) -> IdCounter:
        if self.counter is not None:
            return self.counter
        if self.id_policy == "overwrite" or not self.store.exists(self.collection):
            return IdCounter()
        start = highest_index(self.store.ids(self.collection))
        if start:
            logger.info(f"Collection {self.collection} has ids up to {ID_PREFIX}{start}, appending")
        return IdCounter(start=start)

    def prepare(
        self,
        document: SourceDocument,
        cancel: threading.Event | None = None,
    ) -> PreparedDocument | None:
        """
        Extract and embed one document (worker side).

        Returns:
            The prepared document, or None if cancelled before starting
        """
        if _is_set(cancel):
            return None

        try:
            result = self.extractor.try_extract(document.text, document.kind, source=document.source)
        except ProviderError as e:
            return PreparedDocument(document=document, failure=_failure(document, "extract", e))

        if not result.ok:
            return PreparedDocument(
                document=document,
                failure=DocumentFailure(
                    source=document.source,
                    kind=document.kind,
                    stage="extract",
                    error_type="SchemaViolation",
                    message=result.reason,
                ),
            )

        texts = [record.entry_text() for record in result.records]
        vectors = []
        for text in texts:
            try:
                vectors.append(self.embedder.embed(text))
            except ProviderError as e:
                error = EmbeddingFailure(f"Embedding failed: {e.message}", detail=e.detail)
                return PreparedDocument(document=document, failure=_failure(document, "embed", error))

        return PreparedDocument(document=document, texts=texts, vectors=vectors)

    def _record_failure(self, report: IndexReport, failure: DocumentFailure) -> None:
        report.failures.append(failure)
        logger.error(
            f"Failed to index {failure.source} ({failure.stage}): "
            f"{failure.error_type}: {failure.message}"
        )
        if self.on_error == "abort":
            raise IndexingAborted(report)

    def index_all(
        self,
        documents: Sequence[SourceDocument],
        cancel: threading.Event | None = None,
    ) -> IndexReport:
        """
        Index a batch of documents.

        Args:
            documents: Documents in processing order
            cancel: Set to stop at the next document boundary

        Returns:
            Report with the number of entries written and failed documents

        Raises:
            IndexingAborted: a document failed and ``on_error`` is ``abort``
        """
        report = IndexReport(collection=self.collection)
        if not documents:
            logger.warning("No documents to index")
            return report

        counter = self._start_counter()
        logger.info(f"Indexing {len(documents)} documents into {self.collection}")

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="lkb-index") as executor:
            futures = [executor.submit(self.prepare, doc, cancel) for doc in documents]
            try:
                pending = tqdm(futures, desc="Documents", disable=not self.progress_bar)
                for future in pending:
                    prepared = None if _is_set(cancel) else future.result()
                    # Nothing is written once cancellation is requested
                    if prepared is None or _is_set(cancel):
                        report.cancelled = True
                        logger.warning("Indexing cancelled")
                        break

                    if prepared.failure is not None:
                        self._record_failure(report, prepared.failure)
                        continue

                    self._write(report, prepared, counter)
            finally:
                for future in futures:
                    future.cancel()

        logger.info(
            f"Indexing complete: {report.written} entries from {report.documents} documents, "
            f"{len(report.failures)} failed"
        )
        return report

    def _write(self, report: IndexReport, prepared: PreparedDocument, counter: IdCounter) -> None:
        document = prepared.document
        ids = [counter.next() for _ in prepared.texts]

        try:
            written = self.store.upsert(
                self.collection,
                list(zip(ids, prepared.texts, prepared.vectors)),
            )
        except (StoreError, EmbeddingFailure) as e:
            stage = "embed" if isinstance(e, EmbeddingFailure) else "store"
            self._record_failure(report, _failure(document, stage, e))
            return

        report.written += written
        report.documents += 1
        if ids:
            report.first_id = report.first_id or ids[0]
            report.last_id = ids[-1]
        logger.debug(f"Indexed {document.source}: {written} entries")


def format_report(report: IndexReport) -> str:
    """Human-readable summary of an indexing run."""
    lines = [f"Wrote {report.written} entries to {report.collection}"]
    if report.first_id:
        lines[0] += f" ({report.first_id}..{report.last_id})"
    if report.cancelled:
        lines.append("Run was cancelled before all documents were processed")
    if report.failures:
        lines.append(f"{len(report.failures)} documents failed:")
        for failure in report.failures:
            lines.append(
                f"  {failure.source} [{failure.kind.value}] {failure.stage}: "
                f"{failure.error_type}: {failure.message}"
            )
    return "\n".join(lines)


def run_indexing(
    config: dict[str, Any],
    settings: Settings,
    transcripts_dir: Path | None = None,
    notes_dir: Path | None = None,
    force: bool = False,
) -> IndexReport:
    """Load documents from disk and index them with configured components."""
    data_cfg = config.get("data", {})
    transcripts_dir = transcripts_dir or Path(data_cfg.get("transcripts_dir", "./data/transcripts"))
    notes_dir = notes_dir or Path(data_cfg.get("notes_dir", "./data/notes"))

    documents = load_documents(transcripts_dir, notes_dir)

    llm = LLMClient(settings, config)
    store = KnowledgeStore.from_settings(settings, llm, config)
    pipeline = IndexingPipeline.from_config(config, llm, store)

    if force:
        logger.info("Force mode: dropping existing collection")
        store.drop(pipeline.collection)

    return pipeline.index_all(documents)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Extract knowledge from transcripts and notes into the knowledge store"
    )
    parser.add_argument("--transcripts", type=Path, default=None, help="Transcripts directory")
    parser.add_argument("--notes", type=Path, default=None, help="Notes directory")
    parser.add_argument("--collection", type=str, default=None, help="Target collection")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Drop the collection before indexing",
    )
    parser.add_argument(
        "--on-error",
        choices=ON_ERROR_POLICIES,
        default=None,
        help="Skip failed documents or abort the run (default: from config)",
    )
    parser.add_argument(
        "--id-policy",
        choices=ID_POLICIES,
        default=None,
        help="Append after existing ids or overwrite from index1 (default: from config)",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        config = load_config(args.config)
        if args.collection:
            config["store"]["collection"] = args.collection
        if args.on_error:
            config["indexing"]["on_error"] = args.on_error
        if args.id_policy:
            config["indexing"]["id_policy"] = args.id_policy

        settings = Settings.from_env()
        report = run_indexing(
            config,
            settings,
            transcripts_dir=args.transcripts,
            notes_dir=args.notes,
            force=args.force,
        )
    except IndexingAborted as e:
        print(format_report(e.report))
        logger.error(e.message)
        return 1
    except KnowledgeError as e:
        logger.error(e.message)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130

    print(format_report(report))
    return 0 if report.success else 1


if __name__ == "__main__":
    sys.exit(main())
