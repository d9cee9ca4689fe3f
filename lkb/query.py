"""
Answer questions from the knowledge store.

Usage:
    lkb-query "What is gradient descent?"
    lkb-query "What is a tensor?" "How does backprop work?" --limit 3 --min-score 0.75
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from itertools import islice
from pathlib import Path
from typing import Any, Iterator

from lkb.config import Settings, load_config
from lkb.errors import ConfigurationError, KnowledgeError, ProviderError, SynthesisFailure
from lkb.llm import LLMClient, TextGenerator
from lkb.prompts import SUMMARY
from lkb.schemas import Answer, SearchResult
from lkb.store import KnowledgeStore

logger = logging.getLogger(__name__)

SYNTHESIS_ERROR_POLICIES = ("skip", "raise")

NO_RESULTS_MESSAGE = "No relevant knowledge found."


class AnswerSynthesizer:
    """Summarizes one retrieved entry into an answer to the question."""

    def __init__(self, generator: TextGenerator, template_id: str = SUMMARY):
        self.generator = generator
        self.template_id = template_id

    def synthesize(self, context: str, question: str, entry_id: str = "<entry>") -> str:
        try:
            return self.generator.generate(self.template_id, context, question=question).strip()
        except ProviderError as e:
            raise SynthesisFailure(entry_id, e.message) from e


class QueryPipeline:
    """
    Retrieves relevant entries and synthesizes one answer per entry.

    Usage:
        pipeline = QueryPipeline(store, AnswerSynthesizer(llm))
        for text in pipeline.answer("knowledge", "what is delta?", limit=1, min_relevance_score=0.7):
            print(text)
    """

    def __init__(
        self,
        store: KnowledgeStore,
        synthesizer: AnswerSynthesizer,
        default_limit: int = 1,
        default_min_relevance_score: float = 0.7,
        concurrency: int = 1,
        on_synthesis_error: str = "skip",
    ):
        if on_synthesis_error not in SYNTHESIS_ERROR_POLICIES:
            raise ConfigurationError(
                f"on_synthesis_error must be one of {SYNTHESIS_ERROR_POLICIES}, got {on_synthesis_error!r}"
            )
        self.store = store
        self.synthesizer = synthesizer
        self.default_limit = default_limit
        self.default_min_relevance_score = default_min_relevance_score
        self.concurrency = max(1, concurrency)
        self.on_synthesis_error = on_synthesis_error

    @classmethod
    def from_config(
        cls,
        config: dict[str, Any],
        llm: LLMClient,
        store: KnowledgeStore,
    ) -> QueryPipeline:
        qcfg = config.get("query", {})
        return cls(
            store=store,
            synthesizer=AnswerSynthesizer(llm),
            default_limit=qcfg.get("limit", 1),
            default_min_relevance_score=qcfg.get("min_relevance_score", 0.7),
            concurrency=qcfg.get("concurrency", 1),
            on_synthesis_error=qcfg.get("on_synthesis_error", "skip"),
        )

    def retrieve(
        self,
        collection: str,
        question: str,
        limit: int | None = None,
        min_relevance_score: float | None = None,
    ) -> list[SearchResult]:
        return self.store.search(
            collection,
            question,
            limit=self.default_limit if limit is None else limit,
            min_relevance_score=(
                self.default_min_relevance_score if min_relevance_score is None else min_relevance_score
            ),
        )

    def _synthesize(self, result: SearchResult, question: str) -> Answer:
        answer = Answer(
            entry_id=result.entry.id,
            relevance_score=result.relevance_score,
            context=result.entry.text,
        )
        try:
            text = self.synthesizer.synthesize(result.entry.text, question, entry_id=result.entry.id)
        except SynthesisFailure as e:
            logger.warning(e.message)
            return answer.model_copy(update={"error": e.reason})
        return answer.model_copy(update={"text": text})

    def iter_answers(
        self,
        collection: str,
        question: str,
        limit: int | None = None,
        min_relevance_score: float | None = None,
        cancel: threading.Event | None = None,
    ) -> Iterator[Answer]:
        """
        Lazily yield one Answer per retrieved entry, in relevance order.

        Failed syntheses are yielded with ``error`` set. With concurrency above
        one, up to ``concurrency`` answers are synthesized ahead of the consumer.
        """
        results = self.retrieve(collection, question, limit, min_relevance_score)
        if not results:
            logger.info(f"No entries above threshold for: {question!r}")
            return

        logger.debug(f"Retrieved {len(results)} entries for: {question!r}")

        if self.concurrency == 1:
            for result in results:
                if cancel is not None and cancel.is_set():
                    return
                yield self._synthesize(result, question)
            return

        executor = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="lkb-query")
        remaining = iter(results)
        window: deque[Future[Answer]] = deque(
            executor.submit(self._synthesize, result, question)
            for result in islice(remaining, self.concurrency)
        )
        try:
            while window:
                if cancel is not None and cancel.is_set():
                    return
                answer = window.popleft().result()
                following = next(remaining, None)
                if following is not None:
                    window.append(executor.submit(self._synthesize, following, question))
                yield answer
        finally:
            for future in window:
                future.cancel()
            executor.shutdown(wait=False)

    def answer(
        self,
        collection: str,
        question: str,
        limit: int | None = None,
        min_relevance_score: float | None = None,
        cancel: threading.Event | None = None,
    ) -> Iterator[str]:
        """
        Lazily yield one answer string per retrieved entry.

        An empty sequence means no entry met the relevance threshold.

        Raises:
            SynthesisFailure: only with ``on_synthesis_error: raise``, at the
                position of the failed entry
        """
        for answer in self.iter_answers(collection, question, limit, min_relevance_score, cancel):
            if answer.ok:
                yield answer.text
            elif self.on_synthesis_error == "raise":
                raise SynthesisFailure(answer.entry_id, answer.error)
            else:
                logger.warning(f"Skipping answer for {answer.entry_id}: {answer.error}")


def create_query_pipeline(config: dict[str, Any], settings: Settings) -> QueryPipeline:
    llm = LLMClient(settings, config)
    store = KnowledgeStore.from_settings(settings, llm, config)
    return QueryPipeline.from_config(config, llm, store)


def print_answers(
    pipeline: QueryPipeline,
    collection: str,
    questions: list[str],
    limit: int | None = None,
    min_relevance_score: float | None = None,
) -> int:
    """
    Print the answers to each question.

    Returns:
        Number of answers whose synthesis failed
    """
    failed = 0
    for question in questions:
        print(f"\nQ: {question}")
        found = False
        for answer in pipeline.iter_answers(collection, question, limit, min_relevance_score):
            found = True
            if answer.ok:
                print(f"A: {answer.text}")
                continue
            if pipeline.on_synthesis_error == "raise":
                raise SynthesisFailure(answer.entry_id, answer.error)
            failed += 1
            print(f"! Failed to answer from {answer.entry_id}: {answer.error}")
        # Only an empty retrieval means nothing relevant was found
        if not found:
            print(NO_RESULTS_MESSAGE)
    return failed


def main() -> int:
    parser = argparse.ArgumentParser(description="Answer questions from the knowledge store")
    parser.add_argument("questions", nargs="+", help="Question(s) to answer")
    parser.add_argument("--limit", type=int, default=None, help="Entries to retrieve per question")
    parser.add_argument(
        "--min-score",
        type=float,
        default=None,
        help="Minimum relevance score in [0, 1] (default: from config)",
    )
    parser.add_argument("--collection", type=str, default=None, help="Collection to search")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        config = load_config(args.config)
        collection = args.collection or config["store"]["collection"]
        pipeline = create_query_pipeline(config, Settings.from_env())
        failed = print_answers(pipeline, collection, args.questions, args.limit, args.min_score)
    except KnowledgeError as e:
        logger.error(e.message)
        return 1
    except ValueError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
