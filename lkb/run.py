#!/usr/bin/env python3
"""
Index the transcripts and notes, then answer questions.

Usage:
    lkb-run "What is a derivative?" "Explain the chain rule"
    lkb-run --skip-index "What is a derivative?"
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from lkb.config import Settings, load_config
from lkb.errors import IndexingAborted, KnowledgeError
from lkb.ingest import format_report, run_indexing
from lkb.query import create_query_pipeline, print_answers

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Index course material, then answer questions")
    parser.add_argument("questions", nargs="*", help="Question(s) to answer after indexing")
    parser.add_argument("--transcripts", type=Path, default=None, help="Transcripts directory")
    parser.add_argument("--notes", type=Path, default=None, help="Notes directory")
    parser.add_argument("--skip-index", action="store_true", help="Only run the questions")
    parser.add_argument("--force", action="store_true", help="Drop the collection before indexing")
    parser.add_argument("--limit", type=int, default=None, help="Entries to retrieve per question")
    parser.add_argument("--min-score", type=float, default=None, help="Minimum relevance score")
    parser.add_argument("-c", "--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    failed = 0
    try:
        # Fail on configuration before any work starts
        config = load_config(args.config)
        settings = Settings.from_env()

        if not args.skip_index:
            report = run_indexing(
                config,
                settings,
                transcripts_dir=args.transcripts,
                notes_dir=args.notes,
                force=args.force,
            )
            print(format_report(report))
            if not report.success:
                failed += 1

        if args.questions:
            pipeline = create_query_pipeline(config, settings)
            failed += print_answers(
                pipeline,
                config["store"]["collection"],
                args.questions,
                args.limit,
                args.min_score,
            )
    except IndexingAborted as e:
        print(format_report(e.report))
        logger.error(e.message)
        return 1
    except KnowledgeError as e:
        logger.error(e.message)
        if args.verbose and e.detail:
            logger.debug(e.detail)
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
