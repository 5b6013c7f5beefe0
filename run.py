"""CLI entry point for the RAG chatbot QA pipeline.

Usage:
    python run.py --tenant acme                         # Full test with qa.toml defaults
    python run.py --tenant acme --min-questions 20 --languages nl en
    python run.py --tenant acme --categories retrieval accuracy
    python run.py --tenant acme --create-only           # Plan the run, don't start it
    python run.py --start RUN_ID                        # Start a pending run
    python run.py --report RUN_ID                       # Report of an existing run
    python run.py --progress RUN_ID                     # Progress of a run
    python run.py --list acme                           # Run history of a tenant
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from contextlib import closing

from ragqa.collaborators import LexicalRetriever, LLMAnswerGenerator, load_retriever
from ragqa.config import get_qa_settings, get_settings
from ragqa.errors import InvalidTransitionError, RunFatalError, RunNotFoundError
from ragqa.logging_config import setup_logging
from ragqa.persistence.db import get_connection
from ragqa.persistence.repository import (
    get_test_questions,
    get_test_run,
    get_test_run_progress,
    list_test_runs_for_tenant,
)
from ragqa.pipeline.context import PipelineContext
from ragqa.pipeline.orchestrator import create_run_for_tenant, run_complete_test
from ragqa.schemas.categories import Category
from ragqa.schemas.phases import Strictness
from ragqa.utils.console import (
    print_error,
    print_header,
    print_info,
    print_langsmith_status,
    print_progress,
    print_report,
    print_runs,
)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Automated QA tests for a multi-tenant RAG chatbot",
    )
    action = parser.add_mutually_exclusive_group(required=True)
    action.add_argument("--tenant", help="Tenant to run a new test for.")
    action.add_argument("--start", metavar="RUN_ID", help="Start an existing pending run.")
    action.add_argument("--report", metavar="RUN_ID", help="Print the report of a run.")
    action.add_argument("--progress", metavar="RUN_ID", help="Print the progress of a run.")
    action.add_argument("--list", metavar="TENANT", help="List the test runs of a tenant.")

    config = parser.add_argument_group("run configuration (defaults from qa.toml)")
    config.add_argument("--min-questions", type=int, default=None)
    config.add_argument("--questions-per-document", type=int, default=None)
    config.add_argument(
        "--categories",
        nargs="+",
        choices=[c.value for c in Category],
        default=None,
        help="Categories to test (default: all).",
    )
    config.add_argument(
        "--languages",
        nargs="+",
        default=None,
        help="Language codes; the first one is the default language.",
    )
    config.add_argument(
        "--strictness",
        choices=[s.value for s in Strictness],
        default=None,
    )
    config.add_argument(
        "--create-only",
        action="store_true",
        default=False,
        help="Create the run as pending without executing it.",
    )

    parser.add_argument("--db", default=None, help="SQLite database path.")
    parser.add_argument(
        "--retriever",
        default=None,
        help="Retriever factory as 'package.module:factory' (default: lexical).",
    )
    parser.add_argument("--log-level", default=None)
    parser.add_argument(
        "--json-logs",
        action="store_true",
        default=False,
        help="Emit JSON log lines instead of console output.",
    )
    parser.add_argument(
        "--show-questions",
        action="store_true",
        default=False,
        help="Include the lowest scoring questions in the report.",
    )
    return parser.parse_args(argv)


def config_overrides(args: argparse.Namespace) -> dict:
    """Run config fields given on the command line."""
    return {
        "min_questions": args.min_questions,
        "questions_per_document": args.questions_per_document,
        "categories": args.categories,
        "languages": args.languages,
        "strictness": args.strictness,
    }


def build_context(args: argparse.Namespace, db_path: str) -> PipelineContext:
    """Pipeline context with live collaborators, for the actions that run a test."""
    retriever_path = args.retriever or get_settings().retriever
    retriever = load_retriever(retriever_path) if retriever_path else LexicalRetriever(db_path)
    return PipelineContext(
        db_path=db_path,
        retriever=retriever,
        answer_generator=LLMAnswerGenerator(),
    )


async def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    setup_logging(args.log_level or settings.log_level, json_output=args.json_logs)
    db_path = args.db or settings.database_path
    qa_settings = get_qa_settings()

    with closing(get_connection(db_path)) as conn:
        if args.list:
            print_runs(list_test_runs_for_tenant(conn, args.list))
            return 0
        if args.progress:
            progress = get_test_run_progress(conn, args.progress)
            if progress is None:
                print_error(f"Run not found: {args.progress}")
                return 1
            print_progress(progress)
            return 0
        if args.report:
            existing = get_test_run(conn, args.report)
            if existing is None:
                print_error(f"Run not found: {args.report}")
                return 1
            questions = get_test_questions(conn, existing.id) if args.show_questions else None
            print_report(existing, questions)
            return 0

        if args.start:
            run_id = args.start
            planned = get_test_run(conn, run_id)
            if planned is None:
                print_error(f"Run not found: {run_id}")
                return 1
        else:
            planned = create_run_for_tenant(conn, args.tenant, config_overrides(args), qa_settings)
            run_id = planned.id

    print_header(planned, qa_settings.get_model("judge"))
    print_langsmith_status(settings.langchain_tracing_v2)
    if args.create_only:
        print_info(f"Created pending run {run_id}")
        return 0

    ctx = build_context(args, db_path)
    print_info("Starting test run...")
    try:
        final = await run_complete_test(run_id, ctx)
    except (RunNotFoundError, InvalidTransitionError) as exc:
        print_error(str(exc))
        return 1
    except RunFatalError as exc:
        print_error(str(exc))
        with closing(ctx.connect()) as conn:
            failed = get_test_run(conn, run_id)
        if failed is not None:
            print_report(failed)
        return 1

    questions = None
    if args.show_questions:
        with closing(ctx.connect()) as conn:
            questions = get_test_questions(conn, run_id)
    print_report(final, questions)
    return 0


def main() -> None:
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
