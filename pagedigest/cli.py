"""
pagedigest command line.

Usage:
    pagedigest run https://example.com/post [--json] [--stream]
    pagedigest eval --url https://example.com/post --json --compact
    pagedigest eval --source-file article.txt --summary-file summary.txt
    pagedigest serve --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional, Sequence, TextIO

from pagedigest.config import AppSettings, get_settings
from pagedigest.errors import PageDigestError
from pagedigest.evals import TARGET_WORDS, EvalReport, evaluate
from pagedigest.fetching import PageFetcher
from pagedigest.logging_config import setup_logging
from pagedigest.pipeline import RunResult, StageCompleted
from pagedigest.summarization import build_summarizer
from pagedigest.workflows import build_runtime


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError("--max-words must be a positive number")
    if parsed <= 0:
        raise argparse.ArgumentTypeError("--max-words must be a positive number")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pagedigest",
        description="Summarize web pages, critique the summaries and keep the good ones",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the summarize workflow for a URL")
    run.add_argument("url", help="Page to summarize")
    run.add_argument("--json", action="store_true", help="Print the run result as JSON")
    run.add_argument("--stream", action="store_true", help="Print one JSON event per line as stages finish")

    ev = sub.add_parser("eval", help="Score a summary against its source")
    ev.add_argument("--url", help="Fetch source content from a URL")
    ev.add_argument("--source", help="Source text to evaluate against")
    ev.add_argument("--source-file", type=Path, help="Load source text from a file")
    ev.add_argument("--summary", help="Summary text to evaluate")
    ev.add_argument("--summary-file", type=Path, help="Load summary text from a file")
    ev.add_argument(
        "--max-words",
        type=_positive_int,
        default=TARGET_WORDS,
        help=f"Word limit for a generated summary (default: {TARGET_WORDS})",
    )
    ev.add_argument("--skip-agent", action="store_true", help="Do not generate a summary with the model")
    ev.add_argument("--json", action="store_true", help="Print JSON result")
    ev.add_argument("--compact", action="store_true", help="Emit compact one-line JSON (use with --json)")

    serve = sub.add_parser("serve", help="Start the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser


def _print_result(result: RunResult, out: TextIO) -> None:
    out.write(f"Run {result.run_id}: {result.status.value}\n")
    if result.failure is not None:
        out.write(f"Failed at {result.failure.name}: {result.failure.message}\n")
        return
    critique = result.outputs.get("critique")
    if critique is not None:
        out.write(f"Score: {critique.score}\n")
        if critique.issues:
            out.write("Issues:\n")
            for issue in critique.issues:
                out.write(f"- {issue}\n")
    decision = result.terminal_output
    if decision is not None:
        if decision.saved:
            out.write(f"Saved to {decision.location}\n")
        else:
            out.write("Not saved (score below threshold)\n")


async def _run_workflow(args: argparse.Namespace, settings: AppSettings, out: TextIO) -> int:
    runtime = build_runtime(settings)
    inputs = {"url": args.url}

    if args.stream:
        final: Optional[RunResult] = None
        async for event in runtime.orchestrator.stream(runtime.pipeline, inputs):
            out.write(json.dumps(event.to_dict(), ensure_ascii=False) + "\n")
            if not isinstance(event, StageCompleted):
                final = event.result
        return 0 if final is not None and final.succeeded else 1

    result = await runtime.orchestrator.run(runtime.pipeline, inputs)
    if args.json:
        out.write(json.dumps(result.to_dict(), ensure_ascii=False, indent=2) + "\n")
    else:
        _print_result(result, out)
    return 0 if result.succeeded else 1


def _print_report(report: EvalReport, out: TextIO) -> None:
    out.write("\n=== Summary Eval Report ===\n")
    out.write(f"Title: {report.title}\n")
    if report.url:
        out.write(f"URL: {report.url}\n")
    out.write("\nSummary:\n\n")
    out.write(f"{report.summary}\n")
    out.write("\nScores:\n\n")
    for result in report.evals:
        out.write(f"- {result.metric}: {result.score} ({result.reason})\n")


async def _run_eval(args: argparse.Namespace, settings: AppSettings, out: TextIO) -> int:
    source = args.source
    if source is None and args.source_file is not None:
        source = args.source_file.read_text(encoding="utf-8")
    summary = args.summary
    if summary is None and args.summary_file is not None:
        summary = args.summary_file.read_text(encoding="utf-8")

    needs_model = not summary and not args.skip_agent
    report = await evaluate(
        url=args.url,
        source=source,
        summary=summary,
        max_words=args.max_words,
        skip_agent=args.skip_agent,
        fetcher=PageFetcher.from_settings(settings.fetch) if args.url else None,
        summarizer=build_summarizer(settings) if needs_model else None,
    )

    if args.json:
        payload = report.to_dict()
        text = json.dumps(payload, ensure_ascii=False) if args.compact else json.dumps(payload, ensure_ascii=False, indent=2)
        out.write(text + "\n")
    else:
        _print_report(report, out)
    return 0


def _serve(args: argparse.Namespace, settings: AppSettings) -> int:
    import uvicorn

    from pagedigest.api import create_app

    uvicorn.run(create_app(settings), host=args.host, port=args.port, log_level=settings.log_level.lower())
    return 0


def main(
    argv: Optional[Sequence[str]] = None,
    *,
    out: Optional[TextIO] = None,
    err: Optional[TextIO] = None,
) -> int:
    out = out or sys.stdout
    err = err or sys.stderr
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    try:
        if args.command == "run":
            return asyncio.run(_run_workflow(args, settings, out))
        if args.command == "eval":
            return asyncio.run(_run_eval(args, settings, out))
        return _serve(args, settings)
    except (PageDigestError, OSError) as exc:
        label = "Summary eval failed" if args.command == "eval" else "pagedigest failed"
        err.write(f"\n{label}:\n{exc}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
