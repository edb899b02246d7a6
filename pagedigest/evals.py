"""
Deterministic summary evals.

Cheap lexical heuristics for checking a summary against its source without
calling a model: length against the word budget, overlap with the source
vocabulary, and a blocked-term count.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import List, Optional

from pagedigest.errors import PageDigestError
from pagedigest.fetching import PageFetcher
from pagedigest.summarization import Summarizer
from pagedigest.summarization.prompt_builder import build_eval_prompt

logger = logging.getLogger(__name__)

TARGET_WORDS = 150
BLOCKED_TERMS = frozenset({"hate", "kill", "idiot", "stupid"})
DEFAULT_TITLE = "Custom Source"


@dataclass(frozen=True)
class SummaryEvalResult:
    metric: str
    score: float
    reason: str

    def to_dict(self) -> dict:
        return asdict(self)


def tokenize(text: str) -> List[str]:
    return re.sub(r"[^a-z0-9\s]", " ", text.lower()).split()


def conciseness(summary_tokens: List[str]) -> SummaryEvalResult:
    count = len(summary_tokens)
    score = 1.0 if count <= TARGET_WORDS else max(0.0, 1 - (count - TARGET_WORDS) / 300)
    return SummaryEvalResult(
        "conciseness",
        round(score, 2),
        f"Summary length is {count} words (target: <= {TARGET_WORDS}).",
    )


def coverage(source_tokens: set[str], summary_tokens: List[str]) -> SummaryEvalResult:
    if summary_tokens:
        overlap = sum(1 for token in summary_tokens if token in source_tokens)
        score = overlap / len(summary_tokens)
    else:
        score = 0.0
    return SummaryEvalResult(
        "coverage", round(score, 2), "Approximate lexical overlap between source and summary."
    )


def toxicity(summary_tokens: List[str]) -> SummaryEvalResult:
    hits = sum(1 for token in summary_tokens if token in BLOCKED_TERMS)
    score = 1.0 if hits == 0 else max(0.0, 1 - hits / 5)
    reason = "No blocked terms detected." if hits == 0 else f"Detected {hits} blocked term(s)."
    return SummaryEvalResult("toxicity", round(score, 2), reason)


def run_evals(source_text: str, summary: str) -> List[SummaryEvalResult]:
    """Score ``summary`` against ``source_text``; results in a fixed metric order."""
    summary_tokens = tokenize(summary)
    source_tokens = set(tokenize(source_text))
    results = [
        conciseness(summary_tokens),
        coverage(source_tokens, summary_tokens),
        toxicity(summary_tokens),
    ]
    for result in results:
        logger.debug(
            f"[{result.metric}] Score: {result.score} ({result.reason})",
            extra={"metric": result.metric, "score": result.score},
        )
    return results


class EvalInputError(PageDigestError):
    """Not enough input to run an eval."""


@dataclass
class EvalReport:
    title: str
    summary: str
    url: Optional[str] = None
    evals: List[SummaryEvalResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "url": self.url,
            "summary": self.summary,
            "evals": [result.to_dict() for result in self.evals],
        }


async def evaluate(
    *,
    url: Optional[str] = None,
    source: Optional[str] = None,
    summary: Optional[str] = None,
    max_words: int = TARGET_WORDS,
    skip_agent: bool = False,
    fetcher: Optional[PageFetcher] = None,
    summarizer: Optional[Summarizer] = None,
) -> EvalReport:
    """Gather source and summary (fetching or generating what is missing) and score them.

    Explicit ``source`` text wins over fetched page content; the fetched page
    still supplies the title.

    Raises:
        EvalInputError: no source text, or no summary and generation is skipped
    """
    title = DEFAULT_TITLE
    source_text = source

    if url:
        if fetcher is None:
            raise EvalInputError("A page fetcher is required to evaluate a URL")
        page = await fetcher.fetch(url)
        source_text = source_text if source_text is not None else page.content
        title = page.title

    if not source_text:
        raise EvalInputError("Provide source text using --url, --source, or --source-file")

    summary_text = summary
    if not summary_text and not skip_agent:
        if summarizer is None:
            raise EvalInputError("A summarizer is required to generate the summary")
        prompt = build_eval_prompt(max_words=max_words, url=url, source=source_text)
        summary_text = await summarizer.summarize(prompt)

    if not summary_text:
        raise EvalInputError(
            "No summary available. Provide --summary/--summary-file or omit --skip-agent."
        )

    return EvalReport(
        title=title,
        url=url,
        summary=summary_text,
        evals=run_evals(source_text, summary_text),
    )
