"""Prompt templates for the summarizer and critic models."""
from __future__ import annotations

DEFAULT_MAX_WORDS = 150


def summarizer_instructions(max_words: int = DEFAULT_MAX_WORDS) -> str:
    return (
        "You are a concise summarizer. Given article content, produce a summary "
        f"in bullet points, under {max_words} words. Lead with the single most "
        "important insight. Avoid filler and marketing language."
    )


def critic_instructions(max_words: int = DEFAULT_MAX_WORDS) -> str:
    return (
        "You are a strict editorial critic. Evaluate the summary for:\n"
        "1. Accuracy: does it reflect the source faithfully?\n"
        f"2. Conciseness: is it under {max_words} words with no filler?\n"
        "3. Clarity: is it easy to scan and understand?\n\n"
        "Respond with JSON only, no prose and no code fences:\n"
        '{"score": <0-10>, "issues": ["..."], "suggestion": "..."}'
    )


def build_summary_prompt(title: str, content: str) -> str:
    return f'Summarize the following article titled "{title}":\n\n{content}'


def build_critique_prompt(title: str, summary: str) -> str:
    return f'Please critique this summary of "{title}":\n\n{summary}'


def build_eval_prompt(*, max_words: int, url: str | None = None, source: str | None = None) -> str:
    """Prompt used by the eval command when it asks the summarizer directly."""
    if url:
        return f"Summarize {url} in bullet points under {max_words} words."
    return (
        f"Summarize the following content in bullet points under {max_words} words:"
        f"\n\n{source or ''}"
    )


def build_conversation_prompt(messages) -> str:
    """Flatten chat messages into one prompt for providers without chat streaming."""
    lines = [f"{message['role'].capitalize()}: {message['content']}" for message in messages]
    return "\n\n".join(lines)
