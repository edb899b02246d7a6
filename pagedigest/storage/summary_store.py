"""
Summary storage abstraction.

A store takes a finished summary and returns an opaque location string.
Implementations: LocalSummaryStore (markdown files on disk).
"""

from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

from pagedigest.config import StorageSettings
from pagedigest.errors import StorageError

logger = logging.getLogger(__name__)

SLUG_MAX_LENGTH = 50


def slugify(title: str) -> str:
    """Lowercase, collapse runs of non ``[a-z0-9]`` characters to ``-``, cap at 50."""
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower())[:SLUG_MAX_LENGTH]
    return slug or "summary"


def render_markdown(title: str, source_url: str, summary: str) -> str:
    return f"# {title}\n\n> Source: {source_url}\n\n{summary}\n"


class SummaryStore(ABC):
    """Abstract base class for summary stores."""

    @abstractmethod
    def save(self, title: str, source_url: str, summary: str) -> str:
        """
        Persist a summary.

        Args:
            title: Page title
            source_url: URL the summary was made from
            summary: Summary text

        Returns:
            Location identifier of the stored summary

        Raises:
            StorageError: the summary could not be written
        """
        pass


class LocalSummaryStore(SummaryStore):
    """Writes each summary as ``{slug}-{epoch_ms}.md`` under ``root``."""

    def __init__(self, root: Path, *, clock: Optional[Callable[[], float]] = None):
        self.root = Path(root)
        self._clock = clock or time.time

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> "LocalSummaryStore":
        return cls(settings.summaries_dir)

    def _path_for(self, title: str) -> Path:
        stamp = int(self._clock() * 1000)
        base = f"{slugify(title)}-{stamp}"
        path = self.root / f"{base}.md"
        suffix = 1
        while path.exists():
            path = self.root / f"{base}-{suffix}.md"
            suffix += 1
        return path

    def save(self, title: str, source_url: str, summary: str) -> str:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            path = self._path_for(title)
            path.write_text(render_markdown(title, source_url, summary), encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Could not write summary for {source_url}: {exc}") from exc

        logger.info(f"Saved summary to {path}", extra={"path": str(path), "url": source_url})
        return str(path)
