"""Parsing of critic model output."""
from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError

from pagedigest.models import CritiqueResult

logger = logging.getLogger(__name__)


class CritiqueParser:
    """Parses critic responses into CritiqueResult.

    Models do not always answer with bare JSON, so besides the full text
    the parser tries fenced blocks and the first balanced JSON object.
    """

    def parse(self, raw: str, *, label: str = "Critique") -> CritiqueResult:
        """Parse raw critic output.

        Raises:
            ValueError: no JSON object in ``raw`` satisfies CritiqueResult
        """
        logger.debug("Model output received", extra={"label": label, "output": raw})
        text = (raw or "").strip()
        if not text:
            raise ValueError(f"{label}: empty model output")
        try:
            return CritiqueResult.model_validate_json(text)
        except ValidationError:
            logger.warning(
                "Model output failed schema validation; attempting extraction",
                extra={"label": label},
            )

        parsed = self._extract_from_text(text)
        if parsed is None:
            raise ValueError(f"{label}: no valid critique JSON in model output")
        return parsed

    def _try(self, candidate: str) -> Optional[CritiqueResult]:
        try:
            return CritiqueResult.model_validate_json(candidate.strip())
        except ValidationError:
            return None

    def _extract_from_text(self, text: str) -> Optional[CritiqueResult]:
        """Extract a JSON object from messy output.

        Heuristics:
        - Strip code fences like ```json ... ```
        - Scan for the first balanced JSON object that validates
        """
        if "```" in text:
            parts = text.split("```")
            for i in range(1, len(parts), 2):  # odd indices are inside fences
                block = parts[i]
                if "{" not in block or "}" not in block:
                    continue
                if "\n" in block:
                    _, rest = block.split("\n", 1)
                    if "{" in rest:
                        block = rest
                parsed = self._try(block)
                if parsed is not None:
                    return parsed

        n = len(text)
        i = 0
        while i < n:
            if text[i] != "{":
                i += 1
                continue
            depth = 0
            in_str = False
            esc = False
            j = i
            while j < n:
                ch = text[j]
                if in_str:
                    if esc:
                        esc = False
                    elif ch == "\\":
                        esc = True
                    elif ch == '"':
                        in_str = False
                elif ch == '"':
                    in_str = True
                elif ch == "{":
                    depth += 1
                elif ch == "}":
                    depth -= 1
                    if depth == 0:
                        parsed = self._try(text[i : j + 1])
                        if parsed is not None:
                            return parsed
                        break
                j += 1
            # Resume after the candidate; an unclosed object ends the scan
            i = j + 1

        return None
