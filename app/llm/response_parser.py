"""
Response Parser
===============
Tolerant decoder of model replies into a JSON object, with one bounded repair.

Parse Order (first success wins):
    1. Strip markdown code fences, parse the rest as relaxed JSON (JSON5:
       trailing commas, single quotes, comments are accepted)
    2. Extract the first balanced {...} span from the raw text, parse that
    3. Give up → ParseResult(ok=False)

Only a JSON object counts as success; arrays or scalars are failures.

Repair Protocol:
    On failure, ask the SAME model (no cascade) exactly once to re-emit valid
    JSON using the repair prompt. If the repaired reply parses, use it.
    If it does not, or the repair call itself errors, stop there and return
    the failure. Never more than one repair round-trip per reply.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import json5

from app.llm.client import GeminiClient
from app.llm.errors import MissingAPIKeyError, ProviderError
from app.llm.prompts import build_repair_prompt

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Parse result
# ---------------------------------------------------------------------------
@dataclass
class ParseResult:
    """Outcome of decoding a model reply."""
    ok: bool
    value: dict[str, Any] = field(default_factory=dict)
    raw_text: str = ""
    error: str = ""
    repaired: bool = False
    repair_attempted: bool = False


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def strip_code_fences(text: str) -> str:
    """Remove a leading ```lang fence and a trailing ``` fence, if present."""
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.find("\n")
        cleaned = cleaned[first_newline + 1:] if first_newline != -1 else cleaned[3:]
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    return cleaned.strip()


def extract_first_object_span(text: str) -> Optional[str]:
    """
    Return the first balanced {...} span in text, or None.

    Braces inside single- or double-quoted strings are ignored.
    """
    start: Optional[int] = None
    depth = 0
    quote: Optional[str] = None
    escaped = False

    for i, ch in enumerate(text or ""):
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue

        if ch in ("'", '"'):
            if start is not None:
                quote = ch
            continue

        if ch == "{":
            if start is None:
                start = i
            depth += 1
        elif ch == "}" and start is not None:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def _relaxed_load(text: str) -> dict[str, Any]:
    value = json5.loads(text)
    if not isinstance(value, dict):
        raise ValueError(f"expected a JSON object, got {type(value).__name__}")
    return value


def tolerant_parse(raw_text: str) -> ParseResult:
    """
    Decode a model reply without calling the model.

    Parameters
    ----------
    raw_text : str
        Reply text as returned by the provider.

    Returns
    -------
    ParseResult
        ok=True with the decoded object, or ok=False with the last error.
    """
    if not raw_text or not raw_text.strip():
        return ParseResult(ok=False, raw_text=raw_text or "", error="Empty response")

    cleaned = strip_code_fences(raw_text)
    try:
        return ParseResult(ok=True, value=_relaxed_load(cleaned), raw_text=raw_text)
    except ValueError as e:
        error = str(e)

    span = extract_first_object_span(raw_text)
    if span is not None:
        try:
            return ParseResult(ok=True, value=_relaxed_load(span), raw_text=raw_text)
        except ValueError as e:
            error = str(e)

    return ParseResult(ok=False, raw_text=raw_text, error=f"Invalid JSON: {error}")


# ---------------------------------------------------------------------------
# Parser with repair
# ---------------------------------------------------------------------------
class ResponseParser:
    """
    Decodes model replies, spending at most one repair call per reply.

    Usage:
        parser = ResponseParser(client)
        result = await parser.parse_or_repair(raw, model="gemini-2.0-flash", language="python")
    """

    def __init__(self, client: GeminiClient) -> None:
        self.client = client

    async def parse_or_repair(self, raw_text: str, model: str, language: str) -> ParseResult:
        """
        Parse raw_text; on failure run the single repair round-trip.

        Parameters
        ----------
        raw_text : str
            First reply from the model.
        model : str
            Model that produced the reply; the repair call goes to the same one.
        language : str
            Language of the analysed code (used in the repair prompt).
        """
        first = tolerant_parse(raw_text)
        if first.ok:
            return first

        logger.warning("Model %s returned unparseable output (%s); attempting one repair", model, first.error)
        repair_prompt = build_repair_prompt(raw_text, language)
        try:
            repaired_text = await self.client.generate(repair_prompt, model)
        except (ProviderError, MissingAPIKeyError) as e:
            logger.warning("Repair call to %s failed: %s", model, e)
            return ParseResult(
                ok=False,
                raw_text=raw_text,
                error=f"Repair call failed: {e}",
                repair_attempted=True,
            )

        second = tolerant_parse(repaired_text)
        if second.ok:
            logger.info("Repair call to %s produced valid JSON", model)
            second.repaired = True
            second.repair_attempted = True
            return second

        logger.warning("Repaired output from %s still unparseable: %s", model, second.error)
        return ParseResult(
            ok=False,
            raw_text=raw_text,
            error=second.error,
            repair_attempted=True,
        )
