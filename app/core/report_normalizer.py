"""
Report Normalizer
=================
Turns whatever the model returned into one CanonicalReport.

TOTALITY CONTRACT:
  - Never raises. Absent, mistyped or garbage fields get a safe default.
  - problems / fixes / confidence_scores are always lists.
  - corrected_code is never empty (placeholder names the target language).

IDEMPOTENCE CONTRACT:
  normalize_report(normalize_report(x).to_wire(), ...) == normalize_report(x, ...)
  Canonical field names are the first entry of each alias list, and every
  canonical value survives a second pass unchanged.

Alias Resolution:
  The report schema drifted across model/prompt versions. FIELD_ALIASES lists,
  per canonical field, the accepted source keys in priority order. The first
  key whose value has the expected type wins; mistyped values are skipped.

Static Findings:
  Findings produced outside the model (compilers, linters) are prepended, so
  they always come before model-derived problems.
"""
import logging
import math
import re
from typing import Any, Iterable, Optional

from app.core.constants import (
    DEFAULT_PROBLEM_TYPE,
    DEFAULT_QUALITY_SCORE,
    DEFAULT_SEVERITY,
    PROBLEM_TYPES,
    QUALITY_GRADES,
    SEVERITIES,
)
from app.models.report import CanonicalReport, ConfidenceScore, Fix, Problem

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Alias table: canonical field → source keys, highest priority first
# ---------------------------------------------------------------------------
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "analysis":          ("analysis", "summary", "overview"),
    "problems":          ("detectedProblems", "problems", "issues"),
    "fixes":             ("fixes", "suggestedFixes", "suggestions"),
    "correctedCode":     ("correctedCode", "corrected_code", "corrected", "fixedCode"),
    "optimizedCode":     ("optimizedCode", "optimized_code", "optimized"),
    "qualityScore":      ("qualityScore", "quality_score", "grade"),
    "confidenceScores":  ("confidenceScores", "confidence_scores", "confidence"),
}

PROBLEM_ALIASES: dict[str, tuple[str, ...]] = {
    "type":        ("type", "category", "kind"),
    "severity":    ("severity", "level"),
    "message":     ("message", "description", "issue"),
    "approxLine":  ("approxLine", "approx_line", "line", "lineNumber"),
    "snippet":     ("snippet", "code"),
}

FIX_ALIASES: dict[str, tuple[str, ...]] = {
    "message":  ("message", "fix", "description"),
    "reason":   ("reason", "why", "explanation"),
}

CONFIDENCE_ALIASES: dict[str, tuple[str, ...]] = {
    "problemIndex":  ("problemIndex", "problem_index", "index"),
    "score":         ("score", "confidence", "value"),
}


def placeholder_code(language: str) -> str:
    """Stand-in corrected code when the model returned none."""
    return f"/* Model did not return correctedCode for {language or 'unknown'} */"


# ---------------------------------------------------------------------------
# Primitive coercions
# ---------------------------------------------------------------------------
def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _lookup(source: Any, aliases: Iterable[str], accept: type | tuple) -> Any:
    """First value under any alias whose type matches accept, else None."""
    if not isinstance(source, dict):
        return None
    for key in aliases:
        value = source.get(key)
        if value is not None and isinstance(value, accept) and not isinstance(value, bool):
            return value
    return None


def _lookup_any(source: Any, aliases: Iterable[str]) -> Any:
    if not isinstance(source, dict):
        return None
    for key in aliases:
        if source.get(key) is not None:
            return source[key]
    return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _as_vocabulary(value: Any, allowed: tuple[str, ...], default: str) -> str:
    if not isinstance(value, str):
        return default
    token = value.strip().lower().replace(" ", "_").replace("-", "_")
    return token if token in allowed else default


# ---------------------------------------------------------------------------
# Per-item normalizers
# ---------------------------------------------------------------------------
def normalize_problem(item: Any) -> Optional[Problem]:
    """Coerce one problem entry. Returns None for empty/falsy entries."""
    if isinstance(item, Problem):
        item = item.model_dump(by_alias=True)
    if not item:
        return None
    if isinstance(item, str):
        return Problem(type=DEFAULT_PROBLEM_TYPE, severity=DEFAULT_SEVERITY, message=item)
    if not isinstance(item, dict):
        return Problem(message=_as_text(item))

    line = _lookup_any(item, PROBLEM_ALIASES["approxLine"])
    snippet = _lookup_any(item, PROBLEM_ALIASES["snippet"])
    return Problem(
        type=_as_vocabulary(_lookup_any(item, PROBLEM_ALIASES["type"]), PROBLEM_TYPES, DEFAULT_PROBLEM_TYPE),
        severity=_as_vocabulary(_lookup_any(item, PROBLEM_ALIASES["severity"]), SEVERITIES, DEFAULT_SEVERITY),
        message=_as_text(_lookup_any(item, PROBLEM_ALIASES["message"])),
        approx_line=int(line) if _is_number(line) else None,
        snippet=snippet if isinstance(snippet, str) else None,
    )


def normalize_fix(item: Any) -> Optional[Fix]:
    """Coerce one fix entry. Returns None for empty/falsy entries."""
    if isinstance(item, Fix):
        item = item.model_dump(by_alias=True)
    if not item:
        return None
    if not isinstance(item, dict):
        return Fix(message=_as_text(item), reason="")
    return Fix(
        message=_as_text(_lookup_any(item, FIX_ALIASES["message"])),
        reason=_as_text(_lookup_any(item, FIX_ALIASES["reason"])),
    )


def normalize_confidence(item: Any) -> Optional[ConfidenceScore]:
    """Coerce one confidence entry; entries without a usable index/score are dropped."""
    if not isinstance(item, dict):
        return None
    index = _lookup_any(item, CONFIDENCE_ALIASES["problemIndex"])
    score = _lookup_any(item, CONFIDENCE_ALIASES["score"])
    if not _is_number(index) or not _is_number(score) or index < 0:
        return None
    return ConfidenceScore(
        problem_index=int(index),
        score=max(0, min(100, int(round(score)))),
    )


# A grade letter, optionally with a +/- modifier ("B+", "c-")
_GRADE_RE = re.compile(r"^([A-Za-z])[+-]?$")


def _normalize_quality(value: Any) -> str:
    if isinstance(value, str):
        match = _GRADE_RE.match(value.strip())
        if match and match.group(1).upper() in QUALITY_GRADES:
            return match.group(1).upper()
    return DEFAULT_QUALITY_SCORE


def _normalize_list(values: Any, normalizer) -> list:
    if not isinstance(values, list):
        return []
    out = []
    for item in values:
        normalized = normalizer(item)
        if normalized is not None:
            out.append(normalized)
    return out


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------
def normalize_report(
    raw: Any,
    language: str,
    static_findings: Optional[Iterable[Any]] = None,
) -> CanonicalReport:
    """
    Reconcile a decoded model reply into a CanonicalReport.

    Parameters
    ----------
    raw : Any
        Decoded reply (normally a dict). Anything else yields a default report.
    language : str
        Target language, used only for the corrected-code placeholder.
    static_findings : iterable, optional
        Externally produced problems; placed before model problems.

    Returns
    -------
    CanonicalReport
        Always a valid report. Never raises.
    """
    if isinstance(raw, CanonicalReport):
        raw = raw.to_wire()
    if not isinstance(raw, dict):
        if raw not in (None, ""):
            logger.debug("Normalizing non-object model output of type %s", type(raw).__name__)
        raw = {}

    problems = _normalize_list(_lookup(raw, FIELD_ALIASES["problems"], list), normalize_problem)
    if static_findings:
        problems = _normalize_list(list(static_findings), normalize_problem) + problems

    corrected = _lookup(raw, FIELD_ALIASES["correctedCode"], str)
    if not corrected or not corrected.strip():
        corrected = placeholder_code(language)

    optimized = _lookup_any(raw, FIELD_ALIASES["optimizedCode"])
    if optimized is not None:
        optimized = _as_text(optimized) or None

    return CanonicalReport(
        analysis=_lookup(raw, FIELD_ALIASES["analysis"], str) or "",
        problems=problems,
        fixes=_normalize_list(_lookup(raw, FIELD_ALIASES["fixes"], list), normalize_fix),
        corrected_code=corrected,
        optimized_code=optimized,
        quality_score=_normalize_quality(_lookup_any(raw, FIELD_ALIASES["qualityScore"])),
        confidence_scores=_normalize_list(
            _lookup(raw, FIELD_ALIASES["confidenceScores"], list), normalize_confidence
        ),
    )


def degraded_report_payload() -> dict[str, Any]:
    """Raw payload used when the reply stays unparseable after repair."""
    return {
        "analysis": "Model returned non-JSON output. Try again or reduce code length.",
        "detectedProblems": [
            {"type": "other", "severity": "high", "message": "Unparseable model output."}
        ],
        "fixes": [],
        "correctedCode": "",
        "optimizedCode": None,
    }
