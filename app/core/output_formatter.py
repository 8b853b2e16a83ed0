"""
Output Formatter
================
Plain-text rendering of a CanonicalReport for legacy consumers.

The text is stored as HistoryEntry.explanation and returned as `explanation`
by POST /api/fix. Deterministic: same report, same string. Never calls an LLM.

Layout (byte-for-byte):
    Analysis:
    <analysis or "(none)">

    Detected Problems:
    - [<severity>] (<type>) <message> (line ~<n>)
    ...

    Fixes & Explanations:
    - <message>
      - Why: <reason>
"""
from app.models.report import CanonicalReport, Fix, Problem

NONE_MARKER = "(none)"


def format_problem(problem: Problem) -> str:
    line = f"- [{problem.severity}] ({problem.type}) {problem.message}"
    if problem.approx_line:
        line += f" (line ~{problem.approx_line})"
    return line


def format_fix(fix: Fix) -> str:
    return f"- {fix.message}\n  - Why: {fix.reason}"


def format_explanation(report: CanonicalReport) -> str:
    """Render the three-section legacy explanation text."""
    problems = "\n".join(format_problem(p) for p in report.problems)
    fixes = "\n".join(format_fix(f) for f in report.fixes)
    return "\n".join([
        "Analysis:",
        report.analysis or NONE_MARKER,
        "",
        "Detected Problems:",
        problems or NONE_MARKER,
        "",
        "Fixes & Explanations:",
        fixes or NONE_MARKER,
    ])
