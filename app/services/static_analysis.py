"""
Static Analysis Service
=======================
Deterministic, optional pre-checks of a snippet with local tools.

NO LLM ALLOWED HERE. Findings come from compilers/linters only and are
prepended to the model's problems by the report normalizer.

Per-language checks:
    python      — in-process ast.parse (syntax) + pyflakes subprocess
    javascript  — node --check
    cpp         — g++ -fsyntax-only
    go          — gofmt -e

RESILIENCE CONTRACT:
  - Every subprocess is bounded by `timeout` seconds; on expiry it is killed
    and the check yields no findings.
  - A missing tool, a crash or unparseable output yields no findings.
  - Nothing in this module raises to the caller.

HOST-FILE CONTRACT:
  - C++ inclusion directives other than plain `<header>` names are blanked
    before compiling (sanitize_includes).
  - Only diagnostics located in the snippet file itself become findings, so
    the contents of any other file never reach a report.

OUTPUT CONTRACT:
  collect_static_findings(code, language) -> List[Problem]
  Sorted by approx_line, deduplicated on (line, message).
"""
import ast
import asyncio
import logging
import os
import re
import sys
import tempfile
from typing import List, Optional

from app.core.config import STATIC_ANALYSIS_TIMEOUT
from app.models.report import Problem

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pyflakes message-pattern → problem type mapping
# ---------------------------------------------------------------------------
PYFLAKES_PATTERNS: list[tuple[re.Pattern, str, str]] = [
    (re.compile(r"undefined name"),                          "logic",        "high"),
    (re.compile(r"imported but unused"),                     "bad_practice", "low"),
    (re.compile(r"local variable .+ is assigned to but never used"),
                                                             "bad_practice", "low"),
    (re.compile(r"redefinition of unused"),                  "bad_practice", "low"),
    (re.compile(r"f-string is missing placeholders"),        "bad_practice", "low"),
    (re.compile(r"syntax|invalid", re.IGNORECASE),           "syntax",       "high"),
]

# Typical lines:
#   snippet.py:10:1: 'os' imported but unused         (pyflakes)
#   /tmp/x/snippet.cpp:3:12: error: expected ';'      (g++)
#   snippet.go:4:2: expected '}', found 'EOF'         (gofmt)
_LOCATED_LINE_RE = re.compile(r"^(.+?):(\d+):(?:\d+:)?[ \t]*(.+)$", re.MULTILINE)

# node --check prints "<file>:<line>" then the offending source, then "SyntaxError: ..."
_NODE_LOCATION_RE = re.compile(r"^.+?:(\d+)\s*$", re.MULTILINE)
_NODE_ERROR_RE = re.compile(r"^SyntaxError:\s*(.+)$", re.MULTILINE)


# ===================================================================
# Subprocess runner
# ===================================================================
async def run_tool(args: List[str], timeout: float, cwd: Optional[str] = None) -> Optional[str]:
    """
    Run a tool and return its combined stdout+stderr.

    Returns None when the tool is missing, crashes, or exceeds the timeout
    (in which case the process is killed).
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
        )
    except (FileNotFoundError, PermissionError):
        logger.debug("%s not installed – skipping", args[0])
        return None
    except OSError as exc:
        logger.warning("%s could not start: %s", args[0], exc)
        return None

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        logger.warning("%s timed out after %.1fs – no findings", args[0], timeout)
        return None

    return (stdout.decode("utf-8", errors="replace") + stderr.decode("utf-8", errors="replace")).strip()


# ===================================================================
# Python
# ===================================================================
def run_ast_check(code: str) -> List[Problem]:
    """Syntax check via ast.parse; at most one finding."""
    try:
        ast.parse(code)
    except SyntaxError as exc:
        return [Problem(
            type="syntax",
            severity="high",
            message=f"SyntaxError: {exc.msg or 'invalid syntax'}",
            approx_line=max(exc.lineno or 1, 1),
            snippet=(exc.text or "").rstrip() or None,
        )]
    except (ValueError, RecursionError) as exc:
        logger.debug("ast: could not parse snippet: %s", exc)
    return []


def parse_pyflakes_output(output: str) -> List[Problem]:
    """Map pyflakes lines onto problems; unknown messages are skipped."""
    problems: list[Problem] = []
    for match in _LOCATED_LINE_RE.finditer(output or ""):
        line_str, msg = match.group(2), match.group(3).strip()
        for pattern, problem_type, severity in PYFLAKES_PATTERNS:
            if pattern.search(msg):
                problems.append(Problem(
                    type=problem_type,
                    severity=severity,
                    message=f"pyflakes: {msg}",
                    approx_line=max(int(line_str), 1),
                ))
                break
        else:
            logger.debug("pyflakes: unmapped message '%s' – skipping", msg)
    return problems


async def check_python(code: str, workdir: str, timeout: float) -> List[Problem]:
    syntax = run_ast_check(code)
    if syntax:
        # pyflakes would only repeat the syntax error
        return syntax
    path = _write_snippet(workdir, "snippet.py", code)
    output = await run_tool([sys.executable, "-m", "pyflakes", path], timeout, cwd=workdir)
    if output is None or "No module named pyflakes" in output:
        return []
    return parse_pyflakes_output(output)


# ===================================================================
# Compiled / other languages
# ===================================================================
# Preprocessor inclusion directives; "%:" is the digraph spelling of "#"
_INCLUDE_DIRECTIVE_RE = re.compile(
    r"^\s*(?:#|%:)(?:\s|/\*.*?\*/)*(?:include|include_next|import|embed)\b(.*)$",
    re.DOTALL,
)
_SAFE_HEADER_RE = re.compile(r"^\s*<[A-Za-z0-9_+\-]+(?:/[A-Za-z0-9_+\-.]+)*(?:\.[A-Za-z0-9]+)?>\s*(?://.*)?$")


def sanitize_includes(code: str) -> str:
    """
    Blank out inclusion directives that could pull files off the host.

    Only `<name>` / `<dir/name.h>` system headers are kept; quoted,
    absolute, parent-relative and macro-computed targets are removed.
    Line numbering is preserved, backslash continuations included.
    """
    lines = code.split("\n")
    out: list[str] = []
    i = 0
    while i < len(lines):
        group = [lines[i]]
        while group[-1].endswith("\\") and i + 1 < len(lines):
            i += 1
            group.append(lines[i])
        i += 1
        logical = "".join(part[:-1] for part in group[:-1]) + group[-1]
        directive = _INCLUDE_DIRECTIVE_RE.match(logical)
        if directive and (".." in directive.group(1) or not _SAFE_HEADER_RE.match(directive.group(1))):
            logger.info("Static analysis: dropped include directive on line %d", len(out) + 1)
            out.extend("" for _ in group)
        else:
            out.extend(group)
    return "\n".join(out)


def parse_compiler_output(output: str, tool: str, source_path: Optional[str] = None) -> List[Problem]:
    """
    Map `file:line[:col]: error: msg` lines onto syntax problems.

    When source_path is given, diagnostics located in any other file
    (included headers, "In file included from" context) are dropped.
    """
    problems: list[Problem] = []
    for match in _LOCATED_LINE_RE.finditer(output or ""):
        location, line_str, msg = match.group(1), match.group(2), match.group(3).strip()
        if source_path is not None and location != source_path:
            continue
        if msg.startswith(("warning:", "note:")):
            continue
        for prefix in ("fatal error:", "error:"):
            if msg.startswith(prefix):
                msg = msg[len(prefix):].strip()
                break
        problems.append(Problem(
            type="syntax",
            severity="high",
            message=f"{tool}: {msg}",
            approx_line=max(int(line_str), 1),
        ))
    return problems


def parse_node_output(output: str) -> List[Problem]:
    error = _NODE_ERROR_RE.search(output or "")
    if not error:
        return []
    location = _NODE_LOCATION_RE.search(output)
    return [Problem(
        type="syntax",
        severity="high",
        message=f"node: SyntaxError: {error.group(1).strip()}",
        approx_line=int(location.group(1)) if location else None,
    )]


async def check_javascript(code: str, workdir: str, timeout: float) -> List[Problem]:
    path = _write_snippet(workdir, "snippet.js", code)
    output = await run_tool(["node", "--check", path], timeout, cwd=workdir)
    return parse_node_output(output) if output else []


async def check_cpp(code: str, workdir: str, timeout: float) -> List[Problem]:
    path = _write_snippet(workdir, "snippet.cpp", sanitize_includes(code))
    output = await run_tool(["g++", "-fsyntax-only", "-x", "c++", path], timeout, cwd=workdir)
    return parse_compiler_output(output, "g++", source_path=path) if output else []


async def check_go(code: str, workdir: str, timeout: float) -> List[Problem]:
    path = _write_snippet(workdir, "snippet.go", code)
    output = await run_tool(["gofmt", "-e", "-l", path], timeout, cwd=workdir)
    return parse_compiler_output(output, "gofmt", source_path=path) if output else []


_CHECKS = {
    "python": check_python,
    "javascript": check_javascript,
    "cpp": check_cpp,
    "go": check_go,
}


# ===================================================================
# Helpers
# ===================================================================
def _write_snippet(workdir: str, filename: str, code: str) -> str:
    path = os.path.join(workdir, filename)
    with open(path, "w", encoding="utf-8") as f:
        f.write(code)
    return path


def deduplicate(problems: List[Problem]) -> List[Problem]:
    """First occurrence of each (approx_line, message) wins."""
    seen: set[tuple[Optional[int], str]] = set()
    unique: list[Problem] = []
    for p in problems:
        key = (p.approx_line, p.message)
        if key not in seen:
            seen.add(key)
            unique.append(p)
    return unique


# ===================================================================
# Public Entry Point
# ===================================================================
async def collect_static_findings(
    code: str,
    language: str,
    timeout: Optional[float] = None,
) -> List[Problem]:
    """
    Run the local checks available for `language`.

    Returns
    -------
    List[Problem]
        Deterministic, sorted, deduplicated findings; empty when no tool
        applies, is installed, or finishes within the timeout.
    """
    check = _CHECKS.get(language)
    if check is None:
        return []

    limit = timeout if timeout is not None else STATIC_ANALYSIS_TIMEOUT
    try:
        with tempfile.TemporaryDirectory(prefix="codefix-") as workdir:
            findings = await check(code, workdir, limit)
    except Exception as exc:
        logger.warning("Static analysis for %s failed: %s", language, exc)
        return []

    unique = deduplicate(findings)
    unique.sort(key=lambda p: p.approx_line or 0)
    if unique:
        logger.info("Static analysis (%s): %d finding(s)", language, len(unique))
    return unique
