"""
Language Detector
=================
Guesses the language of a snippet from source patterns.

Used by the API layer when a request omits `language` or sends "auto".
Only the first 50 lines are inspected. Rules are checked in order and the
first match wins; javascript is the fallback.

Supported results:
  cpp, java, python, typescript, go, javascript
"""
import re

DEFAULT_LANGUAGE = "javascript"
_MAX_LINES = 50

# Ordered (pattern, language) rules; the first matching pattern wins
_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r'#include\s+[<"].+[>"]'),                              "cpp"),
    (re.compile(r"\bstd::"),                                            "cpp"),
    (re.compile(r"^\s*package\s+[\w.]+\s*;", re.MULTILINE),            "java"),
    (re.compile(r"\bpublic\s+class\b"),                                 "java"),
    (re.compile(r"^\s*def\s+\w+\(.*\)\s*(->\s*[^:]+)?:", re.MULTILINE), "python"),
    (re.compile(r"^\s*import\s+\w+\s*$", re.MULTILINE),                "python"),
    (re.compile(r"\binterface\s+\w+"),                                  "typescript"),
    (re.compile(r":\s*(string|number|boolean|any|unknown|never)\b"),    "typescript"),
    (re.compile(r"^\s*func\s+\w+\(.*\)\s*.*\{", re.MULTILINE),         "go"),
    (re.compile(r"\bfmt\.(Print|Println|Printf)\b"),                    "go"),
]


def detect_language(code: str) -> str:
    """
    Detect the language of a code snippet.

    Parameters
    ----------
    code : str
        Source snippet.

    Returns
    -------
    str
        One of the supported language tags; javascript when nothing matches.
    """
    head = "\n".join(str(code or "").splitlines()[:_MAX_LINES])
    for pattern, language in _RULES:
        if pattern.search(head):
            return language
    return DEFAULT_LANGUAGE
