"""
Unit Tests — Static Analysis
============================
Covers the in-process Python syntax check, the tool-output parsers, the
bounded subprocess runner and the public entry point.

Tool-dependent checks (pyflakes, node, g++) are skipped when the tool is
not installed; the parsers are tested against captured output instead.
"""
import asyncio
import shutil
import sys
import time
from unittest.mock import patch

import pytest

from app.models.report import Problem
from app.services.static_analysis import (
    collect_static_findings,
    deduplicate,
    parse_compiler_output,
    parse_node_output,
    parse_pyflakes_output,
    run_ast_check,
    run_tool,
    sanitize_includes,
)


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ===================================================================
# Python syntax check
# ===================================================================
class TestAstCheck:

    def test_valid_code_has_no_findings(self):
        assert run_ast_check("def f(x):\n    return x + 1\n") == []

    def test_syntax_error_is_reported(self):
        problems = run_ast_check("x = 1\ndef f(:\n    pass\n")
        assert len(problems) == 1
        assert problems[0].type == "syntax"
        assert problems[0].severity == "high"
        assert problems[0].approx_line == 2
        assert problems[0].message.startswith("SyntaxError:")


# ===================================================================
# Output parsers
# ===================================================================
class TestPyflakesParser:

    def test_known_messages_are_mapped(self):
        output = (
            "snippet.py:1:1: 'os' imported but unused\n"
            "snippet.py:4:12: undefined name 'y'\n"
        )
        problems = parse_pyflakes_output(output)
        assert [(p.type, p.severity, p.approx_line) for p in problems] == [
            ("bad_practice", "low", 1),
            ("logic", "high", 4),
        ]
        assert problems[0].message == "pyflakes: 'os' imported but unused"

    def test_line_without_column(self):
        problems = parse_pyflakes_output("snippet.py:3: undefined name 'z'")
        assert problems[0].approx_line == 3

    def test_unmapped_message_is_skipped(self):
        assert parse_pyflakes_output("snippet.py:2:1: something new") == []

    def test_empty_output(self):
        assert parse_pyflakes_output("") == []


class TestCompilerParser:

    GXX_OUTPUT = (
        "/tmp/codefix-x/snippet.cpp: In function 'int main()':\n"
        "/tmp/codefix-x/snippet.cpp:3:12: error: expected ';' before '}' token\n"
        "    3 |   return 0\n"
        "      |           ^\n"
        "/tmp/codefix-x/snippet.cpp:5:3: warning: unused variable 'k'\n"
    )

    def test_errors_are_mapped(self):
        problems = parse_compiler_output(self.GXX_OUTPUT, "g++")
        assert len(problems) == 1
        assert problems[0].message == "g++: expected ';' before '}' token"
        assert problems[0].approx_line == 3
        assert problems[0].type == "syntax"

    def test_gofmt_output(self):
        problems = parse_compiler_output("snippet.go:4:2: expected '}', found 'EOF'", "gofmt")
        assert problems[0].message == "gofmt: expected '}', found 'EOF'"
        assert problems[0].approx_line == 4

    INCLUDED_OUTPUT = (
        "In file included from /tmp/codefix-x/snippet.cpp:1:\n"
        "/tmp/codefix-x/secret.env:1:1: error: 'GEMINI_API_KEY' does not name a type\n"
        "    1 | GEMINI_API_KEY = AIzaSyFAKE_SECRET_123;\n"
        "      | ^~~~~~~~~~~~~~\n"
        "/tmp/codefix-x/snippet.cpp:4:5: error: expected ';' before 'return'\n"
        "    4 |     return 0\n"
        "      |     ^~~~~~\n"
    )

    def test_include_header_does_not_swallow_next_line(self):
        problems = parse_compiler_output(self.INCLUDED_OUTPUT, "g++")
        assert [(p.approx_line, p.message) for p in problems] == [
            (1, "g++: 'GEMINI_API_KEY' does not name a type"),
            (4, "g++: expected ';' before 'return'"),
        ]

    def test_only_snippet_diagnostics_are_kept(self):
        problems = parse_compiler_output(
            self.INCLUDED_OUTPUT, "g++", source_path="/tmp/codefix-x/snippet.cpp"
        )
        assert len(problems) == 1
        assert problems[0].approx_line == 4
        assert problems[0].message == "g++: expected ';' before 'return'"
        assert "GEMINI_API_KEY" not in problems[0].message

    def test_fatal_error_prefix_is_stripped(self):
        output = "/tmp/x/snippet.cpp:1:10: fatal error: missing.h: No such file or directory\n"
        problems = parse_compiler_output(output, "g++", source_path="/tmp/x/snippet.cpp")
        assert problems[0].message == "g++: missing.h: No such file or directory"


class TestSanitizeIncludes:

    @pytest.mark.parametrize("line", [
        '#include "/etc/passwd"',
        '#include "local.h"',
        "#include </etc/passwd>",
        "#include <../../../etc/passwd>",
        "#include <sys/../../etc/passwd>",
        "#include SECRET_PATH",
        '  #  include_next "x.h"',
        '#/* hidden */include "/app/.env"',
        '%:include "/app/.env"',
        '#import "/app/.env"',
    ])
    def test_unsafe_directive_is_blanked(self, line):
        code = f"int a;\n{line}\nint main() {{ return 0; }}"
        assert sanitize_includes(code) == "int a;\n\nint main() { return 0; }"

    @pytest.mark.parametrize("line", [
        "#include <iostream>",
        "#include <bits/stdc++.h>",
        "#include <sys/types.h>",
        "  #include <vector> // containers",
    ])
    def test_system_header_is_kept(self, line):
        code = f"{line}\nint main() {{ return 0; }}"
        assert sanitize_includes(code) == code

    def test_continuation_lines_are_blanked_together(self):
        code = '#include \\\n"/app/.env"\nint main() { return 0; }'
        assert sanitize_includes(code) == "\n\nint main() { return 0; }"

    def test_line_count_is_preserved(self):
        code = '#include "a.h"\n#include <map>\n#define P "/etc/hosts"\n#include P\nint x;'
        assert sanitize_includes(code).count("\n") == code.count("\n")

    @pytest.mark.skipif(shutil.which("g++") is None, reason="g++ not installed")
    @pytest.mark.parametrize("template", [
        '#include "{path}"\nint main() {{ return 0 }}\n',
        '#define SECRET "{path}"\n#include SECRET\nint main() {{ return 0 }}\n',
    ])
    def test_host_file_content_never_reported(self, tmp_path, template):
        secret = tmp_path / "secret.env"
        secret.write_text("GEMINI_API_KEY = AIzaSyFAKE_SECRET_123;\n", encoding="utf-8")

        problems = _run(collect_static_findings(template.format(path=secret), "cpp", timeout=30))

        for problem in problems:
            assert "GEMINI_API_KEY" not in problem.message
            assert "AIzaSyFAKE_SECRET_123" not in problem.message
            assert str(tmp_path) not in problem.message


class TestNodeParser:

    def test_syntax_error(self):
        output = (
            "/tmp/codefix-x/snippet.js:2\n"
            "let = ;\n"
            "    ^\n"
            "\n"
            "SyntaxError: Unexpected token '='\n"
        )
        problems = parse_node_output(output)
        assert len(problems) == 1
        assert problems[0].approx_line == 2
        assert problems[0].message == "node: SyntaxError: Unexpected token '='"

    def test_clean_output(self):
        assert parse_node_output("") == []


def test_deduplicate_keeps_first():
    a = Problem(type="syntax", message="same", approx_line=1)
    b = Problem(type="logic", message="same", approx_line=1)
    c = Problem(type="syntax", message="same", approx_line=2)
    assert deduplicate([a, b, c]) == [a, c]


# ===================================================================
# Subprocess runner
# ===================================================================
class TestRunTool:

    def test_captures_output(self):
        output = _run(run_tool([sys.executable, "-c", "print('hello')"], timeout=10))
        assert output == "hello"

    def test_missing_tool_returns_none(self):
        assert _run(run_tool(["codefix-no-such-tool-xyz"], timeout=1)) is None

    def test_timeout_kills_and_returns_none(self):
        started = time.monotonic()
        output = _run(run_tool([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.5))
        assert output is None
        assert time.monotonic() - started < 4


# ===================================================================
# Entry point
# ===================================================================
class TestCollectStaticFindings:

    def test_unsupported_language_has_no_findings(self):
        assert _run(collect_static_findings("fn main() {}", "typescript")) == []
        assert _run(collect_static_findings("class A {}", "java")) == []

    def test_python_syntax_error(self):
        problems = _run(collect_static_findings("def broken(:\n    pass\n", "python"))
        assert len(problems) == 1
        assert problems[0].type == "syntax"

    def test_python_unused_import(self):
        pytest.importorskip("pyflakes")
        problems = _run(collect_static_findings("import os\n\nx = 1\n", "python", timeout=20))
        assert any("imported but unused" in p.message for p in problems)

    @pytest.mark.skipif(shutil.which("g++") is None, reason="g++ not installed")
    def test_cpp_missing_semicolon(self):
        code = "int main() {\n    int i = 0\n    return i;\n}\n"
        problems = _run(collect_static_findings(code, "cpp", timeout=30))
        assert problems
        assert problems[0].message.startswith("g++:")

    @pytest.mark.skipif(shutil.which("node") is None, reason="node not installed")
    def test_javascript_syntax_error(self):
        problems = _run(collect_static_findings("let = ;\n", "javascript", timeout=30))
        assert problems
        assert problems[0].message.startswith("node: SyntaxError")

    def test_findings_are_sorted_and_deduplicated(self):
        async def fake_check(code, workdir, timeout):
            return [
                Problem(type="syntax", message="b", approx_line=9),
                Problem(type="syntax", message="a", approx_line=2),
                Problem(type="syntax", message="b", approx_line=9),
            ]

        with patch.dict("app.services.static_analysis._CHECKS", {"go": fake_check}):
            problems = _run(collect_static_findings("package main", "go"))
        assert [(p.approx_line, p.message) for p in problems] == [(2, "a"), (9, "b")]

    def test_check_failure_yields_no_findings(self):
        async def broken_check(code, workdir, timeout):
            raise RuntimeError("tool crashed")

        with patch.dict("app.services.static_analysis._CHECKS", {"go": broken_check}):
            assert _run(collect_static_findings("package main", "go")) == []
