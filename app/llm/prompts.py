"""
LLM Prompts
===========
Centralised store for the analysis and repair prompts.

Prompt Design Rules:
    - Analyse ONLY the provided code, never invent missing files
    - Return ONLY JSON: no prose, no markdown, no code fences
    - The JSON shape is stated explicitly in every prompt (REPORT_SCHEMA)

Both builders are pure: same input, same string. No network or disk access.

Repair Prompt:
    Used exactly once per request when the first reply could not be parsed.
    Embeds the invalid reply verbatim (truncated to REPAIR_INPUT_LIMIT chars)
    and restates REPORT_SCHEMA so the model can re-emit valid JSON.
"""
from app.core.constants import REPAIR_INPUT_LIMIT
from app.models.analysis_request import AnalysisRequest


# ---------------------------------------------------------------------------
# Target schema
# ---------------------------------------------------------------------------
REPORT_SCHEMA = (
    "{\n"
    '  "analysis": string,\n'
    '  "detectedProblems": Array<{ type: "syntax"|"logic"|"performance"|"bad_practice"|"security"|"other", '
    'severity: "low"|"medium"|"high", message: string, approxLine?: number, snippet?: string }>,\n'
    '  "fixes": Array<{ message: string, reason: string }>,\n'
    '  "correctedCode": string,\n'
    '  "optimizedCode": string | null,\n'
    '  "qualityScore": "A"|"B"|"C"|"D"|"E"|"F",\n'
    '  "confidenceScores": Array<{ problemIndex: number, score: number (0-100) }>\n'
    "}"
)

FORMAT_RULES = (
    "Return ONLY valid JSON matching the shape below. "
    "No prose, no markdown, no code fences."
)

# Depth hint per modePreference
MODE_HINTS: dict[str, str] = {
    "fast": "Be brief: report only the most important problems.",
    "balanced": "Report every real problem, keep explanations short.",
    "accurate": "Be exhaustive: check every line, explain each fix precisely.",
}


# ---------------------------------------------------------------------------
# Analysis prompt
# ---------------------------------------------------------------------------
def build_analysis_prompt(request: AnalysisRequest) -> str:
    """
    Build the instruction text for a defect/fix report.

    Parameters
    ----------
    request : AnalysisRequest
        Validated request (language already resolved).

    Returns
    -------
    str
        Complete prompt with rules, schema, language and the literal code.
    """
    lines = [
        "You are an advanced Code Debugger and Code Explainer AI.",
        "",
        "Rules:",
        "- Analyze ONLY the provided code. Do not invent missing files or functions.",
        "- Preserve the user's coding style unless it is a bad practice.",
        "- Include comments in corrected code to show what changed.",
        "- Be concise, accurate, and developer-friendly.",
    ]
    hint = MODE_HINTS.get(request.mode_preference or "")
    if hint:
        lines.append(f"- {hint}")
    lines += [
        "",
        FORMAT_RULES,
        REPORT_SCHEMA,
        "",
        f"Language: {request.language}",
        "",
        "Code:",
        request.code,
    ]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Repair prompt
# ---------------------------------------------------------------------------
def build_repair_prompt(invalid_output: str, language: str) -> str:
    """
    Build the one-shot repair instruction for an unparseable reply.

    Parameters
    ----------
    invalid_output : str
        The model's previous reply, embedded verbatim (truncated).
    language : str
        Language of the analysed code.
    """
    snippet = (invalid_output or "")[:REPAIR_INPUT_LIMIT]
    return "\n".join([
        "You are a JSON repair tool.",
        "The text below was meant to be a single JSON object describing a code "
        f"review of {language} code, but it is not valid JSON.",
        "Output ONLY a valid JSON object that preserves the same content as closely as possible.",
        "- Only fix syntax (quotes, commas, escaping, brackets).",
        "- Do not invent findings that are not in the input.",
        "",
        FORMAT_RULES,
        REPORT_SCHEMA,
        "",
        "INPUT (verbatim):",
        snippet,
    ])
