"""
POST /api/analyze, POST /api/fix
================================
Entry points of the report pipeline.

Request:
    {code: str (1..MAX_CODE_CHARS), language?: str | "auto", modePreference?: fast|balanced|accurate}
    Missing or "auto" language → pattern-based detection before the pipeline.
    Invalid payloads are rejected with 400 before any model call.

Responses:
    /api/analyze → {report, model}
    /api/fix     → {fixedCode, explanation, report, model}   (legacy shape)
    Provider failure → 502 {"detail": {"error": "AI provider error", "details": <message[:500]>}}

Every successful run is recorded through the HistoryStore; recording never
fails the request.
"""
import logging
from typing import Literal, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import field_validator

from app.agents.report_agent import ReportAgent, ReportResult
from app.core import config
from app.core.config import ENABLE_STATIC_ANALYSIS
from app.core.constants import AUTO_LANGUAGE, PROVIDER_ERROR_LIMIT, SUPPORTED_LANGUAGES
from app.core.output_formatter import format_explanation
from app.llm.errors import MissingAPIKeyError, ProviderError
from app.models.analysis_request import AnalysisRequest
from app.models.history_entry import HistoryEntry
from app.models.report import CamelModel, CanonicalReport
from app.services.history_store import HistoryStore, build_history_store
from app.services.static_analysis import collect_static_findings
from app.utils.language_detector import detect_language

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Analysis"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------
class AnalyzeRequest(CamelModel):
    code: str
    language: Optional[str] = None
    mode_preference: Optional[Literal["fast", "balanced", "accurate"]] = None

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        if not v:
            raise ValueError("Code is required")
        if len(v) > config.MAX_CODE_CHARS:
            raise ValueError(f"Code too large (max {config.MAX_CODE_CHARS} characters)")
        return v

    @field_validator("language")
    @classmethod
    def validate_language(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        tag = v.strip().lower()
        if tag in ("", AUTO_LANGUAGE):
            return None
        if tag not in SUPPORTED_LANGUAGES:
            raise ValueError(f"Unsupported language: {v}")
        return tag

    def to_analysis_request(self) -> AnalysisRequest:
        language = self.language
        if language is None:
            language = detect_language(self.code)
            logger.info("[API] Auto-detected language: %s", language)
        return AnalysisRequest(
            code=self.code, language=language, mode_preference=self.mode_preference
        )


class AnalyzeResponse(CamelModel):
    report: CanonicalReport
    model: str


class FixResponse(CamelModel):
    fixed_code: str
    explanation: str
    report: CanonicalReport
    model: str


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def get_history_store(request: Request) -> HistoryStore:
    """The store built at startup; built lazily if the lifespan did not run."""
    store = getattr(request.app.state, "history_store", None)
    if store is None:
        store = build_history_store()
        store.file_backend.load()
        request.app.state.history_store = store
    return store


# ---------------------------------------------------------------------------
# Pipeline runner
# ---------------------------------------------------------------------------
async def _run_analysis(
    payload: AnalyzeRequest, store: HistoryStore
) -> Tuple[ReportResult, HistoryEntry]:
    analysis_request = payload.to_analysis_request()

    static_findings = []
    if ENABLE_STATIC_ANALYSIS:
        static_findings = await collect_static_findings(
            analysis_request.code, analysis_request.language
        )

    agent = ReportAgent()
    try:
        result = await agent.generate(analysis_request, static_findings)
    except ProviderError as e:
        details = (e.message or "Unknown error")[:PROVIDER_ERROR_LIMIT]
        logger.error("AI provider error: %s %s", e.status, details)
        raise HTTPException(
            status_code=502,
            detail={"error": "AI provider error", "details": details},
        )
    except MissingAPIKeyError as e:
        logger.error("Error: %s", e)
        raise HTTPException(status_code=500, detail={"error": "Failed to process", "details": str(e)})
    finally:
        await agent.close()

    entry = HistoryEntry(
        original_code=analysis_request.code,
        language=analysis_request.language,
        fixed_code=result.report.corrected_code,
        explanation=format_explanation(result.report),
        report=result.report,
        model=result.model,
    )
    await store.record(entry)
    return result, entry


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze(payload: AnalyzeRequest, store: HistoryStore = Depends(get_history_store)):
    """Structured defect/fix report for a snippet."""
    result, _ = await _run_analysis(payload, store)
    return AnalyzeResponse(report=result.report, model=result.model)


@router.post("/fix", response_model=FixResponse)
async def fix(payload: AnalyzeRequest, store: HistoryStore = Depends(get_history_store)):
    """Legacy endpoint: report plus flattened fixedCode/explanation."""
    result, entry = await _run_analysis(payload, store)
    return FixResponse(
        fixed_code=entry.fixed_code,
        explanation=entry.explanation,
        report=result.report,
        model=result.model,
    )
