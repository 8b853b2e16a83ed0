"""
Report Agent
============
Runs the report pipeline for one request, strictly in order:

    1. Build the analysis prompt
    2. Invoke the model cascade       → (raw text, model actually used)
    3. Parse the reply; one repair call on failure (same model)
    4. Normalize into a CanonicalReport, static findings first

Failure Policy:
    - Provider errors (cascade exhausted, quota, network) propagate to the
      caller; they are the only failures of this pipeline.
    - Output that stays unparseable after the repair attempt does NOT fail:
      the report degrades to a single other/high "Unparseable model output."
      problem with placeholder corrected code.
    - An empty reply normalizes to the default report without a repair call.

The ReportAgent does NOT:
    - Validate requests or detect languages (API layer)
    - Run static analysis (caller passes the findings in)
    - Persist anything (HistoryStore)
"""
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from app.core.report_normalizer import degraded_report_payload, normalize_report
from app.llm.client import GeminiClient
from app.llm.prompts import build_analysis_prompt
from app.llm.response_parser import ResponseParser
from app.llm.router import candidate_models, preferred_model
from app.models.analysis_request import AnalysisRequest
from app.models.report import CanonicalReport, Problem

logger = logging.getLogger(__name__)


@dataclass
class ReportResult:
    """Pipeline output handed back to the API layer."""
    report: CanonicalReport
    model: str
    repaired: bool = False
    degraded: bool = False


class ReportAgent:
    """
    Generates a CanonicalReport for an AnalysisRequest.

    Parameters
    ----------
    client : GeminiClient or None
        Model client (auto-created if not provided).
    """

    def __init__(self, client: Optional[GeminiClient] = None) -> None:
        self.client = client or GeminiClient()
        self.parser = ResponseParser(self.client)

    async def close(self) -> None:
        await self.client.close()

    async def generate(
        self,
        request: AnalysisRequest,
        static_findings: Optional[Iterable[Problem]] = None,
    ) -> ReportResult:
        """
        Produce the report for one request.

        Raises
        ------
        ProviderError
            When the model cascade fails.
        MissingAPIKeyError
            When no API key is configured.
        """
        prompt = build_analysis_prompt(request)
        candidates = candidate_models(preferred_model(request.mode_preference))

        raw_text, model_used = await self.client.invoke(prompt, candidates)
        logger.info(
            "Model %s answered (%d chars) for %s snippet", model_used, len(raw_text), request.language
        )

        if not raw_text.strip():
            logger.warning("Model %s returned an empty reply", model_used)
            report = normalize_report({}, request.language, static_findings)
            return ReportResult(report=report, model=model_used)

        parsed = await self.parser.parse_or_repair(raw_text, model_used, request.language)
        if parsed.ok:
            report = normalize_report(parsed.value, request.language, static_findings)
            return ReportResult(report=report, model=model_used, repaired=parsed.repaired)

        logger.warning("Returning degraded report for model %s: %s", model_used, parsed.error)
        report = normalize_report(degraded_report_payload(), request.language, static_findings)
        return ReportResult(report=report, model=model_used, degraded=True)
