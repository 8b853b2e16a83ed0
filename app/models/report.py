"""
Canonical Report Model
======================
Pydantic models for the normalized defect/fix report.
This is the contract between the report pipeline and every downstream consumer
(API responses, history persistence, legacy explanation text).

Wire names are camelCase (approxLine, correctedCode, ...); Python attributes
are snake_case. Instances are built by app.core.report_normalizer, which
guarantees:
    problems / fixes     — always lists, possibly empty
    corrected_code       — never empty
    quality_score        — one of A..F
    confidence_scores    — may be sparse; problem_index points into problems
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialising to camelCase field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Problem(CamelModel):
    type: str = "other"
    severity: str = "medium"
    message: str = ""
    approx_line: Optional[int] = None
    snippet: Optional[str] = None


class Fix(CamelModel):
    message: str = ""
    reason: str = ""


class ConfidenceScore(CamelModel):
    problem_index: int
    score: int = Field(ge=0, le=100)


class CanonicalReport(CamelModel):
    analysis: str = ""
    problems: List[Problem] = Field(default_factory=list)
    fixes: List[Fix] = Field(default_factory=list)
    corrected_code: str
    optimized_code: Optional[str] = None
    quality_score: str = "C"
    confidence_scores: List[ConfidenceScore] = Field(default_factory=list)

    def to_wire(self) -> dict:
        """Plain dict with camelCase keys, as sent to clients and stored."""
        return self.model_dump(by_alias=True)
