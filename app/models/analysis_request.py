"""
Analysis Request Model
======================
Immutable input of the report pipeline.

By the time an AnalysisRequest exists, the API layer has already validated
the payload and resolved the language (auto-detection included), so the
pipeline never sees "auto" or an unsupported tag.
"""
from typing import Optional

from pydantic import ConfigDict
from pydantic.alias_generators import to_camel

from app.models.report import CamelModel


class AnalysisRequest(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    code: str
    language: str
    mode_preference: Optional[str] = None
