"""
History Entry Model
===================
One persisted record of a completed analysis.

Created once by the API layer after a successful pipeline run, handed to the
HistoryStore and never mutated afterwards (frozen model).

Fields:
    original_code   — snippet submitted by the caller
    language        — resolved language tag (after auto-detection)
    fixed_code      — report.corrected_code, duplicated for legacy readers
    explanation     — plain-text rendering of the report (output_formatter)
    report          — the CanonicalReport
    model           — model identifier that actually produced the report
    created_at      — UTC timestamp of creation
"""
from datetime import datetime, timezone

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.report import CamelModel, CanonicalReport


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryEntry(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        protected_namespaces=(),
    )

    original_code: str
    language: str
    fixed_code: str
    explanation: str = ""
    report: CanonicalReport
    model: str
    created_at: datetime = Field(default_factory=_utcnow)

    def to_wire(self) -> dict:
        """JSON-safe dict with camelCase keys (datetimes as ISO strings)."""
        return self.model_dump(mode="json", by_alias=True)
