"""
LLM Router
==========
Decides which Gemini models to try and when to move on to the next one.

Candidate List:
    1. The preferred model — picked by the request's modePreference, or the
       configured GEMINI_MODEL when no mode is given
    2. FALLBACK_MODELS in fixed priority order, minus the preferred entry

Fallback Trigger (the ONLY condition that advances the cascade):
    - HTTP 404 from the provider, or
    - a provider message matching one of MODEL_UNAVAILABLE_PATTERNS

Every other failure (quota, bad request, 5xx, network fault) is final for
the request and is propagated to the caller unchanged. Keep new fallback
conditions in this module so the set stays auditable.
"""
import logging
import re
from typing import List, Optional

from app.core.config import FALLBACK_MODELS, GEMINI_MODEL, MODE_MODELS
from app.llm.errors import ProviderError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Model-unavailable classification
# ---------------------------------------------------------------------------
MODEL_UNAVAILABLE_STATUSES: frozenset[int] = frozenset({404})

MODEL_UNAVAILABLE_PATTERNS: list[re.Pattern] = [
    re.compile(r"models?/.*not found", re.IGNORECASE),
    re.compile(r"\bmodels?\b.*\bnot found\b", re.IGNORECASE),
    re.compile(r"is not supported for generateContent", re.IGNORECASE),
]


def is_model_unavailable(error: ProviderError) -> bool:
    """
    Return True if the error means "this model id cannot be used".

    Parameters
    ----------
    error : ProviderError
        Failure raised by a single model call.

    Returns
    -------
    bool
        True for 404 statuses and known "model not found / not supported"
        messages; False for every other failure.
    """
    if error.status in MODEL_UNAVAILABLE_STATUSES:
        return True
    message = error.message or ""
    return any(pattern.search(message) for pattern in MODEL_UNAVAILABLE_PATTERNS)


# ---------------------------------------------------------------------------
# Candidate list
# ---------------------------------------------------------------------------
def preferred_model(mode_preference: Optional[str] = None) -> str:
    """Preferred model for a request: mode-selected, else configured."""
    if mode_preference and mode_preference in MODE_MODELS:
        return MODE_MODELS[mode_preference]
    return GEMINI_MODEL


def candidate_models(preferred: str, fallbacks: Optional[List[str]] = None) -> List[str]:
    """
    Build the ordered candidate list: preferred first, then the fallbacks.

    Fallback entries equal to the preferred model (or repeated) are dropped.
    """
    candidates: list[str] = [preferred]
    for model in FALLBACK_MODELS if fallbacks is None else fallbacks:
        if model and model not in candidates:
            candidates.append(model)
    logger.debug("Model candidates: %s", ", ".join(candidates))
    return candidates
