"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    GEMINI_API_KEY           — Credential for the Google Gemini REST API
    GEMINI_MODEL             — Preferred model when no mode is requested (default: gemini-1.5-flash)
    GEMINI_BASE_URL          — Gemini REST base URL
    MODEL_TIMEOUT_SECONDS    — HTTP timeout for a single model call (default: 60)
    HISTORY_FILE             — Path of the file-backed history store (default: data/history.json)
    DATABASE_URL             — SQLAlchemy URL for the database history backend (optional)
    DISABLE_DB / DB_DISABLED — Force the file-backed store ("1" or "true")
    MAX_CODE_CHARS           — Max accepted snippet length (default: 20000)
    MAX_HISTORY_ITEMS        — Retention bound for the file-backed store (default: 50)
    HISTORY_READ_LIMIT       — Default number of entries returned by /api/history (default: 10)
    ENABLE_STATIC_ANALYSIS   — Run local compiler/linter checks before the model (default: false)
    STATIC_ANALYSIS_TIMEOUT  — Seconds allowed per static-analysis subprocess (default: 5)

Model Selection:
    A request may carry a modePreference (fast / balanced / accurate) which
    picks the preferred model from MODE_MODELS. Without one, GEMINI_MODEL is
    preferred. Either way the fixed FALLBACK_MODELS list follows it.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
GEMINI_BASE_URL = os.getenv(
    "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
)
MODEL_TIMEOUT_SECONDS = float(os.getenv("MODEL_TIMEOUT_SECONDS", 60))

# Fallback order after the preferred model
FALLBACK_MODELS: list[str] = [
    "gemini-1.5-flash",
    "gemini-1.5-pro",
    "gemini-2.0-flash",
    "gemini-2.0-flash-lite",
]

# modePreference → preferred model
MODE_MODELS: dict[str, str] = {
    "fast":     os.getenv("GEMINI_MODEL_FAST",     "gemini-2.0-flash-lite"),
    "balanced": os.getenv("GEMINI_MODEL_BALANCED", "gemini-2.0-flash"),
    "accurate": os.getenv("GEMINI_MODEL_ACCURATE", "gemini-1.5-pro"),
}

# History persistence
HISTORY_FILE = os.getenv(
    "HISTORY_FILE", os.path.join(os.getcwd(), "data", "history.json")
)
DATABASE_URL = os.getenv("DATABASE_URL")
DB_DISABLED = _env_flag("DISABLE_DB") or _env_flag("DB_DISABLED")
MAX_HISTORY_ITEMS = int(os.getenv("MAX_HISTORY_ITEMS", 50))
HISTORY_READ_LIMIT = int(os.getenv("HISTORY_READ_LIMIT", 10))

# Request bounds
MAX_CODE_CHARS = int(os.getenv("MAX_CODE_CHARS", 20000))

# Static analysis
ENABLE_STATIC_ANALYSIS = _env_flag("ENABLE_STATIC_ANALYSIS", default=False)
STATIC_ANALYSIS_TIMEOUT = float(os.getenv("STATIC_ANALYSIS_TIMEOUT", 5))
