"""
Constants
Centralised storage for report vocabularies, supported languages and size limits.
"""
SUPPORTED_LANGUAGES = ("javascript", "typescript", "python", "java", "cpp", "go")
AUTO_LANGUAGE = "auto"

MODE_PREFERENCES = ("fast", "balanced", "accurate")

PROBLEM_TYPES = ("syntax", "logic", "performance", "bad_practice", "security", "other")
SEVERITIES = ("low", "medium", "high")
QUALITY_GRADES = ("A", "B", "C", "D", "E", "F")

DEFAULT_PROBLEM_TYPE = "other"
DEFAULT_SEVERITY = "medium"
DEFAULT_QUALITY_SCORE = "C"

# Max characters of a previous invalid model reply embedded in a repair prompt
REPAIR_INPUT_LIMIT = 12000

# Max characters of a provider error message returned to API callers
PROVIDER_ERROR_LIMIT = 500
