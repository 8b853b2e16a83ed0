import os

# Tests run against the shipped defaults: no log files, no database, no static analysis
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.pop("DATABASE_URL", None)
os.environ.pop("ENABLE_STATIC_ANALYSIS", None)
