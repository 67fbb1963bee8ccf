"""Configuration constants for the analytics pipeline."""
from __future__ import annotations

import os
from typing import List


def _csv_env(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


# Directory holding one JSON file per completed survey submission
DATA_DIR: str = os.getenv("SURVEY_DATA_DIR", "./shared-results")

# Sub-directory (inside DATA_DIR) holding one JSON file per email-send event
EMAIL_SUBDIR: str = os.getenv("SURVEY_EMAIL_SUBDIR", "email-recipients")

# Maximum distance between a response and an email send to correlate them
CORRELATION_WINDOW_MS: int = int(os.getenv("CORRELATION_WINDOW_MS", "60000"))

# Percentage thresholds for the high / medium / low score buckets
SCORE_THRESHOLD_HIGH: float = float(os.getenv("SCORE_THRESHOLD_HIGH", "80"))
SCORE_THRESHOLD_MEDIUM: float = float(os.getenv("SCORE_THRESHOLD_MEDIUM", "50"))

# Variance breakpoints for the category "correlation" label
VARIANCE_THRESHOLD_HIGH: float = float(os.getenv("VARIANCE_THRESHOLD_HIGH", "100"))
VARIANCE_THRESHOLD_MEDIUM: float = float(os.getenv("VARIANCE_THRESHOLD_MEDIUM", "400"))

# Upper-inclusive edges of the score distribution buckets
DISTRIBUTION_EDGES: List[int] = [20, 40, 60, 80, 100]

# Ceiling for per-category average percentages on the performance chart
CATEGORY_PERFORMANCE_CAP: float = float(os.getenv("CATEGORY_PERFORMANCE_CAP", "100"))

# Response cache lifetime and background sweep interval (seconds)
CACHE_TTL_SECONDS: int = int(os.getenv("ANALYTICS_CACHE_TTL", "300"))
CACHE_SWEEP_INTERVAL_SECONDS: int = int(
    os.getenv("ANALYTICS_CACHE_SWEEP_INTERVAL", "60")
)

# IP prefixes reported as "Local Network" by the placeholder location lookup
LOCAL_NETWORK_PREFIXES: List[str] = _csv_env(
    "LOCAL_NETWORK_PREFIXES", "192.168.,10.,127."
)
LOCAL_NETWORK_LABEL: str = "Local Network"

# Labels handed out for non-local IPs until a real geolocation service exists
PLACEHOLDER_LOCATIONS: List[str] = _csv_env(
    "PLACEHOLDER_LOCATIONS",
    "United States,Canada,United Kingdom,Australia,Germany,France",
)

# Only completed submissions are ever stored, so this is a constant
COMPLETION_RATE: float = float(os.getenv("COMPLETION_RATE", "100"))

UNKNOWN_SURVEY_TITLE: str = "Unknown Survey"

# Shared-result links stop resolving after this many days
SHARED_RESULT_MAX_AGE_DAYS: int = int(os.getenv("SHARED_RESULT_MAX_AGE_DAYS", "7"))

# Row caps for the responses table and the CSV exports
RESPONSES_TABLE_LIMIT: int = int(os.getenv("RESPONSES_TABLE_LIMIT", "50"))
EXPORT_LIMIT: int = int(os.getenv("EXPORT_LIMIT", "1000"))
