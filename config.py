# config.py
# All configuration and environment variables live here.
# No hardcoded URLs, keys or vocabularies anywhere else.

import os

# ── Backend API ───────────────────────────────────────────────────────────────
BACKEND_BASE_URL: str = os.getenv("BACKEND_BASE_URL", "http://localhost:5226/api")
BACKEND_TIMEOUT_SECONDS: float = float(os.getenv("BACKEND_TIMEOUT_SECONDS", "30"))
WRITE_TIMEOUT_SECONDS: float = float(os.getenv("WRITE_TIMEOUT_SECONDS", "30"))

FRONTEND_RESOURCE: str = "/FrontEnd"
NOT_FOUND_MARKERS: tuple[str, str] = ("Activity with IncidentNumber", "not found")

# ── Local Persistence ─────────────────────────────────────────────────────────
STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "file")   # memory | file | redis
STORAGE_DIR: str = os.getenv("STORAGE_DIR", ".desk_state")
REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")
REDIS_KEY_PREFIX: str = "ticketdesk:"

ENTRY_STORAGE_KEY: str = "ticketData"
DASHBOARD_FILTERS_KEY: str = "dashboardFilters"

REVIEW_STORAGE_KEYS: dict[str, str] = {
    "records": "secondPage_activities",
    "step": "secondPage_currentStep",
    "aux": "secondPage_aiResults",
}
DATED_REVIEW_STORAGE_KEYS: dict[str, str] = {
    "records": "thirdPage_activities",
    "step": "thirdPage_currentStep",
    "aux": "thirdPage_aiResults",
    "scope": "thirdPage_dateScope",
}

# ── Records ───────────────────────────────────────────────────────────────────
TEMP_ID_PREFIX: str = "temp-"
NO_DUPLICATE_SENTINEL: str = "NO_DUPLICATE"
DEFAULT_TEAM: str = "ML Operation"

PRIORITIES: tuple[str, ...] = ("P1", "P2", "P3", "P4")
ASSIGNED_GROUP_OPTIONS: tuple[str, ...] = (
    "ML Operation", "SageMaker", "Data Engineering", "Platform Team", "Infrastructure",
)
TEAM_FIXED_OPTIONS: tuple[str, ...] = ASSIGNED_GROUP_OPTIONS + ("Network Team",)
TEAM_INCLUDED_OPTIONS: tuple[str, ...] = ASSIGNED_GROUP_OPTIONS + ("Security Team",)
SERVICE_OWNERS: tuple[str, ...] = ("Mark", "Steve", "Sarah", "Mike", "Jennifer")

# ── Dashboard ─────────────────────────────────────────────────────────────────
DASHBOARD_DEFAULT_OWNER: str = os.getenv("DASHBOARD_DEFAULT_OWNER", "Mark")
DASHBOARD_FIRST_YEAR: int = 2024

# ── API ───────────────────────────────────────────────────────────────────────
API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
