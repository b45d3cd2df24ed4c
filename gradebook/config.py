import os
from dotenv import load_dotenv

# ---------------------------
# Load environment variables
# ---------------------------
load_dotenv()


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ---------------------------
# Database
# ---------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./gradebook.db")
SQL_ECHO = _get_bool("SQL_ECHO", False)

# ---------------------------
# Auth (tokens are issued by the auth service)
# ---------------------------
SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

# ---------------------------
# AI grading endpoint
# ---------------------------
AI_BASE_URL = os.getenv("AI_BASE_URL", "https://aihubmix.com/v1")
AI_API_KEY = os.getenv("AI_API_KEY", "")
AI_MODEL = os.getenv("AI_MODEL", "gpt-4.1-mini")
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", 60))
AI_TEMPERATURE = float(os.getenv("AI_TEMPERATURE", 0.3))
AI_MAX_TOKENS = int(os.getenv("AI_MAX_TOKENS", 2000))

# Retries after the first attempt
AI_MAX_RETRIES = int(os.getenv("AI_MAX_RETRIES", 3))
AI_RETRY_BASE_DELAY = float(os.getenv("AI_RETRY_BASE_DELAY", 1.0))
AI_RETRY_BACKOFF = float(os.getenv("AI_RETRY_BACKOFF", 1.5))
AI_RETRY_MAX_DELAY = float(os.getenv("AI_RETRY_MAX_DELAY", 10.0))

# ---------------------------
# Grading cache / batch grading
# ---------------------------
GRADING_CACHE_TTL_SECONDS = int(os.getenv("GRADING_CACHE_TTL_SECONDS", 5 * 60))
GRADING_CACHE_MAX_ITEMS = int(os.getenv("GRADING_CACHE_MAX_ITEMS", 1024))
BATCH_GRADING_DELAY_SECONDS = float(os.getenv("BATCH_GRADING_DELAY_SECONDS", 2.0))
BATCH_GRADING_LIMIT = int(os.getenv("BATCH_GRADING_LIMIT", 100))

# ---------------------------
# Logging
# ---------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
