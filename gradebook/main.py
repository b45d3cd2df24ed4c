from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from gradebook import config
from gradebook.helpers.cache import GradingCache
from gradebook.helpers.keyed_lock import KeyedLock
from gradebook.services.ai_client import ChatCompletionClient

from gradebook.routes.users.student.quiz_submission import router as student_quiz_submission_router
from gradebook.routes.users.student.series_submission import router as student_series_submission_router
from gradebook.routes.users.teacher.series_grading import router as teacher_series_grading_router
from gradebook.routes.admin.submission_status import router as admin_submission_status_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_ai_client() -> ChatCompletionClient:
    return ChatCompletionClient(
        base_url=config.AI_BASE_URL,
        api_key=config.AI_API_KEY,
        model=config.AI_MODEL,
        timeout=config.AI_TIMEOUT_SECONDS,
        max_retries=config.AI_MAX_RETRIES,
        retry_base_delay=config.AI_RETRY_BASE_DELAY,
        retry_backoff=config.AI_RETRY_BACKOFF,
        retry_max_delay=config.AI_RETRY_MAX_DELAY,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.grading_cache = GradingCache(
        maxsize=config.GRADING_CACHE_MAX_ITEMS,
        ttl=config.GRADING_CACHE_TTL_SECONDS,
    )
    app.state.grading_locks = KeyedLock()
    if not config.AI_API_KEY:
        logger.warning("AI_API_KEY is not set; AI grading requests will be rejected")

    async with build_ai_client() as client:
        app.state.ai_client = client
        logger.info("Gradebook started (AI model %s)", config.AI_MODEL)
        yield


app = FastAPI(
    title="Gradebook",
    lifespan=lifespan,
)


@app.get("/")
def root():
    return {
        "message": "Gradebook is Running!"
    }


app.include_router(student_quiz_submission_router)
app.include_router(student_series_submission_router)

app.include_router(teacher_series_grading_router)

app.include_router(admin_submission_status_router)
