from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from jose import JWTError
import uuid

from gradebook.database import get_db
from gradebook.models import User, UserRole
from gradebook.auth.jwt import verify_token
from gradebook.helpers.cache import GradingCache
from gradebook.helpers.keyed_lock import KeyedLock
from gradebook.services.ai_client import ChatCompletionClient


bearer_scheme = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the bearer token to an active User.
    Raises 401 if the token is invalid or the user is unknown or inactive.
    """
    try:
        payload = verify_token(credentials.credentials)
        user_id = uuid.UUID(payload.get("user_id") or "")
    except (JWTError, ValueError):  # ValueError for a malformed user_id
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = await db.get(User, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def _require_role(role: UserRole, detail: str):
    async def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role != role:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
        return current_user

    return dependency


is_admin = _require_role(UserRole.ADMIN, "Only admins can access this resource")
is_teacher = _require_role(UserRole.INSTRUCTOR, "Only teachers can access this resource")
is_student = _require_role(UserRole.STUDENT, "Only students can access this resource")


# ---------------------------
# Shared grading state (created in main.lifespan)
# ---------------------------
def get_ai_client(request: Request) -> ChatCompletionClient:
    return request.app.state.ai_client


def get_grading_cache(request: Request) -> GradingCache:
    return request.app.state.grading_cache


def get_grading_locks(request: Request) -> KeyedLock:
    return request.app.state.grading_locks
