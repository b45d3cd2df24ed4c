from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID
from jose import JWTError, jwt

from gradebook.config import SECRET_KEY, ALGORITHM

# Tokens are issued by the platform's auth service; this one is for tooling and tests
DEFAULT_TOKEN_LIFETIME = timedelta(minutes=60)


def create_access_token(
    user_id: UUID,
    role: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    expire = datetime.utcnow() + (expires_delta or DEFAULT_TOKEN_LIFETIME)
    to_encode = {
        "user_id": str(user_id),
        "role": role,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


# ---------------------------
# Verify token
# ---------------------------
def verify_token(token: str) -> dict:
    """
    Decode an access token and return its payload.

    Raises:
        JWTError: If the token is invalid, expired or not an access token.
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        raise JWTError("Invalid or expired token") from e

    if payload.get("type") != "access":
        raise JWTError("Invalid token type")
    return payload
