import hashlib
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt
from jwt import ExpiredSignatureError, InvalidTokenError
from fastapi import HTTPException, Request

from spliteasy.core.config import settings

# bcrypt only looks at 72 bytes, so long passwords are pre-hashed
def _prehash(password: str) -> bytes:
    return hashlib.sha256(password.encode("utf-8")).digest()

def hash_password(password: str) -> str:
    return bcrypt.hashpw(_prehash(password), bcrypt.gensalt()).decode()

def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(_prehash(password), hashed_password.encode())

def create_access_token(user_id: int, expires_min: int | None = None) -> str:
    expires_min = expires_min or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    to_encode = {
        "sub": str(user_id),
        "exp": datetime.now(timezone.utc) + timedelta(minutes=expires_min),
    }
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGO)

def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGO])
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

def user_id_from_token(token: str) -> int:
    payload = decode_token(token)
    sub = payload.get("sub")

    if sub is None or not str(sub).isdigit():
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    return int(sub)

def get_token_from_request(request: Request) -> str:
    token = request.cookies.get("access_token")
    if not token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1]

    if not token:
        raise HTTPException(401, "Unauthorized access")

    return token.strip()
