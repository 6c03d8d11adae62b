import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import jwt
from fastapi import Header, HTTPException

from . import config

logger = logging.getLogger(__name__)


def create_access_token(user: Dict[str, Any], expires_days: int = 7) -> str:
    payload = {
        "sub": str(user["id"]),
        "username": user.get("username"),
        "exp": datetime.utcnow() + timedelta(days=expires_days),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    except jwt.PyJWTError as e:
        logger.debug("[decode_access_token] rejected token: %s", e)
        return None


def require_user(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    """FastAPI dependency: the decoded bearer token, or 401."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Unauthorized")
    token = authorization.split(" ", 1)[1] if authorization.lower().startswith("bearer ") else authorization
    data = decode_access_token(token.strip())
    if not data:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return data
