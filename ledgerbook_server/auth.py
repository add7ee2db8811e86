# -*- coding: utf-8 -*-
"""
Authentication helpers

Bearer JWT whose subject is the account id that scopes all records.
"""

from datetime import datetime, timedelta
from typing import Optional, Tuple

from jose import JWTError, jwt
from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .config import settings

security = HTTPBearer(auto_error=False)


def create_access_token(
    account_id: str,
    expires_delta: Optional[timedelta] = None
) -> Tuple[str, int]:
    """
    Create an access token.

    Returns:
        (token, expires_in_seconds)
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    expire = datetime.utcnow() + expires_delta
    expires_in = int(expires_delta.total_seconds())

    to_encode = {
        "sub": account_id,
        "exp": expire,
        "type": "access"
    }

    token = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return token, expires_in


def decode_token(token: str) -> Optional[dict]:
    """Decode a token; None if invalid or expired"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


async def get_current_account(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    user_id: Optional[str] = Query(None),
) -> str:
    """
    Account id from the bearer token.

    A ``user_id`` query parameter, when given, must name the same account.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token required"
        )

    payload = decode_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type"
        )

    account_id = payload.get("sub")
    if not account_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no account"
        )

    if user_id is not None and user_id != account_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token does not belong to this account"
        )

    return account_id
