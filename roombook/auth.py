"""JWT handling for identities issued by the external identity provider."""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, status
from jose import JWTError, jwt

from .config import get_settings
from .schemas import Identity

settings = get_settings()


def create_access_token(identity: Identity, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode: Dict[str, Any] = {
        "sub": str(identity.id),
        "name": identity.name,
        "department": identity.department,
        "role": identity.role.value,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc


def identity_from_claims(payload: Dict[str, Any]) -> Identity:
    subject = payload.get("sub")
    if subject is None or not str(subject).isdigit():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing subject in token")
    return Identity(
        id=int(subject),
        name=payload.get("name") or "",
        department=payload.get("department"),
        role=payload.get("role") or "USER",
    )
