"""Reusable FastAPI dependencies for identity, policy and database access."""
from datetime import date
from typing import Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from .auth import decode_token, identity_from_claims
from .config import get_settings
from .models import RoleEnum
from .schemas import Identity
from .timewindow import BookingPolicy, local_today

settings = get_settings()
oauth_scheme = OAuth2PasswordBearer(tokenUrl=settings.identity_token_url)


def get_current_identity(request: Request, token: str = Depends(oauth_scheme)) -> Identity:
    identity = identity_from_claims(decode_token(token))
    request.state.identity_id = identity.id
    return identity


def allow_roles(*roles: RoleEnum) -> Callable[[Identity], Identity]:
    def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return identity

    return dependency


def get_policy() -> BookingPolicy:
    return BookingPolicy.from_settings()


def get_today(policy: BookingPolicy = Depends(get_policy)) -> date:
    return local_today(policy)
