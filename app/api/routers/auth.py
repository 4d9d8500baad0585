from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status
from sqlmodel import Session

from app.domain.models import DevLoginRequest, TokenResponse
from app.infra.auth import create_access_token
from app.infra.db import get_engine
from app.infra.identity import LocalIdentityProvider

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/dev-login", response_model=TokenResponse)
def dev_login(payload: DevLoginRequest) -> TokenResponse:
    with Session(get_engine()) as session:
        user = LocalIdentityProvider().verify(session, payload.email, payload.password)
    if user is None:
        logger.info("rejected dev login for %s", payload.email)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    token = create_access_token(user_id=user.id, email=user.email, role=str(user.role))
    return TokenResponse(access_token=token, user_id=user.id)
