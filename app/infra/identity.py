from __future__ import annotations

import hashlib
import hmac
import logging
import os
from typing import Protocol

from sqlmodel import Session, select

from app.domain.models import Account, User

logger = logging.getLogger(__name__)

CREDENTIAL_PROVIDER_ID = "credential"


class IdentityProviderError(Exception):
    pass


class IdentityProvider(Protocol):
    def register(self, session: Session, *, name: str, email: str, password: str) -> User: ...

    def revoke(self, session: Session, user_id: str) -> None: ...

    def verify(self, session: Session, email: str, password: str) -> User | None: ...


class LocalIdentityProvider:
    """Email/password accounts kept next to the user table.

    ``register`` only stages rows on the caller's session; the caller owns the
    commit so the account and the domain attributes land together.
    """

    def _hash_password(self, raw_password: str) -> str:
        salt = os.getenv("PASSWORD_SALT", "org-admin-dev-salt")
        return hashlib.sha256(f"{salt}:{raw_password}".encode()).hexdigest()

    def register(self, session: Session, *, name: str, email: str, password: str) -> User:
        if not password:
            raise IdentityProviderError("password is required to register an account")
        user = User(name=name, email=email)
        session.add(user)
        session.flush()
        session.add(
            Account(
                user_id=user.id,
                provider_id=CREDENTIAL_PROVIDER_ID,
                account_id=user.id,
                password_hash=self._hash_password(password),
            )
        )
        session.flush()
        logger.debug("registered credential account for user %s", user.id)
        return user

    def revoke(self, session: Session, user_id: str) -> None:
        accounts = session.exec(select(Account).where(Account.user_id == user_id)).all()
        for account in accounts:
            session.delete(account)
        session.flush()

    def verify(self, session: Session, email: str, password: str) -> User | None:
        user = session.exec(select(User).where(User.email == email.strip().lower())).first()
        if user is None:
            return None
        account = session.exec(
            select(Account)
            .where(Account.user_id == user.id)
            .where(Account.provider_id == CREDENTIAL_PROVIDER_ID)
        ).first()
        if account is None or account.password_hash is None:
            return None
        if not hmac.compare_digest(account.password_hash, self._hash_password(password)):
            return None
        return user
