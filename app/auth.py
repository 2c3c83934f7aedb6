import datetime as dt
from typing import Any

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from .database import get_db
from .errors import ConfigurationError, InvalidTokenError, TokenExpiredError
from .models import User
from .users import UserDirectory


# Missing credentials are reported as 401 by get_current_user, not 403.
bearer_scheme = HTTPBearer(auto_error=False)

TOKEN_TYPE = "auth"


class SessionIssuer:
    """Mints and checks HS256 session tokens bound to a user id."""

    algorithm = "HS256"

    def __init__(self, secret: str, *, issuer: str = "cleancare-pro", expires_delta: dt.timedelta = dt.timedelta(days=30)):
        if not (secret or "").strip():
            raise ConfigurationError("JWT_SECRET environment variable is required")
        self._secret = secret
        self.issuer = issuer
        self.expires_delta = expires_delta

    @property
    def expires_in(self) -> int:
        return int(self.expires_delta.total_seconds())

    def issue(self, user_id: str, phone: str | None = None, *, now: dt.datetime | None = None) -> str:
        now = now or dt.datetime.now(dt.timezone.utc)
        payload = {
            "sub": str(user_id),
            "type": TOKEN_TYPE,
            "iat": int(now.timestamp()),
            "exp": int((now + self.expires_delta).timestamp()),
            "iss": self.issuer,
        }
        if phone:
            payload["phone"] = phone
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> dict[str, Any]:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError()
        except jwt.InvalidTokenError:
            raise InvalidTokenError()
        if payload.get("type") != TOKEN_TYPE:
            raise InvalidTokenError("Invalid token type")
        return payload


def get_session_issuer(request: Request) -> SessionIssuer:
    return request.app.state.session_issuer


def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    issuer: SessionIssuer = Depends(get_session_issuer),
    db: Session = Depends(get_db),
) -> User:
    if creds is None or not creds.credentials:
        raise InvalidTokenError("No token provided")
    payload = issuer.verify(creds.credentials)
    user = UserDirectory(db).get(payload["sub"])
    if user is None:
        raise InvalidTokenError("User not found")
    return user
