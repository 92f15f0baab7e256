"""Authentication service: login, refresh and logout"""

from typing import Any, Dict
import structlog
from sqlalchemy.orm import Session

from realty_access.config import settings
from realty_access.database.models import User
from realty_access.errors import Unauthenticated
from realty_access.security.jwt import create_access_token, create_refresh_token, decode_token
from realty_access.security.password import verify_password
from realty_access.services.session_service import SessionService

logger = structlog.get_logger()


class AuthService:
    """Service for exchanging credentials for tokens"""

    @staticmethod
    def _token_data(user: User, raw_sid: str) -> Dict[str, Any]:
        return {
            "sub": user.id,
            "email": user.email,
            "global_role": user.global_role,
            "sid": raw_sid,
        }

    @staticmethod
    def issue_tokens(db: Session, user: User) -> Dict[str, Any]:
        """
        Open a session and mint an access/refresh pair bound to it.

        Flushes only; the caller commits.
        """
        _, raw_sid = SessionService.create_session(db, user.id)
        token_data = AuthService._token_data(user, raw_sid)
        return {
            "access_token": create_access_token(token_data),
            "refresh_token": create_refresh_token(token_data),
            "token_type": "bearer",
            "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        }

    @staticmethod
    def login(db: Session, email: str, password: str) -> Dict[str, Any]:
        """Authenticate a user by password and return tokens"""
        user = db.query(User).filter(User.email == email.lower().strip()).first()
        if not user or not verify_password(password, user.password_hash):
            raise Unauthenticated("Invalid email or password", reason="invalid_credentials")
        if not user.is_active:
            raise Unauthenticated("User account is not active", reason="user_inactive")

        tokens = AuthService.issue_tokens(db, user)
        db.commit()
        logger.info("User logged in", user_id=user.id)
        return tokens

    @staticmethod
    def refresh(db: Session, refresh_token: str) -> Dict[str, Any]:
        """
        Exchange a refresh token for a new access token.

        A revoked or expired session never yields a token. If the user has
        been deactivated since login, the session is revoked on the spot.
        """
        payload = decode_token(refresh_token)
        if not payload or payload.get("type") != "refresh":
            raise Unauthenticated("Invalid refresh token", reason="invalid_token")

        user_id = payload.get("sub")
        raw_sid = payload.get("sid")
        if not user_id or not raw_sid:
            raise Unauthenticated("Invalid refresh token", reason="invalid_token")

        session = SessionService.get_active_session(db, raw_sid, user_id=user_id)
        if not session:
            raise Unauthenticated("Session has been revoked", reason="session_revoked")

        user = db.query(User).filter(User.id == user_id).first()
        if not user or not user.is_active:
            SessionService.revoke_session(db, raw_sid)
            db.commit()
            raise Unauthenticated("User account is not active", reason="user_inactive")

        return {
            "access_token": create_access_token(AuthService._token_data(user, raw_sid)),
            "token_type": "bearer",
            "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        }

    @staticmethod
    def logout(db: Session, token: str) -> bool:
        """Revoke the session behind an access or refresh token"""
        payload = decode_token(token)
        if not payload or not payload.get("sid"):
            return False
        revoked = SessionService.revoke_session(db, payload["sid"])
        db.commit()
        if revoked:
            logger.info("User logged out", user_id=payload.get("sub"))
        return revoked
