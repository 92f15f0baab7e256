"""Session revocation.

A session is the server-side half of a refresh credential. Access tokens
carry the session id in their ``sid`` claim, so revoking the session stops
both the refresh token and every access token minted from it.
"""

from datetime import timedelta
from typing import Optional, Tuple
import structlog
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from realty_access.config import settings
from realty_access.database.models import (
    Membership,
    MembershipStatus,
    Session as UserSession,
    utcnow,
)
from realty_access.monitoring.metrics import SESSIONS_REVOKED
from realty_access.security.tokens import generate_token, hash_token

logger = structlog.get_logger()


class SessionService:
    """Service for issuing and revoking sessions"""

    @staticmethod
    def create_session(
        db: Session,
        user_id: str,
        expires_delta: Optional[timedelta] = None,
    ) -> Tuple[UserSession, str]:
        """
        Open a session for a user.

        Returns:
            Tuple of (session, raw session id). Only the hash is persisted.
        """
        raw_sid = generate_token()
        session = UserSession(
            user_id=user_id,
            token_hash=hash_token(raw_sid),
            expires_at=utcnow() + (expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)),
        )
        db.add(session)
        db.flush()
        return session, raw_sid

    @staticmethod
    def get_active_session(db: Session, raw_sid: str, user_id: Optional[str] = None) -> Optional[UserSession]:
        """Session for a raw id, or None if unknown, revoked, expired or owned by someone else"""
        query = db.query(UserSession).filter(UserSession.token_hash == hash_token(raw_sid))
        if user_id is not None:
            query = query.filter(UserSession.user_id == user_id)
        session = query.first()
        if not session or session.revoked:
            return None
        if session.expires_at <= utcnow():
            return None
        return session

    @staticmethod
    def revoke_session(db: Session, raw_sid: str) -> bool:
        """Revoke a single session (logout). Returns False if already revoked or unknown."""
        session = db.query(UserSession).filter(
            UserSession.token_hash == hash_token(raw_sid)
        ).first()
        if not session or session.revoked:
            return False
        session.revoked = True
        session.revoked_at = utcnow()
        db.flush()
        SESSIONS_REVOKED.labels(trigger="logout").inc()
        return True

    @staticmethod
    def revoke_all_for_user(db: Session, user_id: str) -> int:
        """
        Mark every live session of a user revoked.

        Idempotent: a second call finds nothing left to revoke and returns 0.
        Does not commit; the caller's transaction decides.
        """
        result = db.execute(
            update(UserSession)
            .where(UserSession.user_id == user_id, UserSession.revoked.is_(False))
            .values(revoked=True, revoked_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        count = result.rowcount or 0
        if count:
            SESSIONS_REVOKED.labels(trigger="user").inc(count)
        logger.info("Sessions revoked for user", user_id=user_id, count=count)
        return count

    @staticmethod
    def revoke_all_for_tenant(db: Session, tenant_id: str) -> int:
        """
        Revoke sessions of every user with an ACTIVE membership in a tenant.

        Users whose membership is pending or disabled are left alone.
        """
        active_members = select(Membership.user_id).where(
            Membership.tenant_id == tenant_id,
            Membership.status == MembershipStatus.ACTIVE.value,
        )
        result = db.execute(
            update(UserSession)
            .where(UserSession.user_id.in_(active_members), UserSession.revoked.is_(False))
            .values(revoked=True, revoked_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        count = result.rowcount or 0
        if count:
            SESSIONS_REVOKED.labels(trigger="tenant").inc(count)
        logger.info("Sessions revoked for tenant", tenant_id=tenant_id, count=count)
        return count
