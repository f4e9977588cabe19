"""Service for the per-platform connection store."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from crosspost.db.models import SocialConnection
from crosspost.types import AccountIdentity, Platform


def _insert_for(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise NotImplementedError(f"Connection upsert is not supported on {dialect}")


class ConnectionService:
    """Keyed store of platform -> connection with upsert semantics."""

    @staticmethod
    def get_active(session: Session, platform: Platform) -> Optional[SocialConnection]:
        """Return the active connection for a platform, if any."""
        stmt = select(SocialConnection).where(
            SocialConnection.platform == platform.value,
            SocialConnection.is_active.is_(True),
        )
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def get(session: Session, platform: Platform) -> Optional[SocialConnection]:
        stmt = select(SocialConnection).where(SocialConnection.platform == platform.value)
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def list_connections(session: Session) -> List[SocialConnection]:
        stmt = select(SocialConnection).order_by(SocialConnection.platform)
        return list(session.execute(stmt).scalars().all())

    @staticmethod
    def upsert(
        session: Session,
        *,
        platform: Platform,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        identity: Optional[AccountIdentity] = None,
        profile_image_url: Optional[str] = None,
    ) -> SocialConnection:
        """Create or overwrite the connection for a platform in one statement.

        A reconnect replaces every credential field and reactivates the row.
        """
        insert = _insert_for(session)
        values = {
            "platform": platform.value,
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_at": expires_at,
            "is_active": True,
            "identity": identity or AccountIdentity(),
            "profile_image_url": profile_image_url,
        }
        stmt = insert(SocialConnection).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[SocialConnection.platform],
            set_={
                "access_token": stmt.excluded.access_token,
                "refresh_token": stmt.excluded.refresh_token,
                "expires_at": stmt.excluded.expires_at,
                "is_active": True,
                "identity": stmt.excluded.identity,
                "profile_image_url": stmt.excluded.profile_image_url,
                "updated_at": func.now(),
            },
        )
        session.execute(stmt)
        session.commit()
        logger.info(f"[CONNECTIONS] Stored {platform.value} connection")

        connection = ConnectionService.get(session, platform)
        session.refresh(connection)
        return connection

    @staticmethod
    def update_tokens(
        session: Session,
        platform: Platform,
        *,
        access_token: str,
        expires_at: Optional[datetime],
        refresh_token: Optional[str] = None,
    ) -> None:
        """Persist a refreshed token pair with a single UPDATE (last write wins).

        The refresh token column is only overwritten when the platform issued a
        new one.
        """
        values = {
            "access_token": access_token,
            "expires_at": expires_at,
            "updated_at": func.now(),
        }
        if refresh_token:
            values["refresh_token"] = refresh_token

        stmt = (
            update(SocialConnection)
            .where(SocialConnection.platform == platform.value)
            .values(**values)
        )
        session.execute(stmt)
        session.commit()

    @staticmethod
    def deactivate(session: Session, platform: Platform) -> bool:
        """Mark a platform's connection inactive. Returns False when none exists."""
        stmt = (
            update(SocialConnection)
            .where(SocialConnection.platform == platform.value)
            .values(is_active=False, updated_at=func.now())
        )
        result = session.execute(stmt)
        session.commit()
        if result.rowcount:
            logger.info(f"[CONNECTIONS] Disconnected {platform.value}")
        return bool(result.rowcount)
