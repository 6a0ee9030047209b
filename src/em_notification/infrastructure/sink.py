"""Notification sinks: persisted rows for the in-app inbox, or log-only."""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

_INSERT_NOTIFICATION_SQL = text("""
    INSERT INTO notifications (user_id, type, title, message, related_id)
    VALUES (:user_id, :type, :title, :message, :related_id)
""")


class DatabaseNotificationSink:
    """Writes each notification in its own short session.

    Never shares the caller's session: the row must not ride on (or poison)
    the escrow unit of work that triggered it.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def notify(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        related_id: str | None = None,
    ) -> None:
        async with self._session_factory() as session:
            await session.execute(
                _INSERT_NOTIFICATION_SQL,
                {
                    "user_id": user_id,
                    "type": type,
                    "title": title,
                    "message": message,
                    "related_id": related_id,
                },
            )
            await session.commit()
        logger.info("Notification %s queued for user %s (related=%s)", type, user_id, related_id)


class LoggingNotificationSink:
    async def notify(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        related_id: str | None = None,
    ) -> None:
        logger.info("[NOTIFICATION] %s -> user %s: %s (related=%s)", type, user_id, title, related_id)
