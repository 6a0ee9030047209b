"""Notification sink contract.

Delivery (push/email) is owned by another service; the escrow engine only
records that something happened for a user. Calls are fire-and-forget.
"""

from typing import Protocol


class NotificationSink(Protocol):
    async def notify(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        related_id: str | None = None,
    ) -> None: ...
