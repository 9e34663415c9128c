"""
casedesk Notification Inbox

Per-recipient mailbox of notices. Clients poll it; there is no push.

Every read/mutate operation is scoped to one recipient: a notification
that belongs to somebody else is indistinguishable from one that does
not exist.
"""

from typing import Optional
from uuid import UUID

from ..errors import NotFoundError
from ..models.case import Page
from ..models.notification import Notice, Notification, NotificationType


class NotificationInbox:

    def __init__(self, notification_repo):
        self.notifications = notification_repo

    async def append(self, recipient_id: UUID, notice: Notice) -> Notification:
        """
        Deliver a notice to one recipient.

        Only the dispatcher calls this; recipients cannot create entries.
        """
        notification = Notification.for_recipient(recipient_id, notice)
        return await self.notifications.add(notification)

    async def list_for(
        self,
        recipient_id: UUID,
        only_unread: bool = False,
        page: int = 1,
        limit: int = 10,
        is_read: Optional[bool] = None,
        type: Optional[NotificationType] = None
    ) -> Page:
        """
        Newest first.

        `only_unread` is the all/unread switch; `is_read` filters either way
        and wins when both are given. `type` narrows to one notification type.
        """
        page = max(page, 1)
        limit = max(limit, 1)
        if is_read is None and only_unread:
            is_read = False

        items, total = await self.notifications.list_for(
            recipient_id,
            is_read=is_read,
            offset=(page - 1) * limit,
            limit=limit,
            type=type
        )
        return Page(items=items, page=page, limit=limit, total=total)

    async def unread_count(self, recipient_id: UUID) -> int:
        return await self.notifications.count_for(recipient_id, is_read=False)

    async def mark_read(self, recipient_id: UUID, notification_id: UUID) -> Notification:
        notification = await self._get_owned(recipient_id, notification_id)
        if notification.is_read:
            return notification
        notification.is_read = True
        return await self.notifications.save(notification)

    async def mark_all_read(self, recipient_id: UUID) -> int:
        """Returns how many notices changed."""
        return await self.notifications.mark_all_read(recipient_id)

    async def delete(self, recipient_id: UUID, notification_id: UUID) -> None:
        await self._get_owned(recipient_id, notification_id)
        await self.notifications.delete(notification_id)

    async def exists_marker(self, recipient_id: UUID, case_id: UUID, marker: str) -> bool:
        """Whether the recipient already holds a notice for the case whose title has `marker`."""
        existing = await self.notifications.find_first(recipient_id, case_id, marker)
        return existing is not None

    async def _get_owned(self, recipient_id: UUID, notification_id: UUID) -> Notification:
        notification = await self.notifications.get(notification_id)
        if notification is None or notification.recipient_id != recipient_id:
            raise NotFoundError("Notification not found")
        return notification
