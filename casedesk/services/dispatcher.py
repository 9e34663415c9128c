"""
casedesk Notification Dispatcher

Turns one domain event into inbox entries plus one external chat
message.

Fan-out is a set of independent writes, not a transaction: a recipient
whose write fails is logged and skipped, the rest still get theirs.
`dispatch` never raises.
"""

import logging
from typing import List, Optional
from uuid import UUID

from ..models.case import CaseStatus
from ..models.notification import (
    CaseCreated,
    CaseEvent,
    CaseTransitioned,
    Notice,
    NotificationType,
    StaleCaseDetected,
)
from .channel import (
    ChannelMessage,
    render_case_created,
    render_case_transitioned,
    render_stale_case,
)

logger = logging.getLogger(__name__)


def stale_marker(threshold_hours: int) -> str:
    """Stable substring identifying an escalation notice in its title."""
    return f"quá hạn {threshold_hours}h"


class NotificationDispatcher:
    """
    Resolves recipients per event and writes one inbox entry each.

    Recipients:
    - CaseCreated: every elevated user (ADMIN, IT_LEAD)
    - CaseTransitioned: every elevated user
    - StaleCaseDetected: the handler's login identity, resolved upstream

    After the inbox writes, the event is rendered once and handed to the
    channel worker (never awaited).
    """

    def __init__(
        self,
        inbox,
        user_directory,
        channel_worker=None,
        dashboard_url: str = "",
        stale_threshold_hours: int = 18,
        timezone_name: str = "Asia/Ho_Chi_Minh"
    ):
        self.inbox = inbox
        self.users = user_directory
        self.channel_worker = channel_worker
        self.dashboard_url = dashboard_url
        self.stale_threshold_hours = stale_threshold_hours
        self.timezone_name = timezone_name

    @property
    def marker(self) -> str:
        return stale_marker(self.stale_threshold_hours)

    async def dispatch(self, event: CaseEvent) -> int:
        """Deliver the event. Returns the number of inbox entries written."""
        try:
            recipients = await self._resolve_recipients(event)
            notice = self._build_notice(event)
        except Exception:
            logger.exception(f"Could not prepare {type(event).__name__} for dispatch")
            return 0

        delivered = 0
        for recipient_id in recipients:
            try:
                await self.inbox.append(recipient_id, notice)
                delivered += 1
            except Exception:
                logger.exception(
                    f"Failed to deliver {notice.type.value} for case {notice.case_id} "
                    f"to {recipient_id}"
                )

        # External channel goes last, after every inbox write was attempted.
        # A deduplicated escalation wrote nothing and is not announced either.
        if delivered or not isinstance(event, StaleCaseDetected):
            self._submit_external(event)

        return delivered

    # =========================================================================
    # Private methods
    # =========================================================================

    async def _resolve_recipients(self, event: CaseEvent) -> List[UUID]:
        if isinstance(event, StaleCaseDetected):
            return [event.recipient_id]

        admins = await self.users.list_elevated_users()
        # Deduplicate, keep directory order
        return list(dict.fromkeys(u.id for u in admins))

    def _build_notice(self, event: CaseEvent) -> Notice:
        case = event.case
        kind_label = case.kind.label

        if isinstance(event, CaseCreated):
            return Notice(
                title=f"{kind_label} mới được tạo",
                message=f'{event.requester_name} đã tạo case "{case.title}"',
                type=NotificationType.CASE_CREATED,
                case_id=case.id,
                case_kind=case.kind
            )

        if isinstance(event, CaseTransitioned):
            completed = case.status == CaseStatus.COMPLETED
            return Notice(
                title=(
                    f"{kind_label} đã hoàn thành" if completed
                    else f"{kind_label} cập nhật trạng thái"
                ),
                message=(
                    f'Case "{case.title}": {case.kind.status_label(event.previous_status)}'
                    f" → {case.status_label}"
                ),
                type=NotificationType.CASE_COMPLETED if completed else NotificationType.CASE_UPDATED,
                case_id=case.id,
                case_kind=case.kind
            )

        if isinstance(event, StaleCaseDetected):
            return Notice(
                title=f"{kind_label} {self.marker}",
                message=(
                    f'Case "{case.title}" đã quá {self.stale_threshold_hours} giờ '
                    f"kể từ ngày bắt đầu nhưng chưa hoàn thành"
                ),
                type=NotificationType.LONG_TERM_CASE,
                case_id=case.id,
                case_kind=case.kind
            )

        raise TypeError(f"Unsupported event: {type(event).__name__}")

    def _render_external(self, event: CaseEvent) -> str:
        if isinstance(event, CaseCreated):
            return render_case_created(
                event.case,
                event.requester_name,
                event.handler_name,
                self.dashboard_url,
                self.timezone_name
            )
        if isinstance(event, CaseTransitioned):
            return render_case_transitioned(
                event.case, event.previous_status, self.dashboard_url, self.timezone_name
            )
        return render_stale_case(
            event.case,
            event.handler_name,
            self.stale_threshold_hours,
            self.dashboard_url,
            self.timezone_name
        )

    def _submit_external(self, event: CaseEvent) -> Optional[bool]:
        if self.channel_worker is None:
            return None
        try:
            text = self._render_external(event)
            return self.channel_worker.submit(ChannelMessage(text=text))
        except Exception:
            logger.exception(f"Could not hand case {event.case.id} to the external channel")
            return False
